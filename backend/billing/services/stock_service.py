# Overview: Stock ledger operations; every mutation is a guarded UPDATE plus a history row.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..models import Product, StockHistory
from ..models.inventory import CHANGE_ADJUSTMENT, CHANGE_PURCHASE, CHANGE_RETURN, CHANGE_SALE
from billing.validation import ValidationError, coerce_int, coerce_positive_int, coerce_optional_str
from .concurrency import begin_write_transaction, run_with_retry
"""
Stock Ledger Invariants (authoritative)

- Product.stock_quantity is a non-negative integer counter.
- Every mutation is one read-modify-write-log unit inside the caller's
  transaction:
    UPDATE products SET stock_quantity = stock_quantity + :delta
     WHERE id = :id [AND stock_quantity >= :needed]
  followed by one StockHistory row whose balance_after is the value the
  UPDATE produced. The guard in the WHERE clause makes the decrement atomic,
  so two concurrent deductions can never both pass on a stale read.
- A failed guard changes nothing and writes no history row.
- History is append-only: balance_after[n] == balance_after[n-1] + quantity_change[n].

Low stock:
- After a decreasing mutation commits, products at or below
  low_stock_threshold trigger a best-effort alert (never blocks, never raises).
"""


class StockError(Exception):
    """Raised for stock ledger errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ProductNotFoundError(StockError):
    """The referenced product does not exist."""


class InsufficientStockError(StockError):
    """A deduction would drive stock below zero."""


class InvalidAdjustmentError(StockError):
    """A manual adjustment would drive stock below zero."""


def _apply_change(
    *,
    product_id: int,
    delta: int,
    change_type: str,
    reference_type: str | None,
    reference_id: str | None,
    notes: str | None,
    shortfall_error: type[StockError],
) -> StockHistory:
    """Guarded atomic stock change + history row. No commit."""
    stmt = update(Product).where(Product.id == product_id)
    if delta < 0:
        stmt = stmt.where(Product.stock_quantity >= -delta)
    stmt = stmt.values(
        stock_quantity=Product.stock_quantity + delta,
        updated_at=func.now(),
    ).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    product = db.session.get(Product, product_id, populate_existing=True)

    if not result.rowcount:
        if product is None:
            raise ProductNotFoundError("Product not found", details={"product_id": product_id})
        if shortfall_error is InsufficientStockError:
            message = (
                f"Insufficient stock for {product.name}. "
                f"Available: {product.stock_quantity}, Required: {-delta}"
            )
        else:
            message = "Invalid adjustment. Stock cannot be negative."
        raise shortfall_error(
            message,
            details={
                "product_id": product.id,
                "product_name": product.name,
                "available": product.stock_quantity,
                "requested_change": delta,
            },
        )

    entry = StockHistory(
        product_id=product.id,
        change_type=change_type,
        quantity_change=delta,
        balance_after=product.stock_quantity,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        notes=notes,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def deduct_stock_inner(
    *,
    product_id: int,
    quantity: int,
    reference_type: str | None,
    reference_id: str | None,
    notes: str | None = None,
) -> StockHistory:
    """Core SALE deduction without locking, retry or commit (used by the invoice workflow)."""
    return _apply_change(
        product_id=product_id,
        delta=-quantity,
        change_type=CHANGE_SALE,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        shortfall_error=InsufficientStockError,
    )


def _run_mutation(op, *, alert_low_stock: bool) -> StockHistory:
    def _op():
        begin_write_transaction()
        entry = op()
        db.session.commit()
        return entry

    try:
        entry = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    if alert_low_stock:
        product = db.session.get(Product, entry.product_id)
        if product is not None and product.is_low_stock:
            from .notification_service import dispatch_low_stock_alert
            dispatch_low_stock_alert(product.id)
    return entry


def deduct_stock(
    product_id: int,
    quantity,
    reference_type: str | None = "manual",
    reference_id: str | None = None,
    notes: str | None = None,
) -> StockHistory:
    """
    Remove stock for a sale.

    Raises InsufficientStockError (nothing written) if stock - quantity < 0.
    """
    qty = coerce_positive_int(quantity, "quantity")
    return _run_mutation(
        lambda: deduct_stock_inner(
            product_id=product_id,
            quantity=qty,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
        ),
        alert_low_stock=True,
    )


def add_stock(
    product_id: int,
    quantity,
    reference_type: str | None = "purchase_order",
    reference_id: str | None = None,
    notes: str | None = None,
) -> StockHistory:
    """Receive stock (purchase)."""
    qty = coerce_positive_int(quantity, "quantity")
    return _run_mutation(
        lambda: _apply_change(
            product_id=product_id,
            delta=qty,
            change_type=CHANGE_PURCHASE,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            shortfall_error=InvalidAdjustmentError,
        ),
        alert_low_stock=False,
    )


def return_stock(
    product_id: int,
    quantity,
    reference_type: str | None = "invoice",
    reference_id: str | None = None,
    notes: str | None = None,
) -> StockHistory:
    """Put returned goods back on hand."""
    qty = coerce_positive_int(quantity, "quantity")
    return _run_mutation(
        lambda: _apply_change(
            product_id=product_id,
            delta=qty,
            change_type=CHANGE_RETURN,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            shortfall_error=InvalidAdjustmentError,
        ),
        alert_low_stock=False,
    )


def adjust_stock(product_id: int, delta, reason: str | None = None) -> StockHistory:
    """
    Manual correction (damage, recount, ...).

    Raises InvalidAdjustmentError if the result would be negative.
    """
    change = coerce_int(delta, "delta")
    if change == 0:
        raise ValidationError("delta must be non-zero")
    note = coerce_optional_str(reason, "reason")

    return _run_mutation(
        lambda: _apply_change(
            product_id=product_id,
            delta=change,
            change_type=CHANGE_ADJUSTMENT,
            reference_type="manual",
            reference_id=None,
            notes=note,
            shortfall_error=InvalidAdjustmentError,
        ),
        alert_low_stock=change < 0,
    )


# =============================================================================
# Read side
# =============================================================================

def get_product_or_raise(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError("Product not found", details={"product_id": product_id})
    return product


def get_stock_history(product_id: int, limit: int = 50) -> list[StockHistory]:
    """Most recent `limit` movements for a product, oldest first."""
    get_product_or_raise(product_id)
    rows = (
        db.session.query(StockHistory)
        .filter_by(product_id=product_id)
        .order_by(StockHistory.id.desc())
        .limit(limit)
        .all()
    )
    rows.reverse()
    return rows


def get_low_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.stock_quantity <= Product.low_stock_threshold)
        .order_by(Product.stock_quantity.asc(), Product.name.asc())
        .all()
    )


def get_reorder_suggestions() -> list[dict]:
    """Products at or below threshold, with a reorder quantity of twice the threshold."""
    return [
        {
            "product_id": product.id,
            "product_name": product.name,
            "current_stock": product.stock_quantity,
            "threshold": product.low_stock_threshold,
            "suggested_reorder_qty": product.low_stock_threshold * 2,
            "unit": product.unit,
        }
        for product in get_low_stock_products()
    ]


def verify_history(product_id: int) -> list[dict]:
    """
    Check the history chain of one product against its current stock.

    Returns a list of problems (empty when consistent):
    - a row whose balance_after != previous balance_after + quantity_change
    - a negative balance
    - a final balance that differs from Product.stock_quantity
    """
    product = get_product_or_raise(product_id)
    rows = (
        db.session.query(StockHistory)
        .filter_by(product_id=product_id)
        .order_by(StockHistory.id.asc())
        .all()
    )

    problems: list[dict] = []
    previous = None
    for row in rows:
        if previous is not None and row.balance_after != previous + row.quantity_change:
            problems.append({
                "history_id": row.id,
                "issue": "broken_chain",
                "expected_balance": previous + row.quantity_change,
                "balance_after": row.balance_after,
            })
        if row.balance_after < 0:
            problems.append({"history_id": row.id, "issue": "negative_balance", "balance_after": row.balance_after})
        previous = row.balance_after

    if previous is not None and previous != product.stock_quantity:
        problems.append({
            "history_id": rows[-1].id,
            "issue": "stock_mismatch",
            "balance_after": previous,
            "stock_quantity": product.stock_quantity,
        })

    if problems:
        current_app.logger.warning("Stock history inconsistent for product %s: %s", product_id, problems)
    return problems
