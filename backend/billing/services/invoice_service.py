"""
Invoice Service - GST invoice creation with stock settlement

Workflow: Draft -> Computed -> Persisted -> StockSettled -> (NotificationAttempted)

1. Validate the draft (no writes). Lines that reference a product are
   re-priced from the product row; client-supplied tax and totals are never
   trusted.
2. Compute taxes (tax_service).
3. Allocate the invoice number (document_service).
4. Insert invoice + items.
5. Deduct stock per product line (stock_service guarded updates).
   Steps 3-5 share ONE database transaction: a crash or timeout before
   commit leaves nothing behind. A shortfall on a line is a warning under
   the default "warn" policy (the invoice still commits without that
   deduction) and aborts the whole invoice under "reject".
6. After commit, notifications are handed to the dispatcher. They can never
   fail or undo the invoice.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Customer, Invoice, InvoiceItem, Product
from ..models.invoices import INVOICE_STATUSES, INVOICE_TYPES
from billing.money import round_money, to_decimal
from billing.validation import (
    ConflictError,
    FieldAlias,
    ValidationError,
    coerce_choice,
    coerce_int,
    coerce_optional_datetime,
    coerce_optional_str,
    coerce_positive_int,
)
from .concurrency import begin_write_transaction, run_with_retry
from .document_service import next_invoice_number, resync_invoice_sequence
from .stock_service import InsufficientStockError, ProductNotFoundError, StockError, deduct_stock_inner
from .tax_service import GST_TYPES, TaxBreakdown, calculate_invoice_taxes

POLICY_WARN = "warn"
POLICY_REJECT = "reject"

MAX_LIST_LIMIT = 500

ITEM_PRODUCT_ID = FieldAlias("product_id", "productId")
ITEM_PRODUCT_NAME = FieldAlias("product_name", "productName")
ITEM_HSN_CODE = FieldAlias("hsn_code", "hsnCode")
ITEM_GST_RATE = FieldAlias("gst_rate", "gstRate")
ITEM_QUANTITY = FieldAlias("quantity")
ITEM_PRICE = FieldAlias("price")
ITEM_UNIT = FieldAlias("unit")


class InvoiceError(Exception):
    """Raised for invoice operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InvoiceNotFoundError(InvoiceError):
    """No invoice with the given id / number."""


class StorageError(InvoiceError):
    """Unexpected persistence failure; nothing was committed."""


@dataclass
class DraftLine:
    product_id: int | None
    product_name: str
    hsn_code: str | None
    unit: str
    quantity: int
    price: Decimal
    gst_rate: Decimal


@dataclass
class InvoiceDraft:
    customer_id: int
    invoice_type: str
    gst_type: str
    lines: list[DraftLine]
    notes: str | None = None
    due_date: datetime | None = None


@dataclass
class InvoiceResult:
    invoice: Invoice
    warnings: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "invoice": self.invoice.to_dict(include_items=True),
            "warnings": self.warnings,
        }


# =============================================================================
# Draft validation (no writes)
# =============================================================================

def _parse_line(index: int, raw, trust_client_prices: bool) -> DraftLine:
    label = f"items[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{label} must be an object")

    quantity = coerce_positive_int(ITEM_QUANTITY.lookup(raw), f"{label}.quantity")

    client_price = ITEM_PRICE.lookup(raw)
    client_rate = ITEM_GST_RATE.lookup(raw)
    product_id = ITEM_PRODUCT_ID.lookup(raw)

    if product_id is not None:
        product_id = coerce_int(product_id, f"{label}.product_id")
        product = db.session.get(Product, product_id)
        if product is None:
            raise ValidationError(f"{label}: product {product_id} not found")

        price = product.price
        gst_rate = product.gst_rate
        if trust_client_prices:
            if client_price is not None:
                price = to_decimal(client_price, f"{label}.price")
            if client_rate is not None:
                gst_rate = to_decimal(client_rate, f"{label}.gst_rate")

        name = product.name
        hsn_code = product.hsn_code
        unit = product.unit or "pcs"
    else:
        name = coerce_optional_str(ITEM_PRODUCT_NAME.lookup(raw), f"{label}.product_name", max_length=255)
        if not name:
            raise ValidationError(f"{label}.product_name is required when product_id is omitted")
        if client_price is None or client_rate is None:
            raise ValidationError(f"{label}: price and gst_rate are required when product_id is omitted")
        price = to_decimal(client_price, f"{label}.price")
        gst_rate = to_decimal(client_rate, f"{label}.gst_rate")
        hsn_code = coerce_optional_str(ITEM_HSN_CODE.lookup(raw), f"{label}.hsn_code", max_length=50)
        unit = coerce_optional_str(ITEM_UNIT.lookup(raw), f"{label}.unit", max_length=50) or "pcs"

    price = Decimal(price)
    gst_rate = Decimal(gst_rate)
    if price < 0:
        raise ValidationError(f"{label}.price must be >= 0")
    if gst_rate < 0 or gst_rate > 100:
        raise ValidationError(f"{label}.gst_rate must be between 0 and 100")

    return DraftLine(
        product_id=product_id,
        product_name=name,
        hsn_code=hsn_code,
        unit=unit,
        quantity=quantity,
        price=round_money(price),
        gst_rate=round_money(gst_rate),
    )


def build_draft(
    *,
    customer_id,
    gst_type,
    invoice_type=None,
    items=None,
    notes=None,
    due_date=None,
) -> InvoiceDraft:
    """Validate a submitted invoice. Reads customers/products; writes nothing."""
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    gst_type = coerce_choice(gst_type, "gst_type", set(GST_TYPES))

    if customer_id is None:
        raise ValidationError("customer_id is required")
    customer_id = coerce_int(customer_id, "customer_id")
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise ValidationError(f"customer {customer_id} not found")

    if invoice_type is None or invoice_type == "":
        invoice_type = customer.customer_type or "b2c"
    invoice_type = coerce_choice(invoice_type, "invoice_type", INVOICE_TYPES)

    trust_client_prices = bool(current_app.config.get("TRUST_CLIENT_LINE_PRICES", False))
    lines = [_parse_line(i, raw, trust_client_prices) for i, raw in enumerate(items)]

    return InvoiceDraft(
        customer_id=customer.id,
        invoice_type=invoice_type,
        gst_type=gst_type,
        lines=lines,
        notes=coerce_optional_str(notes, "notes"),
        due_date=coerce_optional_datetime(due_date, "due_date"),
    )


# =============================================================================
# Persistence
# =============================================================================

def _is_invoice_number_collision(exc: IntegrityError) -> bool:
    message = str(exc.orig) if exc.orig is not None else str(exc)
    return "invoice_number" in message or "uq_invoices_invoice_number" in message


def _persist_invoice(
    draft: InvoiceDraft,
    breakdown: TaxBreakdown,
    *,
    policy: str,
    resync_sequence: bool,
) -> tuple[Invoice, list[dict], list[int]]:
    """One transaction: number, invoice, items, stock. Commits on success."""
    begin_write_transaction()
    if resync_sequence:
        resync_invoice_sequence()

    invoice_number = next_invoice_number()

    invoice = Invoice(
        invoice_number=invoice_number,
        customer_id=draft.customer_id,
        invoice_type=draft.invoice_type,
        gst_type=draft.gst_type,
        status="pending",
        due_date=draft.due_date,
        subtotal=breakdown.subtotal,
        cgst_amount=breakdown.cgst_amount,
        sgst_amount=breakdown.sgst_amount,
        igst_amount=breakdown.igst_amount,
        total_amount=breakdown.total_amount,
        notes=draft.notes,
    )
    db.session.add(invoice)
    db.session.flush()

    for line, tax in zip(draft.lines, breakdown.lines):
        db.session.add(InvoiceItem(
            invoice_id=invoice.id,
            product_id=line.product_id,
            product_name=line.product_name,
            hsn_code=line.hsn_code,
            unit=line.unit,
            quantity=line.quantity,
            price=line.price,
            gst_rate=line.gst_rate,
            gst_amount=tax.gst_amount,
            total_amount=tax.total_amount,
        ))
    db.session.flush()

    warnings: list[dict] = []
    low_stock: list[int] = []
    for line in draft.lines:
        if line.product_id is None:
            continue
        try:
            deduct_stock_inner(
                product_id=line.product_id,
                quantity=line.quantity,
                reference_type="invoice",
                reference_id=str(invoice.id),
                notes=f"Invoice {invoice_number}",
            )
        except (InsufficientStockError, ProductNotFoundError) as exc:
            if policy == POLICY_REJECT:
                raise
            # The failed guard wrote nothing; the invoice keeps going.
            current_app.logger.warning(
                "Stock deduction warning for invoice %s: %s", invoice_number, exc
            )
            warnings.append({
                "type": "insufficient_stock" if isinstance(exc, InsufficientStockError) else "product_missing",
                "message": str(exc),
                **exc.details,
            })
            continue

        product = db.session.get(Product, line.product_id)
        if product is not None and product.is_low_stock and product.id not in low_stock:
            low_stock.append(product.id)

    db.session.commit()
    return invoice, warnings, low_stock


def create_invoice(
    *,
    customer_id,
    gst_type,
    invoice_type=None,
    items=None,
    notes=None,
    due_date=None,
) -> InvoiceResult:
    """
    Create an invoice, settle stock and fire notifications.

    Raises:
        ValidationError: bad draft (nothing written)
        ConflictError: invoice number kept colliding (nothing written)
        InsufficientStockError: only under the "reject" policy (nothing written)
        StorageError: unexpected database failure (nothing written)
    """
    draft = build_draft(
        customer_id=customer_id,
        gst_type=gst_type,
        invoice_type=invoice_type,
        items=items,
        notes=notes,
        due_date=due_date,
    )
    breakdown = calculate_invoice_taxes(draft.lines, draft.gst_type)

    config = current_app.config
    policy = config.get("STOCK_SHORTFALL_POLICY", POLICY_WARN)
    if policy not in (POLICY_WARN, POLICY_REJECT):
        raise ValueError(f"invalid STOCK_SHORTFALL_POLICY: {policy!r}")
    max_attempts = max(1, int(config.get("INVOICE_NUMBER_MAX_ATTEMPTS", 5)))

    # Release any read transaction left by validation so the write lock can be taken.
    db.session.rollback()

    resync = False
    for attempt in range(1, max_attempts + 1):
        try:
            invoice, warnings, low_stock = run_with_retry(
                lambda: _persist_invoice(draft, breakdown, policy=policy, resync_sequence=resync)
            )
            break
        except IntegrityError as exc:
            db.session.rollback()
            if not _is_invoice_number_collision(exc):
                current_app.logger.exception("Invoice insert failed")
                raise StorageError("Failed to store invoice") from exc
            current_app.logger.warning(
                "Invoice number collision (attempt %d/%d); retrying", attempt, max_attempts
            )
            if attempt >= max_attempts:
                raise ConflictError(
                    "Could not allocate a unique invoice number; please retry"
                ) from exc
            resync = True
        except (ValidationError, StockError):
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Invoice transaction failed")
            raise StorageError("Failed to store invoice") from exc
        except Exception:
            db.session.rollback()
            raise

    current_app.logger.info(
        "Invoice %s created (total %s, %d warning(s))",
        invoice.invoice_number, invoice.total_amount, len(warnings),
    )

    _notify_after_commit(invoice.id, low_stock)
    return InvoiceResult(invoice=invoice, warnings=warnings)


def _notify_after_commit(invoice_id: int, low_stock_product_ids: list[int]) -> None:
    from .notification_service import dispatch_invoice_notifications, dispatch_low_stock_alert

    try:
        dispatch_invoice_notifications(invoice_id)
        for product_id in low_stock_product_ids:
            dispatch_low_stock_alert(product_id)
    except Exception:
        # Delivery problems never reach the invoice caller.
        current_app.logger.exception("Failed to dispatch notifications for invoice %s", invoice_id)


# =============================================================================
# Reads and status changes
# =============================================================================

def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def get_invoice_by_number(invoice_number: str) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(invoice_number=invoice_number).first()
    if invoice is None:
        raise InvoiceNotFoundError("Invoice not found", details={"invoice_number": invoice_number})
    return invoice


def list_invoices(status: str | None = None, limit: int = 100) -> list[Invoice]:
    """Newest first."""
    limit = coerce_positive_int(limit, "limit")
    if limit > MAX_LIST_LIMIT:
        raise ValidationError(f"limit cannot exceed {MAX_LIST_LIMIT}")

    q = db.session.query(Invoice)
    if status:
        q = q.filter(Invoice.status == coerce_choice(status, "status", INVOICE_STATUSES))
    return q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit).all()


def update_invoice_status(invoice_id: int, status) -> Invoice:
    """Status is the only column that may change after creation."""
    new_status = coerce_choice(status, "status", INVOICE_STATUSES)

    def _op():
        invoice = get_invoice(invoice_id)
        invoice.status = new_status
        db.session.commit()
        return invoice

    try:
        return run_with_retry(_op)
    except InvoiceError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update status of invoice %s", invoice_id)
        raise StorageError("Failed to update invoice status") from exc
