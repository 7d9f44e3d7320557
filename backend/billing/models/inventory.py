from __future__ import annotations

from ..extensions import db
from billing.money import money_str
from billing.time_utils import to_utc_z

# StockHistory.change_type values
CHANGE_SALE = "sale"
CHANGE_PURCHASE = "purchase"
CHANGE_ADJUSTMENT = "adjustment"
CHANGE_RETURN = "return"


class Product(db.Model):
    """
    Product master data with its on-hand stock counter.

    stock_quantity is only mutated through the stock service (guarded atomic
    UPDATEs that also append a StockHistory row). The check constraint is the
    last line of defence for the non-negative invariant.

    Products are never hard-deleted while invoice items point at them; items
    keep a product_name snapshot and their FK is SET NULL.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    hsn_code = db.Column(db.String(50), nullable=True)
    unit = db.Column(db.String(50), nullable=False, default="pcs")

    price = db.Column(db.Numeric(12, 2), nullable=False)
    # Percentage, e.g. 18.00 for 18%
    gst_rate = db.Column(db.Numeric(5, 2), nullable=False)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock_quantity}>"

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.low_stock_threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "hsn_code": self.hsn_code,
            "unit": self.unit,
            "price": money_str(self.price),
            "gst_rate": money_str(self.gst_rate),
            "stock_quantity": self.stock_quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockHistory(db.Model):
    """
    Append-only audit trail: one row per stock mutation.

    balance_after is the product's stock_quantity right after the mutation,
    so for consecutive rows of one product:
        balance_after[n] == balance_after[n-1] + quantity_change[n]
    """
    __tablename__ = "stock_history"
    __table_args__ = (
        db.Index("ix_stock_history_product_id_id", "product_id", "id"),
        db.Index("ix_stock_history_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    change_type = db.Column(db.String(32), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)

    # 'invoice', 'purchase_order', 'manual', ...
    reference_type = db.Column(db.String(50), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_history", lazy=True, order_by="StockHistory.id"))

    @property
    def balance_before(self) -> int:
        return self.balance_after - self.quantity_change

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "change_type": self.change_type,
            "quantity_change": self.quantity_change,
            "balance_after": self.balance_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
