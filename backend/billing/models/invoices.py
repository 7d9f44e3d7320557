from __future__ import annotations

from ..extensions import db
from billing.money import money_str
from billing.time_utils import to_utc_z

INVOICE_TYPES = {"b2b", "b2c"}
INVOICE_STATUSES = {"pending", "paid", "overdue"}


class Invoice(db.Model):
    """
    Issued invoice (financial record, never deleted).

    Created once with its items in a single transaction; status is the only
    column that changes afterwards.

    total_amount == subtotal + cgst_amount + sgst_amount + igst_amount, and
    only the pair matching gst_type is non-zero.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        db.Index("ix_invoices_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "INV-000042")
    invoice_number = db.Column(db.String(50), nullable=False)

    customer_id = db.Column(
        db.Integer,
        db.ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    invoice_type = db.Column(db.String(8), nullable=False)
    gst_type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    invoice_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    cgst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    sgst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    igst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="InvoiceItem.id",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "invoice_type": self.invoice_type,
            "gst_type": self.gst_type,
            "status": self.status,
            "invoice_date": to_utc_z(self.invoice_date),
            "due_date": to_utc_z(self.due_date) if self.due_date else None,
            "subtotal": money_str(self.subtotal),
            "cgst_amount": money_str(self.cgst_amount),
            "sgst_amount": money_str(self.sgst_amount),
            "igst_amount": money_str(self.igst_amount),
            "total_amount": money_str(self.total_amount),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    """
    Immutable invoice line.

    product_name/hsn_code are snapshots so the line survives product
    deletion (product_id becomes NULL).

    gst_amount == round(price * quantity * gst_rate / 100, 2)
    total_amount == price * quantity + gst_amount
    """
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    product_name = db.Column(db.String(255), nullable=False)
    hsn_code = db.Column(db.String(50), nullable=True)
    unit = db.Column(db.String(50), nullable=False, default="pcs")

    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    gst_rate = db.Column(db.Numeric(5, 2), nullable=False)
    gst_amount = db.Column(db.Numeric(12, 2), nullable=False)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "hsn_code": self.hsn_code,
            "unit": self.unit,
            "quantity": self.quantity,
            "price": money_str(self.price),
            "gst_rate": money_str(self.gst_rate),
            "gst_amount": money_str(self.gst_amount),
            "total_amount": money_str(self.total_amount),
            "created_at": to_utc_z(self.created_at),
        }
