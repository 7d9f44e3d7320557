from __future__ import annotations

from ..extensions import db
from billing.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data. Read-only from the invoice workflow's point of view;
    customer_type supplies the default invoice type.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    gst_number = db.Column(db.String(15), nullable=True)
    state = db.Column(db.String(100), nullable=True)
    customer_type = db.Column(db.String(8), nullable=False, default="b2c")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "gst_number": self.gst_number,
            "state": self.state,
            "customer_type": self.customer_type,
            "created_at": to_utc_z(self.created_at),
        }
