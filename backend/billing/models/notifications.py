from __future__ import annotations

from ..extensions import db
from billing.time_utils import to_utc_z


class NotificationLog(db.Model):
    """
    Delivery record for outbound email / WhatsApp messages.

    Written by the notification dispatcher after the invoice transaction has
    committed; a failed row never affects the invoice it refers to.
    """
    __tablename__ = "notification_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    channel = db.Column(db.String(16), nullable=False)  # email, whatsapp
    message_type = db.Column(db.String(32), nullable=False)  # invoice, low_stock
    recipient = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending, sent, failed
    attempts = db.Column(db.Integer, nullable=False, default=0)
    error_message = db.Column(db.Text, nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "channel": self.channel,
            "message_type": self.message_type,
            "recipient": self.recipient,
            "status": self.status,
            "attempts": self.attempts,
            "error_message": self.error_message,
            "sent_at": to_utc_z(self.sent_at) if self.sent_at else None,
            "created_at": to_utc_z(self.created_at),
        }
