# Overview: Best-effort outbound notifications (email / WhatsApp) dispatched after commit.

from __future__ import annotations

import re
import smtplib
import time
from concurrent.futures import Future, ThreadPoolExecutor
from email.message import EmailMessage

import httpx
from flask import Flask, current_app

from ..extensions import db
from ..models import Invoice, NotificationLog, Product
from billing.money import money_str
from billing.time_utils import utcnow
"""
Notification Dispatch rules

- Runs strictly after the invoice / stock transaction has committed.
- Never raises into the caller: every failure is logged and recorded in
  NotificationLog, the invoice or stock change it refers to is unaffected.
- Each delivery retries independently with exponential backoff
  (NOTIFICATION_MAX_ATTEMPTS, NOTIFICATION_BACKOFF_BASE).
- NOTIFICATIONS_ASYNC=False runs jobs inline (tests, CLI).
"""

CHANNEL_EMAIL = "email"
CHANNEL_WHATSAPP = "whatsapp"

MESSAGE_INVOICE = "invoice"
MESSAGE_LOW_STOCK = "low_stock"

STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"


class ExternalServiceError(Exception):
    """Raised when an outbound provider (SMTP, WhatsApp API) fails."""


# =============================================================================
# Channels
# =============================================================================

def email_configured(config) -> bool:
    return bool(config.get("EMAIL_USER") and config.get("EMAIL_PASSWORD"))


def whatsapp_configured(config) -> bool:
    return bool(config.get("WHATSAPP_ACCESS_TOKEN") and config.get("WHATSAPP_BUSINESS_PHONE_ID"))


def send_email(to: str, subject: str, body: str) -> None:
    """Send a plain-text email over SMTP with STARTTLS."""
    config = current_app.config
    sender = config.get("EMAIL_FROM") or config.get("EMAIL_USER")

    message = EmailMessage()
    message["From"] = f'"{config.get("COMPANY_NAME", "GST Billing")}" <{sender}>'
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)

    try:
        with smtplib.SMTP(
            config.get("EMAIL_HOST", "smtp.gmail.com"),
            int(config.get("EMAIL_PORT", 587)),
            timeout=config.get("NOTIFICATION_TIMEOUT", 10),
        ) as smtp:
            smtp.starttls()
            smtp.login(config["EMAIL_USER"], config["EMAIL_PASSWORD"])
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise ExternalServiceError(f"email delivery failed: {exc}") from exc


def format_phone_number(phone: str) -> str:
    """Digits only; bare 10-digit numbers get the India country code."""
    cleaned = re.sub(r"\D", "", phone or "")
    if len(cleaned) == 10 and not cleaned.startswith("91"):
        cleaned = "91" + cleaned
    return cleaned


def send_whatsapp_text(phone: str, message: str) -> None:
    """Send a text message through the WhatsApp Business Cloud API."""
    config = current_app.config
    url = f'{config["WHATSAPP_API_URL"].rstrip("/")}/{config["WHATSAPP_BUSINESS_PHONE_ID"]}/messages'
    payload = {
        "messaging_product": "whatsapp",
        "to": format_phone_number(phone),
        "type": "text",
        "text": {"body": message},
    }
    try:
        response = httpx.post(
            url,
            json=payload,
            headers={"Authorization": f'Bearer {config["WHATSAPP_ACCESS_TOKEN"]}'},
            timeout=config.get("NOTIFICATION_TIMEOUT", 10),
        )
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise ExternalServiceError(f"whatsapp delivery failed: {exc}") from exc


# =============================================================================
# Message builders
# =============================================================================

def build_invoice_email(invoice: Invoice, company_name: str) -> tuple[str, str]:
    customer_name = invoice.customer.name if invoice.customer else "Customer"
    lines = [
        f"Dear {customer_name},",
        "",
        f"Thank you for your business. Please find the details of invoice {invoice.invoice_number} below.",
        "",
    ]
    for item in invoice.items:
        lines.append(
            f"  {item.product_name} x {item.quantity} @ ₹{money_str(item.price)}"
            f" (GST {money_str(item.gst_rate)}%) = ₹{money_str(item.total_amount)}"
        )
    lines.append("")
    lines.append(f"Subtotal: ₹{money_str(invoice.subtotal)}")
    if invoice.gst_type == "igst":
        lines.append(f"IGST: ₹{money_str(invoice.igst_amount)}")
    else:
        lines.append(f"CGST: ₹{money_str(invoice.cgst_amount)}")
        lines.append(f"SGST: ₹{money_str(invoice.sgst_amount)}")
    lines.append(f"Total: ₹{money_str(invoice.total_amount)}")
    lines.extend(["", f"- {company_name}"])

    subject = f"Invoice {invoice.invoice_number} from {company_name}"
    return subject, "\n".join(lines)


def build_invoice_whatsapp(invoice: Invoice, company_name: str) -> str:
    customer_name = invoice.customer.name if invoice.customer else "Customer"
    return (
        f"Hello {customer_name},\n\n"
        f"Your invoice {invoice.invoice_number} for ₹{money_str(invoice.total_amount)} has been generated.\n\n"
        f"Thank you for your business!\n"
        f"- {company_name}"
    )


def build_low_stock_message(product: Product, company_name: str) -> tuple[str, str]:
    subject = f"Low Stock Alert - {product.name}"
    body = (
        f"LOW STOCK ALERT\n\n"
        f"Product: {product.name}\n"
        f"Current Stock: {product.stock_quantity}\n"
        f"Threshold: {product.low_stock_threshold}\n\n"
        f"Please reorder stock soon.\n\n"
        f"- {company_name}"
    )
    return subject, body


# =============================================================================
# Dispatcher
# =============================================================================

class NotificationDispatcher:
    """
    Fire-and-forget job runner for notifications.

    Jobs are plain functions taking (dispatcher, *args). Senders are
    attributes so tests and alternative providers can replace them.
    """

    def __init__(self, app: Flask | None = None):
        self.email_sender = send_email
        self.whatsapp_sender = send_whatsapp_text
        self._executor: ThreadPoolExecutor | None = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.extensions["notification_dispatcher"] = self

    def _get_executor(self, app: Flask) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=app.config.get("NOTIFICATION_WORKERS", 2),
                thread_name_prefix="notifications",
            )
        return self._executor

    def submit(self, job, *args) -> Future | None:
        app = current_app._get_current_object()
        if not app.config.get("NOTIFICATIONS_ASYNC", True):
            self._run(app, job, args)
            return None
        return self._get_executor(app).submit(self._run, app, job, args)

    def _run(self, app: Flask, job, args) -> None:
        with app.app_context():
            try:
                job(self, *args)
            except Exception:
                app.logger.exception("Notification job %s%r failed", job.__name__, args)
                db.session.rollback()
            finally:
                db.session.remove()

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def deliver(
        self,
        *,
        channel: str,
        message_type: str,
        recipient: str,
        send,
        invoice_id: int | None = None,
        product_id: int | None = None,
    ) -> NotificationLog:
        """Attempt one delivery with retry/backoff and record the outcome."""
        config = current_app.config
        max_attempts = max(1, int(config.get("NOTIFICATION_MAX_ATTEMPTS", 3)))
        backoff_base = float(config.get("NOTIFICATION_BACKOFF_BASE", 0.5))

        log = NotificationLog(
            invoice_id=invoice_id,
            product_id=product_id,
            channel=channel,
            message_type=message_type,
            recipient=recipient,
            status=STATUS_PENDING,
            attempts=0,
        )
        db.session.add(log)
        db.session.commit()

        for attempt in range(1, max_attempts + 1):
            log.attempts = attempt
            try:
                send()
            except ExternalServiceError as exc:
                log.error_message = str(exc)
                if attempt >= max_attempts:
                    log.status = STATUS_FAILED
                    db.session.commit()
                    current_app.logger.warning(
                        "%s %s notification to %s failed after %d attempts: %s",
                        channel, message_type, recipient, attempt, exc,
                    )
                    return log
                time.sleep(backoff_base * (2 ** (attempt - 1)))
                continue

            log.status = STATUS_SENT
            log.sent_at = utcnow()
            log.error_message = None
            db.session.commit()
            current_app.logger.info("%s %s notification sent to %s", channel, message_type, recipient)
            return log

        return log


def get_dispatcher() -> NotificationDispatcher:
    return current_app.extensions["notification_dispatcher"]


# =============================================================================
# Jobs
# =============================================================================

def notify_invoice_created(dispatcher: NotificationDispatcher, invoice_id: int) -> None:
    config = current_app.config
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None or invoice.customer is None:
        return

    customer = invoice.customer
    company = config.get("COMPANY_NAME", "GST Billing")

    if customer.email and email_configured(config):
        subject, body = build_invoice_email(invoice, company)
        dispatcher.deliver(
            channel=CHANNEL_EMAIL,
            message_type=MESSAGE_INVOICE,
            recipient=customer.email,
            invoice_id=invoice.id,
            send=lambda: dispatcher.email_sender(customer.email, subject, body),
        )
    elif customer.email:
        current_app.logger.info("Email not configured; invoice %s not emailed", invoice.invoice_number)

    if customer.phone and whatsapp_configured(config):
        text = build_invoice_whatsapp(invoice, company)
        dispatcher.deliver(
            channel=CHANNEL_WHATSAPP,
            message_type=MESSAGE_INVOICE,
            recipient=customer.phone,
            invoice_id=invoice.id,
            send=lambda: dispatcher.whatsapp_sender(customer.phone, text),
        )


def notify_low_stock(dispatcher: NotificationDispatcher, product_id: int) -> None:
    config = current_app.config
    product = db.session.get(Product, product_id)
    if product is None or not product.is_low_stock:
        return

    company = config.get("COMPANY_NAME", "GST Billing")
    subject, body = build_low_stock_message(product, company)
    admin_email = config.get("ADMIN_EMAIL")
    admin_phone = config.get("ADMIN_PHONE")

    if admin_email and email_configured(config):
        dispatcher.deliver(
            channel=CHANNEL_EMAIL,
            message_type=MESSAGE_LOW_STOCK,
            recipient=admin_email,
            product_id=product.id,
            send=lambda: dispatcher.email_sender(admin_email, subject, body),
        )
    if admin_phone and whatsapp_configured(config):
        dispatcher.deliver(
            channel=CHANNEL_WHATSAPP,
            message_type=MESSAGE_LOW_STOCK,
            recipient=admin_phone,
            product_id=product.id,
            send=lambda: dispatcher.whatsapp_sender(admin_phone, body),
        )
    if not admin_email and not admin_phone:
        current_app.logger.warning(
            "Low stock for %s (%s left) but no admin contact configured",
            product.name, product.stock_quantity,
        )


def dispatch_invoice_notifications(invoice_id: int) -> None:
    get_dispatcher().submit(notify_invoice_created, invoice_id)


def dispatch_low_stock_alert(product_id: int) -> None:
    get_dispatcher().submit(notify_low_stock, product_id)
