import threading

import httpx
import pytest

from billing.models import NotificationLog
from billing.services import invoice_service, notification_service
from billing.services.notification_service import (
    ExternalServiceError,
    format_phone_number,
    get_dispatcher,
    send_whatsapp_text,
)


class FakeSender:
    def __init__(self, fail_times=0, exc=None):
        self.calls = []
        self.fail_times = fail_times
        self.exc = exc

    def __call__(self, recipient, *parts):
        self.calls.append((recipient, parts))
        if self.exc is not None:
            raise self.exc
        if len(self.calls) <= self.fail_times:
            raise ExternalServiceError("provider unavailable")


@pytest.fixture
def channels(app, monkeypatch):
    """Configure both channels and swap the senders for fakes."""
    monkeypatch.setitem(app.config, "EMAIL_USER", "billing@example.com")
    monkeypatch.setitem(app.config, "EMAIL_PASSWORD", "secret")
    monkeypatch.setitem(app.config, "WHATSAPP_ACCESS_TOKEN", "token")
    monkeypatch.setitem(app.config, "WHATSAPP_BUSINESS_PHONE_ID", "1234")

    dispatcher = app.extensions["notification_dispatcher"]
    email, whatsapp = FakeSender(), FakeSender()
    monkeypatch.setattr(dispatcher, "email_sender", email)
    monkeypatch.setattr(dispatcher, "whatsapp_sender", whatsapp)
    return dispatcher


def _create(customer, product, quantity=1):
    return invoice_service.create_invoice(
        customer_id=customer.id,
        gst_type="cgst_sgst",
        items=[{"product_id": product.id, "quantity": quantity}],
    ).invoice


def test_invoice_is_emailed_and_whatsapped(db_session, channels, b2b_customer, product):
    invoice = _create(b2b_customer, product)

    [(to, (subject, body))] = channels.email_sender.calls
    assert to == "accounts@acme.example"
    assert invoice.invoice_number in subject
    assert "CGST: ₹9.00" in body
    assert "Total: ₹118.00" in body

    [(phone, (text,))] = channels.whatsapp_sender.calls
    assert phone == "9876543210"
    assert "₹118.00" in text

    logs = db_session.query(NotificationLog).filter_by(invoice_id=invoice.id).all()
    assert sorted((log.channel, log.status, log.attempts) for log in logs) == [
        ("email", "sent", 1),
        ("whatsapp", "sent", 1),
    ]


def test_delivery_is_retried_then_recorded_as_failed(db_session, channels, b2b_customer, product):
    channels.email_sender.fail_times = 10

    invoice = _create(b2b_customer, product)

    assert invoice.id is not None
    assert len(channels.email_sender.calls) == 3
    log = db_session.query(NotificationLog).filter_by(channel="email").one()
    assert log.status == "failed"
    assert log.attempts == 3
    assert "provider unavailable" in log.error_message


def test_transient_failure_recovers(db_session, channels, b2b_customer, product):
    channels.email_sender.fail_times = 1

    _create(b2b_customer, product)

    log = db_session.query(NotificationLog).filter_by(channel="email").one()
    assert log.status == "sent"
    assert log.attempts == 2
    assert log.error_message is None


def test_unexpected_sender_crash_never_reaches_caller(client, db_session, channels, b2b_customer, product):
    channels.email_sender.exc = RuntimeError("smtp library bug")

    resp = client.post("/api/invoices", json={
        "customerId": b2b_customer.id,
        "gstType": "igst",
        "items": [{"productId": product.id, "quantity": 1}],
    })

    assert resp.status_code == 201


def test_nothing_sent_when_channels_unconfigured(db_session, b2b_customer, product):
    _create(b2b_customer, product)
    assert db_session.query(NotificationLog).count() == 0


def test_customer_without_contacts_gets_nothing(db_session, channels, customer, product):
    _create(customer, product)
    assert channels.email_sender.calls == []
    assert channels.whatsapp_sender.calls == []


def test_low_stock_alert_goes_to_admin(app, db_session, channels, customer, make_product, monkeypatch):
    monkeypatch.setitem(app.config, "ADMIN_EMAIL", "owner@example.com")
    monkeypatch.setitem(app.config, "ADMIN_PHONE", "+91 98450 00000")
    item = make_product(name="Ink", stock=5, threshold=3)

    _create(customer, item, quantity=3)

    [(to, (subject, body))] = channels.email_sender.calls
    assert to == "owner@example.com"
    assert subject == "Low Stock Alert - Ink"
    assert "Current Stock: 2" in body
    [(phone, _)] = channels.whatsapp_sender.calls
    assert phone == "+91 98450 00000"

    log = db_session.query(NotificationLog).filter_by(channel="email").one()
    assert log.message_type == "low_stock"
    assert log.product_id == item.id


def test_async_dispatch_runs_off_the_request_thread(app, monkeypatch):
    monkeypatch.setitem(app.config, "NOTIFICATIONS_ASYNC", True)
    dispatcher = get_dispatcher()
    seen = []

    def job(_dispatcher, value):
        seen.append((threading.current_thread().name, value))

    future = dispatcher.submit(job, 7)
    future.result(timeout=5)
    dispatcher.shutdown()

    [(thread_name, value)] = seen
    assert value == 7
    assert thread_name.startswith("notifications")


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("9876543210", "919876543210"),
        ("+91 98765-43210", "919876543210"),
        ("(987) 654 3210", "919876543210"),
        ("447700900123", "447700900123"),
    ],
)
def test_format_phone_number(raw, expected):
    assert format_phone_number(raw) == expected


def test_whatsapp_cloud_api_request(app, monkeypatch):
    monkeypatch.setitem(app.config, "WHATSAPP_ACCESS_TOKEN", "token-abc")
    monkeypatch.setitem(app.config, "WHATSAPP_BUSINESS_PHONE_ID", "55501")
    captured = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        captured.update(url=url, json=json, headers=headers)
        return httpx.Response(200, json={"messages": [{"id": "wamid.1"}]}, request=httpx.Request("POST", url))

    monkeypatch.setattr(notification_service.httpx, "post", fake_post)

    send_whatsapp_text("9876543210", "hello")

    assert captured["url"] == "https://graph.facebook.com/v18.0/55501/messages"
    assert captured["json"]["to"] == "919876543210"
    assert captured["json"]["text"] == {"body": "hello"}
    assert captured["headers"]["Authorization"] == "Bearer token-abc"


def test_whatsapp_http_error_becomes_external_service_error(app, monkeypatch):
    monkeypatch.setitem(app.config, "WHATSAPP_ACCESS_TOKEN", "token-abc")
    monkeypatch.setitem(app.config, "WHATSAPP_BUSINESS_PHONE_ID", "55501")

    def failing_post(url, **kwargs):
        return httpx.Response(401, json={"error": "bad token"}, request=httpx.Request("POST", url))

    monkeypatch.setattr(notification_service.httpx, "post", failing_post)

    with pytest.raises(ExternalServiceError):
        send_whatsapp_text("9876543210", "hello")
