# backend/billing/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/billing.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///billing.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Invoice numbering: INV-000042
    INVOICE_NUMBER_PREFIX = os.environ.get("INVOICE_NUMBER_PREFIX", "INV")
    INVOICE_NUMBER_PAD = int(os.environ.get("INVOICE_NUMBER_PAD", "6"))
    INVOICE_NUMBER_MAX_ATTEMPTS = int(os.environ.get("INVOICE_NUMBER_MAX_ATTEMPTS", "5"))

    # "warn": shortfalls are reported and the invoice still commits.
    # "reject": a shortfall fails the whole invoice.
    STOCK_SHORTFALL_POLICY = os.environ.get("STOCK_SHORTFALL_POLICY", "warn")
    TRUST_CLIENT_LINE_PRICES = _env_bool("TRUST_CLIENT_LINE_PRICES", False)

    # Email (SMTP). Unset EMAIL_USER disables the channel.
    COMPANY_NAME = os.environ.get("COMPANY_NAME", "GST Billing")
    EMAIL_HOST = os.environ.get("EMAIL_HOST", "smtp.gmail.com")
    EMAIL_PORT = int(os.environ.get("EMAIL_PORT", "587"))
    EMAIL_USER = os.environ.get("EMAIL_USER")
    EMAIL_PASSWORD = os.environ.get("EMAIL_PASSWORD")
    EMAIL_FROM = os.environ.get("EMAIL_FROM")
    ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL")
    ADMIN_PHONE = os.environ.get("ADMIN_PHONE")

    # WhatsApp Cloud API. Unset token disables the channel.
    WHATSAPP_API_URL = os.environ.get("WHATSAPP_API_URL", "https://graph.facebook.com/v18.0")
    WHATSAPP_BUSINESS_PHONE_ID = os.environ.get("WHATSAPP_BUSINESS_PHONE_ID")
    WHATSAPP_ACCESS_TOKEN = os.environ.get("WHATSAPP_ACCESS_TOKEN")

    NOTIFICATIONS_ASYNC = _env_bool("NOTIFICATIONS_ASYNC", True)
    NOTIFICATION_WORKERS = int(os.environ.get("NOTIFICATION_WORKERS", "2"))
    NOTIFICATION_MAX_ATTEMPTS = int(os.environ.get("NOTIFICATION_MAX_ATTEMPTS", "3"))
    NOTIFICATION_BACKOFF_BASE = float(os.environ.get("NOTIFICATION_BACKOFF_BASE", "0.5"))
    NOTIFICATION_TIMEOUT = float(os.environ.get("NOTIFICATION_TIMEOUT", "10"))
