"""UTC helpers. Timestamps are stored UTC-naive and served with a trailing Z."""
from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_client_datetime(text: str) -> datetime:
    """
    Parse a date or datetime sent by the web client (e.g. an invoice due
    date) into a UTC-naive datetime.

    "2026-11-30" becomes midnight UTC. "Z" and "+05:30" style offsets are
    converted to UTC. Raises ValueError on anything else.
    """
    text = text.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.replace(tzinfo=None, microsecond=0).isoformat() + "Z"
