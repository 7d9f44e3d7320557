from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from billing.time_utils import parse_client_datetime

# Range of a 32-bit Integer column (quantities, ids, stock deltas).
MAX_INT = 2**31 - 1


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level conflict (e.g., invoice number collision after retries)."""


@dataclass(frozen=True)
class FieldAlias:
    """
    A request field that may arrive in snake_case or in the camelCase used
    by the web client (e.g. "customer_id" / "customerId").
    """
    name: str
    alias: str | None = None

    def lookup(self, payload: dict, default: Any = None) -> Any:
        if self.name in payload:
            return payload[self.name]
        if self.alias and self.alias in payload:
            return payload[self.alias]
        return default


def require_object(payload: Any, what: str = "JSON payload") -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError(f"Invalid {what}")
    return payload


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion: rejects floats, bools, decimals-in-strings and
    scientific notation. Values outside the Integer column range are rejected.
    """
    number = _parse_int(value, field)
    if not -MAX_INT <= number <= MAX_INT:
        raise ValidationError(f"{field} is out of range (max {MAX_INT})")
    return number


def _parse_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_positive_int(value: Any, field: str) -> int:
    number = coerce_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be > 0")
    return number


def coerce_optional_str(value: Any, field: str, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{field} must be a string")
    text = str(value).strip()
    if not text:
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def coerce_choice(value: Any, field: str, choices: set[str]) -> str:
    if not isinstance(value, str) or value.strip().lower() not in choices:
        allowed = ", ".join(sorted(choices))
        raise ValidationError(f"{field} must be one of: {allowed}")
    return value.strip().lower()


def coerce_optional_datetime(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return parse_client_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
    raise ValidationError(f"{field} must be an ISO-8601 datetime")
