"""
GST tax calculation for invoice lines.

Pure functions: no database access, no side effects.

Rules:
- line_gst = round(price * quantity * gst_rate / 100, 2), rounded per line
  before summation so printed line amounts add up.
- cgst_sgst (intra-state): CGST and SGST are each half of the line GST total,
  rounded half-up. IGST is zero.
- igst (inter-state): IGST is the line GST total. CGST/SGST are zero.
- total_gst = cgst + sgst + igst and total_amount = subtotal + total_gst, so
  an invoice always reconciles exactly against its stored tax columns.

All amounts are Decimal with 2 fractional digits (ROUND_HALF_UP).
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping

from billing.money import MAX_AMOUNT, ZERO, round_money, to_decimal
from billing.validation import MAX_INT, ValidationError

GST_TYPE_CGST_SGST = "cgst_sgst"
GST_TYPE_IGST = "igst"
GST_TYPES = (GST_TYPE_CGST_SGST, GST_TYPE_IGST)

MAX_GST_RATE = Decimal("100")


@dataclass(frozen=True)
class LineTax:
    price: Decimal
    quantity: Decimal
    gst_rate: Decimal
    taxable_amount: Decimal
    gst_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class TaxBreakdown:
    gst_type: str
    subtotal: Decimal
    lines: tuple[LineTax, ...]
    line_gst_total: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    total_gst: Decimal
    total_amount: Decimal

    @property
    def per_item_gst(self) -> list[Decimal]:
        return [line.gst_amount for line in self.lines]


def validate_gst_type(gst_type: Any) -> str:
    if gst_type not in GST_TYPES:
        raise ValidationError(f"gst_type must be one of: {', '.join(GST_TYPES)}")
    return gst_type


def line_tax(price: Any, quantity: Any, gst_rate: Any) -> LineTax:
    """Compute taxable value, GST and total for one line."""
    price_d = to_decimal(price, "price")
    qty_d = to_decimal(quantity, "quantity", max_value=Decimal(MAX_INT))
    rate_d = to_decimal(gst_rate, "gst_rate")

    if price_d < 0:
        raise ValidationError("price must be >= 0")
    if qty_d < 0:
        raise ValidationError("quantity must be >= 0")
    if rate_d < 0:
        raise ValidationError("gst_rate must be >= 0")
    if rate_d > MAX_GST_RATE:
        raise ValidationError("gst_rate cannot exceed 100")

    taxable = price_d * qty_d
    if taxable > MAX_AMOUNT:
        raise ValidationError(f"line amount exceeds the maximum of {MAX_AMOUNT}")
    gst_amount = round_money(taxable * rate_d / Decimal("100"))
    taxable = round_money(taxable)
    if taxable + gst_amount > MAX_AMOUNT:
        raise ValidationError(f"line amount exceeds the maximum of {MAX_AMOUNT}")

    return LineTax(
        price=price_d,
        quantity=qty_d,
        gst_rate=rate_d,
        taxable_amount=taxable,
        gst_amount=gst_amount,
        total_amount=taxable + gst_amount,
    )


def _item_field(item: Any, field: str) -> Any:
    if isinstance(item, Mapping):
        if field not in item:
            raise ValidationError(f"item is missing {field}")
        return item[field]
    if not hasattr(item, field):
        raise ValidationError(f"item is missing {field}")
    return getattr(item, field)


def calculate_invoice_taxes(items: Iterable[Any], gst_type: str) -> TaxBreakdown:
    """
    Compute invoice-level totals from ordered line items.

    items: mappings or objects exposing price, quantity and gst_rate.
    """
    validate_gst_type(gst_type)

    lines = tuple(
        line_tax(
            _item_field(item, "price"),
            _item_field(item, "quantity"),
            _item_field(item, "gst_rate"),
        )
        for item in items
    )

    subtotal = sum((line.taxable_amount for line in lines), ZERO)
    line_gst_total = sum((line.gst_amount for line in lines), ZERO)

    if gst_type == GST_TYPE_CGST_SGST:
        half = round_money(line_gst_total / 2)
        cgst, sgst, igst = half, half, ZERO
    else:
        cgst, sgst, igst = ZERO, ZERO, line_gst_total

    total_gst = cgst + sgst + igst
    if subtotal + total_gst > MAX_AMOUNT:
        raise ValidationError(f"invoice total exceeds the maximum of {MAX_AMOUNT}")

    return TaxBreakdown(
        gst_type=gst_type,
        subtotal=subtotal,
        lines=lines,
        line_gst_total=line_gst_total,
        cgst_amount=cgst,
        sgst_amount=sgst,
        igst_amount=igst,
        total_gst=total_gst,
        total_amount=subtotal + total_gst,
    )
