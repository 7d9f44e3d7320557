from decimal import Decimal

import pytest

from billing.services.tax_service import (
    GST_TYPE_CGST_SGST,
    GST_TYPE_IGST,
    calculate_invoice_taxes,
    line_tax,
)
from billing.validation import ValidationError


def D(value):
    return Decimal(value)


def test_single_line_intra_state_example():
    breakdown = calculate_invoice_taxes(
        [{"price": "100.00", "quantity": 2, "gst_rate": "18"}],
        GST_TYPE_CGST_SGST,
    )

    assert breakdown.subtotal == D("200.00")
    assert breakdown.per_item_gst == [D("36.00")]
    assert breakdown.cgst_amount == D("18.00")
    assert breakdown.sgst_amount == D("18.00")
    assert breakdown.igst_amount == D("0.00")
    assert breakdown.total_amount == D("236.00")


def test_inter_state_puts_everything_in_igst():
    breakdown = calculate_invoice_taxes(
        [
            {"price": "100.00", "quantity": 2, "gst_rate": "18"},
            {"price": "49.99", "quantity": 3, "gst_rate": "5"},
        ],
        GST_TYPE_IGST,
    )

    # 49.99 * 3 = 149.97; 5% = 7.4985 -> 7.50
    assert breakdown.per_item_gst == [D("36.00"), D("7.50")]
    assert breakdown.cgst_amount == D("0.00")
    assert breakdown.sgst_amount == D("0.00")
    assert breakdown.igst_amount == D("43.50")
    assert breakdown.subtotal == D("349.97")
    assert breakdown.total_amount == D("393.47")


def test_gst_is_rounded_per_line_before_summing():
    items = [{"price": "0.05", "quantity": 1, "gst_rate": "10"}] * 3
    breakdown = calculate_invoice_taxes(items, GST_TYPE_IGST)

    # each line 0.005 -> 0.01 (half-up); summed after rounding
    assert breakdown.per_item_gst == [D("0.01")] * 3
    assert breakdown.line_gst_total == D("0.03")


def test_odd_paisa_split_keeps_halves_equal_and_totals_reconciled():
    breakdown = calculate_invoice_taxes(
        [{"price": "0.10", "quantity": 1, "gst_rate": "10"}],
        GST_TYPE_CGST_SGST,
    )

    assert breakdown.line_gst_total == D("0.01")
    assert breakdown.cgst_amount == breakdown.sgst_amount == D("0.01")
    assert breakdown.total_gst == D("0.02")
    assert breakdown.total_amount == (
        breakdown.subtotal + breakdown.cgst_amount + breakdown.sgst_amount + breakdown.igst_amount
    )


@pytest.mark.parametrize("gst_type", [GST_TYPE_CGST_SGST, GST_TYPE_IGST])
def test_split_and_reconciliation_hold_for_mixed_items(gst_type):
    items = [
        {"price": price, "quantity": qty, "gst_rate": rate}
        for price, qty, rate in [
            ("12.34", 7, "5"),
            ("999.99", 1, "28"),
            ("0.01", 13, "12"),
            ("250.50", 4, "0"),
            ("3.33", 3, "18"),
        ]
    ]
    breakdown = calculate_invoice_taxes(items, gst_type)

    if gst_type == GST_TYPE_CGST_SGST:
        assert breakdown.cgst_amount == breakdown.sgst_amount
        assert breakdown.igst_amount == 0
    else:
        assert breakdown.cgst_amount == breakdown.sgst_amount == 0
    assert breakdown.total_amount == (
        breakdown.subtotal + breakdown.cgst_amount + breakdown.sgst_amount + breakdown.igst_amount
    )


def test_zero_rate_line_has_no_gst():
    tax = line_tax("250.00", 2, "0")
    assert tax.gst_amount == D("0.00")
    assert tax.total_amount == D("500.00")


def test_items_may_be_objects():
    class Line:
        price = D("10.00")
        quantity = 3
        gst_rate = D("12")

    breakdown = calculate_invoice_taxes([Line()], GST_TYPE_IGST)
    assert breakdown.igst_amount == D("3.60")


def test_empty_item_list_is_all_zero():
    breakdown = calculate_invoice_taxes([], GST_TYPE_CGST_SGST)
    assert breakdown.total_amount == D("0.00")


@pytest.mark.parametrize(
    "price,quantity,rate",
    [
        ("-1", 1, "18"),
        ("10", -1, "18"),
        ("10", 1, "-5"),
        ("10", 1, "101"),
        ("abc", 1, "18"),
        (None, 1, "18"),
        (True, 1, "18"),
        ("NaN", 1, "18"),
        ("1e30", 1, "18"),
        ("10", 10**20, "18"),
        ("10", 1, "1e30"),
    ],
)
def test_invalid_line_values_are_rejected(price, quantity, rate):
    with pytest.raises(ValidationError):
        line_tax(price, quantity, rate)


def test_unknown_gst_type_is_rejected():
    with pytest.raises(ValidationError):
        calculate_invoice_taxes([{"price": "1", "quantity": 1, "gst_rate": "5"}], "vat")


def test_missing_item_field_is_rejected():
    with pytest.raises(ValidationError):
        calculate_invoice_taxes([{"price": "1", "quantity": 1}], GST_TYPE_IGST)


@pytest.mark.parametrize(
    "price,quantity,rate",
    [
        # taxable value alone is past Numeric(12, 2)
        ("9999999999.99", 2, "0"),
        ("5000", 2**31 - 1, "18"),
        # taxable fits, taxable + GST does not
        ("9999999999.99", 1, "18"),
    ],
)
def test_line_amounts_must_fit_the_money_columns(price, quantity, rate):
    with pytest.raises(ValidationError, match="exceeds the maximum"):
        line_tax(price, quantity, rate)


def test_largest_storable_line_is_accepted():
    tax = line_tax("9999999999.99", 1, "0")
    assert tax.total_amount == D("9999999999.99")


def test_invoice_total_must_fit_the_money_columns():
    items = [{"price": "6000000000.00", "quantity": 1, "gst_rate": "0"}] * 2
    with pytest.raises(ValidationError, match="invoice total"):
        calculate_invoice_taxes(items, GST_TYPE_IGST)
