# Overview: Invoice number formatting and transactional allocation.

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence, Invoice
from billing.validation import ValidationError

INVOICE_DOCUMENT_TYPE = "INVOICE"
DEFAULT_PREFIX = "INV"
DEFAULT_PAD = 6


def format_invoice_number(current_count: int, prefix: str = DEFAULT_PREFIX, pad: int = DEFAULT_PAD) -> str:
    """
    Next invoice number given how many invoices already exist.

    format_invoice_number(41) -> "INV-000042"
    """
    if isinstance(current_count, bool) or not isinstance(current_count, int):
        raise ValidationError("current_count must be an integer")
    if current_count < 0:
        raise ValidationError("current_count must be >= 0")
    return f"{prefix}-{current_count + 1:0{pad}d}"


def parse_invoice_number(invoice_number: str, prefix: str = DEFAULT_PREFIX) -> int | None:
    """Sequence value encoded in an invoice number, or None if it does not match."""
    match = re.fullmatch(rf"{re.escape(prefix)}-(\d+)", invoice_number or "")
    if not match:
        return None
    return int(match.group(1))


def _numbering_config() -> tuple[str, int]:
    return (
        current_app.config.get("INVOICE_NUMBER_PREFIX", DEFAULT_PREFIX),
        int(current_app.config.get("INVOICE_NUMBER_PAD", DEFAULT_PAD)),
    )


def _highest_issued_number(prefix: str) -> int:
    """Largest sequence value among stored invoice numbers (0 when none)."""
    numbers = db.session.query(Invoice.invoice_number).filter(
        Invoice.invoice_number.like(f"{prefix}-%")
    )
    highest = 0
    for (number,) in numbers:
        value = parse_invoice_number(number, prefix)
        if value is not None and value > highest:
            highest = value
    return highest


def next_invoice_number() -> str:
    """
    Allocate the next invoice number inside the caller's open transaction.

    The counter row is bumped with a single UPDATE (row-locked by the
    database), so concurrent allocators never see the same value. The row is
    seeded from the existing invoice count on first use. Does not commit:
    if the invoice insert fails, the rollback also returns the number.
    """
    prefix, pad = _numbering_config()

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == INVOICE_DOCUMENT_TYPE)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=INVOICE_DOCUMENT_TYPE)
            .scalar()
        )
        issued_count = current - 2
    else:
        issued_count = db.session.query(func.count(Invoice.id)).scalar() or 0
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(document_type=INVOICE_DOCUMENT_TYPE, next_number=issued_count + 2)
                )
        except IntegrityError:
            # Another transaction created the row first; use it.
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            current = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(document_type=INVOICE_DOCUMENT_TYPE)
                .scalar()
            )
            issued_count = current - 2

    return format_invoice_number(issued_count, prefix=prefix, pad=pad)


def resync_invoice_sequence() -> int:
    """
    Move the counter past the highest stored invoice number.

    Used after a unique-constraint collision (e.g. rows inserted by an older
    count-based numbering or by an import). Returns the next value to issue.
    Does not commit.
    """
    prefix, _ = _numbering_config()
    highest = _highest_issued_number(prefix)

    seq = db.session.query(DocumentSequence).filter_by(document_type=INVOICE_DOCUMENT_TYPE).first()
    if seq is None:
        seq = DocumentSequence(document_type=INVOICE_DOCUMENT_TYPE, next_number=highest + 1)
        db.session.add(seq)
    elif seq.next_number <= highest:
        seq.next_number = highest + 1
    db.session.flush()
    return seq.next_number
