"""
Invoice fingerprint generation (CRITICAL).

This module defines THE idempotency key for whole-document invoice imports.
This is the ONLY way to fingerprint an invoice in the system.

Fingerprint = SHA256 over:
- the invoice due date (YYYY-MM-DD) or the "no-date" sentinel
- the sorted multiset of normalized (description, amount) line items

The fingerprint must be:
- Stable: same inputs always produce the same output
- Order-independent: re-ordered line items collide
- Multiset-aware: a line repeated twice differs from the line once
"""

import hashlib
from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from .ledger import NO_DUE_DATE

# Separators used inside the hashed payload
FIELD_SEPARATOR = "|"
ITEM_SEPARATOR = "\n"

# Bumped if the normalization ever changes (old fingerprints stop matching)
FINGERPRINT_VERSION = "v1"


def _normalize_description(value: str | None) -> str:
    """Lowercase and collapse whitespace."""
    if not value:
        return ""
    return " ".join(value.lower().split())


def _normalize_amount(amount: Decimal | str | float) -> str:
    """Normalize amount to 2 decimal places, sign dropped."""
    if isinstance(amount, str):
        amount = Decimal(amount.replace(",", "."))
    elif isinstance(amount, float):
        amount = Decimal(str(amount))
    elif not isinstance(amount, Decimal):
        raise ValueError(f"amount must be Decimal, str, or float, got: {type(amount)}")

    return f"{abs(amount):.2f}"


def normalize_due_date(due_date: date | str | None) -> str:
    """Due date as YYYY-MM-DD, or the sentinel when absent."""
    if due_date is None or due_date == "":
        return NO_DUE_DATE
    if isinstance(due_date, date):
        return due_date.isoformat()
    return due_date


def compute_invoice_fingerprint(
    due_date: date | str | None,
    line_items: Iterable[tuple[str, Decimal | str | float]],
) -> str:
    """
    Compute the idempotency fingerprint for an invoice import.

    Args:
        due_date: Invoice due date (None when the document has none)
        line_items: (description, amount) pairs of the surviving records

    Returns:
        64-character lowercase hex SHA256 digest
    """
    normalized = sorted(
        f"{_normalize_description(description)}{FIELD_SEPARATOR}{_normalize_amount(amount)}"
        for description, amount in line_items
    )

    payload = ITEM_SEPARATOR.join(
        [FINGERPRINT_VERSION, normalize_due_date(due_date), *normalized]
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
