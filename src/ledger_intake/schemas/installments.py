"""
Installment expansion.

One detected installment line (k of n) becomes the full series of n ledger
entries: k-1 past, the current one, and n-k future entries.

Month arithmetic rule (fixed):
    shift_months(d, m) keeps the day of month of d in the target month and
    clamps it to the last valid day when the target month is shorter.
    Jan 31 + 1 month -> Feb 28 (Feb 29 in leap years)
    Mar 31 - 1 month -> Feb 28 (Feb 29 in leap years)

Every date of a series is computed from the base date directly, never from
the previous entry, so a clamp in one month does not drift later entries.
"""

import calendar
import re
from datetime import date
from typing import Optional

from dateutil.relativedelta import relativedelta

from .ledger import LedgerEntry, TransactionType, new_entry_id
from .validation import RecordValidationError, ValidatedRecord

# Trailing installment markers: "03/10", "(3/10)", "Parcela 3/10", "parc 3 de 10"
_TRAILING_MARKER = re.compile(
    r"[\s\-]*\(?\s*(?:parcela|parc\.?)?\s*(\d{1,3})\s*(?:/|de)\s*(\d{1,3})\s*\)?\s*$",
    re.IGNORECASE,
)


class InstallmentError(RecordValidationError):
    """Installment counters are inconsistent (k outside 1..n)."""

    pass


def shift_months(base: date, months: int) -> date:
    """Shift a date by whole calendar months, clamping the day of month."""
    target = base.replace(day=1) + relativedelta(months=months)
    last_day = calendar.monthrange(target.year, target.month)[1]
    return target.replace(day=min(base.day, last_day))


def strip_installment_marker(description: str, current: int, total: int) -> str:
    """Remove a trailing k/n marker matching the given counters."""
    match = _TRAILING_MARKER.search(description)
    if not match:
        return description
    if int(match.group(1)) != current or int(match.group(2)) != total:
        return description
    stripped = description[: match.start()].rstrip(" -")
    # Never strip a description down to nothing
    return stripped or description


def resolve_base_payment_date(
    record: ValidatedRecord,
    invoice_due_date: Optional[date] = None,
) -> date:
    """Base payment date: record paymentDate, then invoice due date, then purchase date."""
    return record.payment_date or invoice_due_date or record.date


def build_entry(
    record: ValidatedRecord,
    payment_date: date,
    description: Optional[str] = None,
    issuer: Optional[str] = None,
    credit_card_issuer: Optional[str] = None,
    linked_to_invoice: bool = False,
    installment_number: Optional[int] = None,
    installment_total: Optional[int] = None,
) -> LedgerEntry:
    """Build one LedgerEntry from a validated record."""
    return LedgerEntry(
        id=new_entry_id(),
        description=description or record.description,
        amount=record.amount,
        category=record.category,
        type=record.type,
        date=record.date,
        payment_date=payment_date,
        issuer=issuer,
        credit_card_issuer=credit_card_issuer,
        is_recurring=record.is_recurring,
        is_ai_generated=True,
        linked_to_invoice=linked_to_invoice,
        debtor=record.debtor,
        reimbursed_by=record.reimbursed_by,
        tags=list(record.tags),
        installment_number=installment_number,
        installment_total=installment_total,
    )


def expand_installments(
    record: ValidatedRecord,
    base_payment_date: date,
    issuer: Optional[str] = None,
    credit_card_issuer: Optional[str] = None,
    linked_to_invoice: bool = False,
) -> list[LedgerEntry]:
    """
    Expand a record into its installment series.

    Records with n <= 1, and INCOME records, pass through as a single entry.

    Raises:
        InstallmentError: if currentInstallment is outside 1..totalInstallments
    """
    total = record.total_installments or 0
    common = {
        "issuer": issuer,
        "credit_card_issuer": credit_card_issuer,
        "linked_to_invoice": linked_to_invoice,
    }

    if total <= 1 or record.type != TransactionType.EXPENSE:
        return [build_entry(record, base_payment_date, **common)]

    current = 1 if record.current_installment is None else record.current_installment
    if not 1 <= current <= total:
        raise InstallmentError(f"currentInstallment {current} outside 1..{total}")

    stem = strip_installment_marker(record.description, current, total)

    entries = []
    for number in range(1, total + 1):
        entries.append(
            build_entry(
                record,
                shift_months(base_payment_date, number - current),
                description=f"{stem} ({number}/{total})",
                installment_number=number,
                installment_total=total,
                **common,
            )
        )
    return entries
