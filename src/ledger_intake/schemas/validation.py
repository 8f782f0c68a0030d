"""
Record validation (SSOT).

Turns a decoded RawExtractedRecord into a ValidatedRecord: sanitized text,
normalized positive Decimal amount, checked installment counters.

Anything that cannot be made valid raises RecordValidationError; the
pipeline drops that record and keeps the diagnostic.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from ..config import AmountValidationConfig
from .ledger import TransactionType
from .oracle_response import RawExtractedRecord
from .sanitization import sanitize_name, sanitize_tags, sanitize_text

AMOUNT_QUANTUM = Decimal("0.01")

DEFAULT_CATEGORY = "Outros"


class RecordValidationError(ValueError):
    """A raw record cannot become a ledger entry."""

    pass


@dataclass(frozen=True)
class ValidatedRecord:
    """Raw record after validation and sanitization. Amount is always > 0."""

    description: str
    amount: Decimal
    category: str
    type: TransactionType
    date: date
    payment_date: Optional[date] = None
    is_recurring: bool = False
    current_installment: Optional[int] = None
    total_installments: Optional[int] = None
    should_ignore: bool = False
    ignore_reason: Optional[str] = None
    debtor: Optional[str] = None
    reimbursed_by: Optional[str] = None
    tags: list[str] = field(default_factory=list)

    @property
    def is_installment(self) -> bool:
        return (self.total_installments or 0) > 1


def normalize_amount(amount: Decimal, config: AmountValidationConfig) -> Decimal:
    """
    Normalize an oracle amount to a positive Decimal with two decimals.

    Raises:
        RecordValidationError: zero, disallowed negative or above max_amount
    """
    if not amount.is_finite():
        raise RecordValidationError(f"amount is not finite: {amount}")

    if amount < 0:
        if not config.allow_sign_normalization:
            raise RecordValidationError(f"negative amount not allowed: {amount}")
        amount = -amount

    amount = amount.quantize(AMOUNT_QUANTUM)

    if amount == 0:
        raise RecordValidationError("amount must be greater than zero")
    if amount > config.max_amount:
        raise RecordValidationError(f"amount {amount} exceeds maximum {config.max_amount}")

    return amount


def validate_record(
    raw: RawExtractedRecord,
    config: AmountValidationConfig | None = None,
) -> ValidatedRecord:
    """
    Validate one decoded oracle record.

    Raises:
        RecordValidationError: if the record cannot be committed
    """
    config = config or AmountValidationConfig()

    description = sanitize_text(raw.description)
    if not description:
        raise RecordValidationError("description is empty after sanitizing")

    amount = normalize_amount(raw.amount, config)

    total = raw.total_installments
    current = raw.current_installment
    if total is not None and total < 0:
        raise RecordValidationError(f"totalInstallments must not be negative: {total}")
    if current is not None and current < 0:
        raise RecordValidationError(f"currentInstallment must not be negative: {current}")

    return ValidatedRecord(
        description=description,
        amount=amount,
        category=sanitize_text(raw.category, 100) or DEFAULT_CATEGORY,
        type=raw.type,
        date=raw.date,
        payment_date=raw.payment_date,
        is_recurring=bool(raw.is_recurring),
        current_installment=current,
        total_installments=total,
        should_ignore=bool(raw.should_ignore),
        ignore_reason=sanitize_text(raw.ignore_reason, 100) or None,
        debtor=sanitize_name(raw.debtor),
        reimbursed_by=sanitize_name(raw.reimbursed_by),
        tags=sanitize_tags(raw.tags),
    )
