"""
Canonical ledger objects (SSOT).

These are the only shapes the core produces and hands to persistence.
The persistence collaborator owns their durable lifetime; everything here
is plain data with lossless dict round-tripping for storage.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

# Due date recorded on invoices whose document had none
NO_DUE_DATE = "no-date"


class TransactionType(str, Enum):
    """Direction of a money movement."""

    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class DocumentType(str, Enum):
    """Kind of source document reported by the oracle.

    Only INVOICE documents go through the fingerprint guard.
    """

    INVOICE = "invoice"
    BANK_STATEMENT = "bank_statement"
    OTHER = "other"


def new_entry_id() -> str:
    """Generate an independent ledger entry id."""
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    """Current UTC timestamp in ISO format with Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class LedgerEntry:
    """
    One committed financial transaction.

    date is the purchase date; payment_date is the settlement or due date
    and drives cash-flow views. For an expanded installment series all
    entries share date and amount while payment_date moves month by month.
    """

    id: str
    description: str
    amount: Decimal  # Always positive; type carries the direction
    category: str
    type: TransactionType
    date: date
    payment_date: date

    issuer: Optional[str] = None
    credit_card_issuer: Optional[str] = None
    is_recurring: bool = False
    is_ai_generated: bool = True
    linked_to_invoice: bool = False
    debtor: Optional[str] = None
    reimbursed_by: Optional[str] = None
    tags: list[str] = field(default_factory=list)

    # Installment position (None for single transactions)
    installment_number: Optional[int] = None
    installment_total: Optional[int] = None

    created_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError(f"LedgerEntry amount must be > 0, got: {self.amount}")

    @property
    def effective_date(self) -> date:
        """Date used for cash-flow grouping."""
        return self.payment_date or self.date

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "id": self.id,
            "description": self.description,
            "amount": str(self.amount),
            "category": self.category,
            "type": self.type.value,
            "date": self.date.isoformat(),
            "payment_date": self.payment_date.isoformat(),
            "issuer": self.issuer,
            "credit_card_issuer": self.credit_card_issuer,
            "is_recurring": self.is_recurring,
            "is_ai_generated": self.is_ai_generated,
            "linked_to_invoice": self.linked_to_invoice,
            "debtor": self.debtor,
            "reimbursed_by": self.reimbursed_by,
            "tags": list(self.tags),
            "installment_number": self.installment_number,
            "installment_total": self.installment_total,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LedgerEntry":
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            description=data["description"],
            amount=Decimal(data["amount"]),
            category=data["category"],
            type=TransactionType(data["type"]),
            date=date.fromisoformat(data["date"]),
            payment_date=date.fromisoformat(data.get("payment_date") or data["date"]),
            issuer=data.get("issuer"),
            credit_card_issuer=data.get("credit_card_issuer"),
            is_recurring=bool(data.get("is_recurring", False)),
            is_ai_generated=bool(data.get("is_ai_generated", True)),
            linked_to_invoice=bool(data.get("linked_to_invoice", False)),
            debtor=data.get("debtor"),
            reimbursed_by=data.get("reimbursed_by"),
            tags=list(data.get("tags") or []),
            installment_number=data.get("installment_number"),
            installment_total=data.get("installment_total"),
            created_at=data.get("created_at") or utc_now_iso(),
        )


@dataclass
class InvoiceRecord:
    """
    Record of one committed invoice import.

    Exactly one exists per fingerprint; transaction_ids lists every ledger
    entry the import generated, in commit order.
    """

    id: str
    due_date: str  # YYYY-MM-DD or NO_DUE_DATE
    total_amount: Decimal
    transaction_count: int
    imported_at: str  # ISO timestamp
    fingerprint: str
    transaction_ids: list[str] = field(default_factory=list)
    issuer: Optional[str] = None

    @property
    def has_due_date(self) -> bool:
        return self.due_date != NO_DUE_DATE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "due_date": self.due_date,
            "total_amount": str(self.total_amount),
            "transaction_count": self.transaction_count,
            "imported_at": self.imported_at,
            "fingerprint": self.fingerprint,
            "transaction_ids": list(self.transaction_ids),
            "issuer": self.issuer,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InvoiceRecord":
        return cls(
            id=data["id"],
            due_date=data["due_date"],
            total_amount=Decimal(data["total_amount"]),
            transaction_count=int(data["transaction_count"]),
            imported_at=data["imported_at"],
            fingerprint=data["fingerprint"],
            transaction_ids=list(data.get("transaction_ids") or []),
            issuer=data.get("issuer"),
        )


@dataclass
class ConsentRecord:
    """User decision on the import privacy notice. Overwritten on each decision."""

    accepted: bool
    timestamp: float  # Unix epoch seconds
    version: str

    def to_dict(self) -> dict[str, Any]:
        return {"accepted": self.accepted, "timestamp": self.timestamp, "version": self.version}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConsentRecord":
        return cls(
            accepted=bool(data["accepted"]),
            timestamp=float(data["timestamp"]),
            version=str(data["version"]),
        )


@dataclass
class RateWindow:
    """Import timestamps (Unix epoch seconds), oldest first."""

    timestamps: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"timestamps": list(self.timestamps)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RateWindow":
        return cls(timestamps=sorted(float(t) for t in data.get("timestamps", [])))
