"""
Pipeline outcome types.

IntakePipeline.submit() returns exactly one of these. Terminal outcomes are
always explicit; an empty import is NoTransactionsFound, never an empty
Committed.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .ledger import InvoiceRecord, LedgerEntry


@dataclass
class ImportReport:
    """Observability counters for one document. Never contains record text."""

    document_type: Optional[str] = None
    records_received: int = 0
    records_kept: int = 0
    entries_generated: int = 0
    noise_dropped: Counter = field(default_factory=Counter)
    duplicate_subscriptions: int = 0
    validation_errors: list[str] = field(default_factory=list)

    @property
    def noise_total(self) -> int:
        return sum(self.noise_dropped.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_type": self.document_type,
            "records_received": self.records_received,
            "records_kept": self.records_kept,
            "entries_generated": self.entries_generated,
            "noise_dropped": dict(self.noise_dropped),
            "duplicate_subscriptions": self.duplicate_subscriptions,
            "validation_errors": list(self.validation_errors),
        }


@dataclass(frozen=True)
class Committed:
    entries: list[LedgerEntry]
    invoice_record: Optional[InvoiceRecord] = None
    report: ImportReport = field(default_factory=ImportReport)

    outcome = "committed"


@dataclass(frozen=True)
class DuplicateDetected:
    """The invoice was already imported; nothing was committed."""

    prior_record: InvoiceRecord

    outcome = "duplicate_detected"

    @property
    def due_date(self) -> str:
        return self.prior_record.due_date

    @property
    def imported_at(self) -> str:
        return self.prior_record.imported_at


@dataclass(frozen=True)
class RateLimited:
    retry_after_seconds: int

    outcome = "rate_limited"


@dataclass(frozen=True)
class ConsentRequired:
    notice_version: str

    outcome = "consent_required"


@dataclass(frozen=True)
class NoTransactionsFound:
    report: ImportReport = field(default_factory=ImportReport)

    outcome = "no_transactions_found"


@dataclass(frozen=True)
class DocumentRejected:
    """The document failed admission checks before reaching the oracle."""

    reason: str

    outcome = "document_rejected"


@dataclass(frozen=True)
class ExtractionRejected:
    """The oracle response failed strict schema decoding."""

    error: str
    details: list[str] = field(default_factory=list)

    outcome = "extraction_rejected"


IntakeOutcome = Union[
    Committed,
    DuplicateDetected,
    RateLimited,
    ConsentRequired,
    NoTransactionsFound,
    DocumentRejected,
    ExtractionRejected,
]
