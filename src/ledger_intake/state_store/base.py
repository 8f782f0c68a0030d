"""
Persistence interface required by the intake core.

The core depends only on this interface. Implementations must make three
regions atomic per installation:

- commit_invoice(): fingerprint lookup + entry insert + record insert
  (compare-and-set; two concurrent imports of one invoice commit once)
- update_rate_window(): read + prune + modify + write of the rate window
- get_or_create_salt(): at most one salt is ever persisted
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional, TypeVar

from ..schemas.ledger import ConsentRecord, InvoiceRecord, LedgerEntry, RateWindow

T = TypeVar("T")


@dataclass(frozen=True)
class InvoiceCommit:
    """Result of commit_invoice().

    committed is False when another import already owns the fingerprint;
    record is then the prior record and nothing was written.
    """

    committed: bool
    record: InvoiceRecord


class LedgerStore(ABC):
    """Abstract ledger persistence."""

    # === Invoices ===

    @abstractmethod
    def get_invoice(self, fingerprint: str) -> Optional[InvoiceRecord]:
        """Invoice record stored under a fingerprint, if any."""

    @abstractmethod
    def commit_invoice(self, record: InvoiceRecord, entries: list[LedgerEntry]) -> InvoiceCommit:
        """Atomically commit entries and record unless the fingerprint exists."""

    @abstractmethod
    def list_invoices(self) -> list[InvoiceRecord]:
        """All invoice records, oldest import first."""

    # === Ledger entries ===

    @abstractmethod
    def put_entries(self, entries: list[LedgerEntry]) -> None:
        """Persist a batch of entries in one transaction."""

    @abstractmethod
    def list_entries(self) -> list[LedgerEntry]:
        """All entries in commit order (as stored; possibly sealed)."""

    @abstractmethod
    def get_recurring_descriptions(self) -> list[str]:
        """Distinct stored descriptions of recurring expenses (possibly sealed)."""

    # === Consent ===

    @abstractmethod
    def get_consent(self) -> Optional[ConsentRecord]:
        """Latest consent decision, if any."""

    @abstractmethod
    def put_consent(self, record: ConsentRecord) -> None:
        """Overwrite the consent decision."""

    # === Rate window ===

    @abstractmethod
    def get_rate_window(self) -> RateWindow:
        """Snapshot of the rate window."""

    @abstractmethod
    def update_rate_window(self, mutator: Callable[[RateWindow], T]) -> T:
        """
        Atomically load the window, apply mutator (which may modify it in
        place), persist the window and return the mutator's result.
        """

    # === Installation ===

    @abstractmethod
    def get_or_create_salt(self, factory: Callable[[], bytes]) -> bytes:
        """Installation salt; created with factory exactly once."""

    @abstractmethod
    def get_stats(self) -> dict[str, Any]:
        """Counts for status displays."""
