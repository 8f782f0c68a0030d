"""
In-memory ledger store.

Same semantics as SQLiteLedgerStore under a re-entrant lock. Objects are
copied on the way in and out so callers never alias stored state.
"""

import copy
import threading
from collections.abc import Callable
from typing import Any, Optional, TypeVar

from ..schemas.ledger import ConsentRecord, InvoiceRecord, LedgerEntry, RateWindow, TransactionType
from .base import InvoiceCommit, LedgerStore

T = TypeVar("T")


class InMemoryLedgerStore(LedgerStore):
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: list[LedgerEntry] = []
        self._invoices: dict[str, InvoiceRecord] = {}
        self._consent: Optional[ConsentRecord] = None
        self._rate_window = RateWindow()
        self._salt: Optional[bytes] = None

    def get_invoice(self, fingerprint: str) -> Optional[InvoiceRecord]:
        with self._lock:
            record = self._invoices.get(fingerprint)
            return copy.deepcopy(record) if record else None

    def commit_invoice(self, record: InvoiceRecord, entries: list[LedgerEntry]) -> InvoiceCommit:
        with self._lock:
            existing = self._invoices.get(record.fingerprint)
            if existing is not None:
                return InvoiceCommit(committed=False, record=copy.deepcopy(existing))
            self._entries.extend(copy.deepcopy(entries))
            self._invoices[record.fingerprint] = copy.deepcopy(record)
            return InvoiceCommit(committed=True, record=record)

    def list_invoices(self) -> list[InvoiceRecord]:
        with self._lock:
            return copy.deepcopy(list(self._invoices.values()))

    def put_entries(self, entries: list[LedgerEntry]) -> None:
        with self._lock:
            self._entries.extend(copy.deepcopy(entries))

    def list_entries(self) -> list[LedgerEntry]:
        with self._lock:
            return copy.deepcopy(self._entries)

    def get_recurring_descriptions(self) -> list[str]:
        with self._lock:
            seen: list[str] = []
            for entry in self._entries:
                if entry.type == TransactionType.EXPENSE and entry.is_recurring:
                    if entry.description not in seen:
                        seen.append(entry.description)
            return seen

    def get_consent(self) -> Optional[ConsentRecord]:
        with self._lock:
            return copy.deepcopy(self._consent)

    def put_consent(self, record: ConsentRecord) -> None:
        with self._lock:
            self._consent = copy.deepcopy(record)

    def get_rate_window(self) -> RateWindow:
        with self._lock:
            return copy.deepcopy(self._rate_window)

    def update_rate_window(self, mutator: Callable[[RateWindow], T]) -> T:
        with self._lock:
            window = copy.deepcopy(self._rate_window)
            result = mutator(window)
            self._rate_window = window
            return result

    def get_or_create_salt(self, factory: Callable[[], bytes]) -> bytes:
        with self._lock:
            if self._salt is None:
                self._salt = factory()
            return self._salt

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            expenses = sum(1 for e in self._entries if e.type == TransactionType.EXPENSE)
            return {
                "entries_total": len(self._entries),
                "entries_expense": expenses,
                "entries_income": len(self._entries) - expenses,
                "entries_recurring": sum(1 for e in self._entries if e.is_recurring),
                "invoices_total": len(self._invoices),
            }
