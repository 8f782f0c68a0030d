"""
Ledger State Store.

Persistent tracking of:
- Committed ledger entries
- Invoice records (one per fingerprint)
- Consent, rate window and installation salt

Enforces uniqueness on the invoice fingerprint.
"""

from .base import InvoiceCommit, LedgerStore
from .memory_store import InMemoryLedgerStore
from .sqlite_store import SQLiteLedgerStore

__all__ = [
    "LedgerStore",
    "InvoiceCommit",
    "SQLiteLedgerStore",
    "InMemoryLedgerStore",
]
