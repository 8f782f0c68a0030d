"""
SQLite-based ledger store implementation.

Tables:
- ledger_entries: Committed ledger entries (JSON payload + query columns)
- invoice_records: One row per committed invoice import (UNIQUE fingerprint)
- consent: Singleton consent decision
- rate_window: Singleton import timestamp window
- installation: Singleton installation salt

Atomic regions run inside BEGIN IMMEDIATE transactions, which take the
database write lock up front; concurrent writers wait (busy timeout) rather
than interleave. The UNIQUE fingerprint constraint is the last line of
defence: a losing insert re-reads the winner.
"""

import json
import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, TypeVar

from ..schemas.ledger import (
    ConsentRecord,
    InvoiceRecord,
    LedgerEntry,
    RateWindow,
    TransactionType,
    utc_now_iso,
)
from .base import InvoiceCommit, LedgerStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Seconds a connection waits for the write lock
BUSY_TIMEOUT_SECONDS = 30.0


def _invoice_from_row(row: sqlite3.Row) -> InvoiceRecord:
    """Create from database row."""
    return InvoiceRecord(
        id=row["id"],
        due_date=row["due_date"],
        total_amount=Decimal(row["total_amount"]),
        transaction_count=row["transaction_count"],
        imported_at=row["imported_at"],
        fingerprint=row["fingerprint"],
        transaction_ids=json.loads(row["transaction_ids"]) if row["transaction_ids"] else [],
        issuer=row["issuer"],
    )


class SQLiteLedgerStore(LedgerStore):
    """
    SQLite ledger store.

    Opens one connection per operation, so instances are safe to share
    between threads and processes.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str):
        """
        Initialize ledger store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection in autocommit mode with row factory."""
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=BUSY_TIMEOUT_SECONDS,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._read() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_entries (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    description TEXT NOT NULL,
                    is_recurring INTEGER NOT NULL DEFAULT 0,
                    payment_date TEXT NOT NULL,
                    invoice_fingerprint TEXT,
                    entry_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS invoice_records (
                    id TEXT PRIMARY KEY,
                    fingerprint TEXT NOT NULL UNIQUE,
                    due_date TEXT NOT NULL,
                    total_amount TEXT NOT NULL,
                    transaction_count INTEGER NOT NULL,
                    transaction_ids TEXT NOT NULL,  -- JSON array, commit order
                    issuer TEXT,
                    imported_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS consent (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    accepted INTEGER NOT NULL,
                    timestamp REAL NOT NULL,
                    version TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS rate_window (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    timestamps TEXT NOT NULL  -- JSON array of epoch seconds
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS installation (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    salt BLOB NOT NULL,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_entries_recurring "
                "ON ledger_entries(type, is_recurring)"
            )
            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )

    # === Ledger entries ===

    def _insert_entries(
        self,
        conn: sqlite3.Connection,
        entries: list[LedgerEntry],
        fingerprint: Optional[str] = None,
    ) -> None:
        conn.executemany(
            """
            INSERT INTO ledger_entries
                (id, type, description, is_recurring, payment_date,
                 invoice_fingerprint, entry_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    entry.id,
                    entry.type.value,
                    entry.description,
                    1 if entry.is_recurring else 0,
                    entry.payment_date.isoformat(),
                    fingerprint,
                    json.dumps(entry.to_dict()),
                    entry.created_at,
                )
                for entry in entries
            ],
        )

    def put_entries(self, entries: list[LedgerEntry]) -> None:
        if not entries:
            return
        with self._transaction() as conn:
            self._insert_entries(conn, entries)

    def list_entries(self) -> list[LedgerEntry]:
        with self._read() as conn:
            rows = conn.execute("SELECT entry_json FROM ledger_entries ORDER BY rowid").fetchall()
            return [LedgerEntry.from_dict(json.loads(row["entry_json"])) for row in rows]

    def get_recurring_descriptions(self) -> list[str]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT description FROM ledger_entries
                WHERE type = ? AND is_recurring = 1
                GROUP BY description
                ORDER BY MIN(rowid)
                """,
                (TransactionType.EXPENSE.value,),
            ).fetchall()
            return [row["description"] for row in rows]

    # === Invoices ===

    def get_invoice(self, fingerprint: str) -> Optional[InvoiceRecord]:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM invoice_records WHERE fingerprint = ?", (fingerprint,)
            ).fetchone()
            return _invoice_from_row(row) if row else None

    def commit_invoice(self, record: InvoiceRecord, entries: list[LedgerEntry]) -> InvoiceCommit:
        try:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT * FROM invoice_records WHERE fingerprint = ?",
                    (record.fingerprint,),
                ).fetchone()
                if row:
                    return InvoiceCommit(committed=False, record=_invoice_from_row(row))

                self._insert_entries(conn, entries, record.fingerprint)
                conn.execute(
                    """
                    INSERT INTO invoice_records
                        (id, fingerprint, due_date, total_amount, transaction_count,
                         transaction_ids, issuer, imported_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.fingerprint,
                        record.due_date,
                        str(record.total_amount),
                        record.transaction_count,
                        json.dumps(record.transaction_ids),
                        record.issuer,
                        record.imported_at,
                    ),
                )
                return InvoiceCommit(committed=True, record=record)
        except sqlite3.IntegrityError:
            existing = self.get_invoice(record.fingerprint)
            if existing is None:
                raise
            logger.info("Concurrent import of the same invoice resolved to the earlier record")
            return InvoiceCommit(committed=False, record=existing)

    def list_invoices(self) -> list[InvoiceRecord]:
        with self._read() as conn:
            rows = conn.execute("SELECT * FROM invoice_records ORDER BY rowid").fetchall()
            return [_invoice_from_row(row) for row in rows]

    # === Consent ===

    def get_consent(self) -> Optional[ConsentRecord]:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM consent WHERE id = 1").fetchone()
            if not row:
                return None
            return ConsentRecord(
                accepted=bool(row["accepted"]),
                timestamp=row["timestamp"],
                version=row["version"],
            )

    def put_consent(self, record: ConsentRecord) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO consent (id, accepted, timestamp, version) VALUES (1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    accepted = excluded.accepted,
                    timestamp = excluded.timestamp,
                    version = excluded.version
                """,
                (1 if record.accepted else 0, record.timestamp, record.version),
            )

    # === Rate window ===

    @staticmethod
    def _load_window(conn: sqlite3.Connection) -> RateWindow:
        row = conn.execute("SELECT timestamps FROM rate_window WHERE id = 1").fetchone()
        if not row:
            return RateWindow()
        return RateWindow.from_dict({"timestamps": json.loads(row["timestamps"])})

    def get_rate_window(self) -> RateWindow:
        with self._read() as conn:
            return self._load_window(conn)

    def update_rate_window(self, mutator: Callable[[RateWindow], T]) -> T:
        with self._transaction() as conn:
            window = self._load_window(conn)
            result = mutator(window)
            conn.execute(
                """
                INSERT INTO rate_window (id, timestamps) VALUES (1, ?)
                ON CONFLICT(id) DO UPDATE SET timestamps = excluded.timestamps
                """,
                (json.dumps(window.timestamps),),
            )
            return result

    # === Installation ===

    def get_or_create_salt(self, factory: Callable[[], bytes]) -> bytes:
        with self._read() as conn:
            row = conn.execute("SELECT salt FROM installation WHERE id = 1").fetchone()
            if row:
                return bytes(row["salt"])

        with self._transaction() as conn:
            # Re-check under the write lock; another process may have won
            row = conn.execute("SELECT salt FROM installation WHERE id = 1").fetchone()
            if row:
                return bytes(row["salt"])
            salt = factory()
            conn.execute(
                "INSERT INTO installation (id, salt, created_at) VALUES (1, ?, ?)",
                (salt, utc_now_iso()),
            )
            logger.info("Created installation salt")
            return salt

    def get_stats(self) -> dict[str, Any]:
        """Get ledger statistics."""
        with self._read() as conn:
            entries = conn.execute("SELECT COUNT(*) as count FROM ledger_entries").fetchone()
            expenses = conn.execute(
                "SELECT COUNT(*) as count FROM ledger_entries WHERE type = ?",
                (TransactionType.EXPENSE.value,),
            ).fetchone()
            recurring = conn.execute(
                "SELECT COUNT(*) as count FROM ledger_entries WHERE is_recurring = 1"
            ).fetchone()
            invoices = conn.execute("SELECT COUNT(*) as count FROM invoice_records").fetchone()

            return {
                "entries_total": entries["count"] if entries else 0,
                "entries_expense": expenses["count"] if expenses else 0,
                "entries_income": (entries["count"] - expenses["count"]) if entries else 0,
                "entries_recurring": recurring["count"] if recurring else 0,
                "invoices_total": invoices["count"] if invoices else 0,
            }
