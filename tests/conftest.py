"""Test fixtures and utilities."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from ledger_intake.admission.documents import SourceDocument
from ledger_intake.schemas.ledger import LedgerEntry, TransactionType, new_entry_id
from ledger_intake.state_store import InMemoryLedgerStore, SQLiteLedgerStore

PDF_BYTES = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer\n%%EOF\n"

OWNER_NAME = "Maria Souza"


def invoice_payload() -> dict:
    """Captured oracle response for a credit card invoice."""
    return {
        "documentType": "invoice",
        "issuer": "Banco Exemplo",
        "invoiceDueDate": "2024-10-15",
        "transactions": [
            {
                "description": "Supermercado Central",
                "amount": 250.40,
                "date": "2024-09-20",
                "category": "Alimentação",
                "type": "EXPENSE",
            },
            {
                "description": "Loja de Roupas 04/06",
                "amount": 100.00,
                "date": "2024-06-10",
                "category": "Vestuário",
                "type": "EXPENSE",
                "currentInstallment": 4,
                "totalInstallments": 6,
            },
            {
                "description": "Pagamento em 05 OUT",
                "amount": 1200.00,
                "date": "2024-10-05",
                "category": "Pagamento",
                "type": "INCOME",
            },
            {
                "description": "Posto Shell",
                "amount": "89,90",
                "date": "2024-09-28",
                "category": "Transporte",
                "type": "EXPENSE",
            },
        ],
    }


def bank_statement_payload() -> dict:
    """Captured oracle response for a bank statement."""
    return {
        "documentType": "bank_statement",
        "issuer": "Banco Exemplo",
        "invoiceDueDate": None,
        "transactions": [
            {
                "description": "Salário Empresa X",
                "amount": 5000,
                "date": "2024-10-01",
                "category": "Salário",
                "type": "INCOME",
            },
            {
                "description": f"Transferência para {OWNER_NAME}",
                "amount": -800,
                "date": "2024-10-02",
                "category": "Transferência",
                "type": "EXPENSE",
            },
            {
                "description": "Saldo anterior",
                "amount": 1500,
                "date": "2024-10-01",
                "category": "Outros",
                "type": "INCOME",
            },
            {
                "description": "Farmácia Popular",
                "amount": -45.5,
                "date": "2024-10-03",
                "category": "Saúde",
                "type": "EXPENSE",
            },
        ],
    }


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_entry(
    description: str = "Mercado",
    amount: str = "100.00",
    payment_date: date = date(2024, 10, 10),
    type_: TransactionType = TransactionType.EXPENSE,
    is_recurring: bool = False,
    **kwargs,
) -> LedgerEntry:
    return LedgerEntry(
        id=new_entry_id(),
        description=description,
        amount=Decimal(amount),
        category=kwargs.pop("category", "Outros"),
        type=type_,
        date=kwargs.pop("date", payment_date),
        payment_date=payment_date,
        is_recurring=is_recurring,
        **kwargs,
    )


ENV_OVERRIDES = [
    "GEMINI_API_KEY",
    "LEDGER_INTAKE_ORACLE",
    "LEDGER_INTAKE_MODEL",
    "LEDGER_INTAKE_DB",
    "LEDGER_INTAKE_OWNER",
    "LEDGER_INTAKE_ENCRYPTION",
    "LEDGER_INTAKE_USER_ID",
    "LEDGER_INTAKE_MAX_IMPORTS_PER_HOUR",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Config overrides from the developer's shell must not leak into tests."""
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_ledger.db"


@pytest.fixture
def sqlite_store(temp_db) -> SQLiteLedgerStore:
    return SQLiteLedgerStore(temp_db)


@pytest.fixture
def memory_store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    """Both store implementations."""
    if request.param == "memory":
        return InMemoryLedgerStore()
    return SQLiteLedgerStore(tmp_path / "param_ledger.db")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pdf_document() -> SourceDocument:
    return SourceDocument(content=PDF_BYTES, media_type="application/pdf", filename="fatura.pdf")
