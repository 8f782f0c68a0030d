"""Tests for the intake pipeline end to end (replayed oracle responses)."""

import random
import threading
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from conftest import OWNER_NAME, FakeClock, bank_statement_payload, invoice_payload, make_entry
from ledger_intake.admission import ConsentGate, ImportRateLimiter, SourceDocument
from ledger_intake.config import Config
from ledger_intake.crypto import CryptoFailure, FieldCodec, looks_encrypted
from ledger_intake.oracle import OracleError, ReplayOracle
from ledger_intake.schemas.ledger import NO_DUE_DATE, TransactionType
from ledger_intake.schemas.outcomes import (
    Committed,
    ConsentRequired,
    DocumentRejected,
    DuplicateDetected,
    ExtractionRejected,
    NoTransactionsFound,
    RateLimited,
)
from ledger_intake.services import ImportContext, IntakePipeline, build_pipeline
from ledger_intake.state_store import InMemoryLedgerStore, SQLiteLedgerStore

SALT = bytes(range(16))


def _pipeline(store, payload, clock=None, consent=True, **kwargs) -> IntakePipeline:
    clock = clock or FakeClock()
    gate = ConsentGate(store, clock=clock)
    if consent:
        gate.record_decision(accepted=True)
    return IntakePipeline(
        store=store,
        oracle=kwargs.pop("oracle", None) or ReplayOracle(payload),
        consent_gate=gate,
        rate_limiter=ImportRateLimiter(store, clock=clock),
        **kwargs,
    )


def _codec() -> FieldCodec:
    return FieldCodec("user-123", lambda: SALT, iterations=1_000)


class TestInvoiceImport:
    """Tests for committing a credit card invoice."""

    def test_committed(self, memory_store, pdf_document):
        outcome = _pipeline(memory_store, invoice_payload()).submit(pdf_document)

        assert isinstance(outcome, Committed)
        # Supermercado + 6 installments + Posto; the payment line is noise
        assert len(outcome.entries) == 8
        assert outcome.report.records_received == 4
        assert outcome.report.records_kept == 3
        assert outcome.report.entries_generated == 8
        assert dict(outcome.report.noise_dropped) == {"invoice_payment": 1}
        assert len(memory_store.list_entries()) == 8

    def test_invoice_record(self, memory_store, pdf_document):
        outcome = _pipeline(memory_store, invoice_payload()).submit(pdf_document)

        record = outcome.invoice_record
        assert record.due_date == "2024-10-15"
        assert record.total_amount == Decimal("440.30")
        assert record.transaction_count == 8
        assert record.transaction_ids == [e.id for e in outcome.entries]
        assert record.issuer == "Banco Exemplo"
        assert memory_store.get_invoice(record.fingerprint) is not None

    def test_entries_linked_to_invoice(self, memory_store, pdf_document):
        outcome = _pipeline(memory_store, invoice_payload()).submit(pdf_document)

        assert all(e.linked_to_invoice for e in outcome.entries)
        assert all(e.credit_card_issuer == "Banco Exemplo" for e in outcome.entries)
        assert all(e.is_ai_generated for e in outcome.entries)

    def test_payment_dates_follow_due_date(self, memory_store, pdf_document):
        outcome = _pipeline(memory_store, invoice_payload()).submit(pdf_document)

        by_description = {e.description: e for e in outcome.entries}
        assert by_description["Supermercado Central"].payment_date == date(2024, 10, 15)
        assert by_description["Supermercado Central"].date == date(2024, 9, 20)
        assert by_description["Loja de Roupas (1/6)"].payment_date == date(2024, 7, 15)
        assert by_description["Loja de Roupas (4/6)"].payment_date == date(2024, 10, 15)
        assert by_description["Loja de Roupas (6/6)"].payment_date == date(2024, 12, 15)
        assert by_description["Posto Shell"].amount == Decimal("89.90")

    def test_reimport_is_duplicate(self, memory_store, pdf_document):
        pipeline = _pipeline(memory_store, invoice_payload())
        first = pipeline.submit(pdf_document)

        second = pipeline.submit(pdf_document)

        assert isinstance(second, DuplicateDetected)
        assert second.due_date == "2024-10-15"
        assert second.imported_at == first.invoice_record.imported_at
        assert len(memory_store.list_invoices()) == 1
        assert len(memory_store.list_entries()) == 8

    def test_permuted_extraction_is_duplicate(self, memory_store, pdf_document):
        _pipeline(memory_store, invoice_payload()).submit(pdf_document)

        permuted = invoice_payload()
        random.Random(7).shuffle(permuted["transactions"])
        permuted["transactions"].reverse()

        outcome = _pipeline(memory_store, permuted).submit(pdf_document)

        assert isinstance(outcome, DuplicateDetected)
        assert len(memory_store.list_entries()) == 8

    def test_changed_invoice_is_new(self, memory_store, pdf_document):
        _pipeline(memory_store, invoice_payload()).submit(pdf_document)

        next_month = invoice_payload()
        next_month["invoiceDueDate"] = "2024-11-15"

        assert isinstance(_pipeline(memory_store, next_month).submit(pdf_document), Committed)
        assert len(memory_store.list_invoices()) == 2

    def test_duplicate_releases_rate_slot(self, memory_store, pdf_document):
        pipeline = _pipeline(memory_store, invoice_payload())
        pipeline.submit(pdf_document)
        pipeline.submit(pdf_document)

        assert len(memory_store.get_rate_window().timestamps) == 1

    def test_no_due_date(self, memory_store, pdf_document):
        payload = invoice_payload()
        payload["invoiceDueDate"] = None

        outcome = _pipeline(memory_store, payload).submit(pdf_document)

        assert outcome.invoice_record.due_date == NO_DUE_DATE
        by_description = {e.description: e for e in outcome.entries}
        assert by_description["Supermercado Central"].payment_date == date(2024, 9, 20)

    def test_invalid_records_reported(self, memory_store, pdf_document):
        payload = invoice_payload()
        payload["transactions"].append(
            {"description": "Bad", "amount": "abc", "date": "2024-10-01", "category": "x", "type": "EXPENSE"}
        )
        payload["transactions"].append(
            {
                "description": "Curso 7/6",
                "amount": 10,
                "date": "2024-10-01",
                "category": "Educação",
                "type": "EXPENSE",
                "currentInstallment": 7,
                "totalInstallments": 6,
            }
        )

        outcome = _pipeline(memory_store, payload).submit(pdf_document)

        assert isinstance(outcome, Committed)
        assert len(outcome.entries) == 8
        assert len(outcome.report.validation_errors) == 2
        assert outcome.report.records_received == 6

    def test_reimport_with_recurring_line_is_duplicate(self, memory_store, pdf_document):
        """A recurring line that became known after the first import keeps the same key."""
        payload = invoice_payload()
        payload["transactions"].append(
            {
                "description": "Netflix",
                "amount": 39.90,
                "date": "2024-09-15",
                "category": "Assinaturas",
                "type": "EXPENSE",
                "isRecurring": True,
            }
        )
        pipeline = _pipeline(memory_store, payload)
        first = pipeline.submit(pdf_document)
        assert isinstance(first, Committed)
        assert memory_store.get_recurring_descriptions() == ["Netflix"]

        second = pipeline.submit(pdf_document)

        assert isinstance(second, DuplicateDetected)
        assert len(memory_store.list_invoices()) == 1
        assert len(memory_store.list_entries()) == 9

    def test_zero_amount_record_dropped(self, memory_store, pdf_document):
        payload = invoice_payload()
        payload["transactions"][0]["amount"] = 0

        outcome = _pipeline(memory_store, payload).submit(pdf_document)

        assert isinstance(outcome, Committed)
        assert len(outcome.entries) == 7
        assert outcome.report.validation_errors == ["record 0: amount must be greater than zero"]

    def test_diagnostics_use_transaction_position(self, memory_store, pdf_document):
        """Decode and validation diagnostics number records the same way."""
        payload = invoice_payload()
        payload["transactions"].append(
            {"description": "Bad", "amount": "abc", "date": "2024-10-01", "category": "x", "type": "EXPENSE"}
        )
        payload["transactions"].append(
            {"description": "Zero", "amount": 0, "date": "2024-10-01", "category": "x", "type": "EXPENSE"}
        )

        outcome = _pipeline(memory_store, payload).submit(pdf_document)

        errors = outcome.report.validation_errors
        assert len(errors) == 2
        assert errors[0].startswith("record 4: ")
        assert errors[1] == "record 5: amount must be greater than zero"


class TestBankStatementImport:
    """Tests for non-invoice documents."""

    def test_owner_transfer_dropped(self, memory_store, pdf_document):
        outcome = _pipeline(memory_store, bank_statement_payload()).submit(
            pdf_document, ImportContext(owner_name=OWNER_NAME)
        )

        assert isinstance(outcome, Committed)
        assert outcome.invoice_record is None
        assert [e.description for e in outcome.entries] == ["Salário Empresa X", "Farmácia Popular"]
        assert dict(outcome.report.noise_dropped) == {"internal_transfer": 1, "balance_info": 1}
        assert memory_store.list_invoices() == []

    def test_owner_from_pipeline_default(self, memory_store, pdf_document):
        pipeline = _pipeline(memory_store, bank_statement_payload(), owner_name=OWNER_NAME)

        outcome = pipeline.submit(pdf_document)

        assert outcome.report.noise_dropped["internal_transfer"] == 1

    def test_without_owner_transfer_kept(self, memory_store, pdf_document):
        outcome = _pipeline(memory_store, bank_statement_payload()).submit(pdf_document)
        assert len(outcome.entries) == 3

    def test_negative_amounts_normalized(self, memory_store, pdf_document):
        outcome = _pipeline(memory_store, bank_statement_payload()).submit(pdf_document)

        pharmacy = next(e for e in outcome.entries if e.description == "Farmácia Popular")
        assert pharmacy.amount == Decimal("45.50")
        assert pharmacy.type == TransactionType.EXPENSE
        assert pharmacy.linked_to_invoice is False

    def test_no_fingerprint_guard(self, memory_store, pdf_document):
        pipeline = _pipeline(memory_store, bank_statement_payload())

        assert isinstance(pipeline.submit(pdf_document), Committed)
        assert isinstance(pipeline.submit(pdf_document), Committed)


def _subscription_payload(description: str) -> dict:
    return {
        "documentType": "bank_statement",
        "transactions": [
            {
                "description": description,
                "amount": 44.9,
                "date": "2024-10-10",
                "category": "Assinaturas",
                "type": "EXPENSE",
                "isRecurring": True,
            },
            {
                "description": "Padaria",
                "amount": 12,
                "date": "2024-10-10",
                "category": "Alimentação",
                "type": "EXPENSE",
            },
        ],
    }


class TestDuplicateSubscriptions:
    def test_existing_subscription_skipped(self, memory_store, pdf_document):
        memory_store.put_entries([make_entry("Netflix", "39.90", is_recurring=True)])
        pipeline = _pipeline(memory_store, _subscription_payload("NETFLIX.COM"))

        outcome = pipeline.submit(pdf_document)

        assert [e.description for e in outcome.entries] == ["Padaria"]
        assert outcome.report.duplicate_subscriptions == 1

    def test_alias_subscription_skipped(self, memory_store, pdf_document):
        memory_store.put_entries([make_entry("Amazon Prime", "19.90", is_recurring=True)])

        outcome = _pipeline(memory_store, _subscription_payload("Prime Video")).submit(pdf_document)

        assert outcome.report.duplicate_subscriptions == 1

    def test_known_recurring_sent_to_oracle(self, memory_store, pdf_document):
        memory_store.put_entries([make_entry("Spotify", "21.90", is_recurring=True)])
        oracle = ReplayOracle(_subscription_payload("Netflix"))

        _pipeline(memory_store, None, oracle=oracle).submit(pdf_document)

        assert oracle.requests[0].known_recurring == ["Spotify"]

    def test_new_subscription_kept(self, memory_store, pdf_document):
        outcome = _pipeline(memory_store, _subscription_payload("Netflix")).submit(pdf_document)

        assert len(outcome.entries) == 2
        assert memory_store.get_recurring_descriptions() == ["Netflix"]


class TestAdmissionOutcomes:
    """Tests for outcomes decided before or around the oracle call."""

    def test_consent_required(self, memory_store, pdf_document):
        oracle = ReplayOracle(invoice_payload())
        pipeline = _pipeline(memory_store, None, consent=False, oracle=oracle)

        outcome = pipeline.submit(pdf_document)

        assert isinstance(outcome, ConsentRequired)
        assert outcome.notice_version == "1.0"
        assert oracle.requests == []
        assert memory_store.get_rate_window().timestamps == []

    def test_declined_consent(self, memory_store, pdf_document):
        pipeline = _pipeline(memory_store, invoice_payload())
        pipeline.consent_gate.record_decision(accepted=False)

        assert isinstance(pipeline.submit(pdf_document), ConsentRequired)

    def test_document_rejected(self, memory_store):
        oracle = ReplayOracle(invoice_payload())
        pipeline = _pipeline(memory_store, None, oracle=oracle)

        outcome = pipeline.submit(SourceDocument(b"a,b", "text/csv", "extrato.csv"))

        assert isinstance(outcome, DocumentRejected)
        assert "Unsupported media type" in outcome.reason
        assert oracle.requests == []

    def test_document_size_limit(self, memory_store, pdf_document):
        pipeline = _pipeline(memory_store, invoice_payload(), max_document_bytes=8)
        assert isinstance(pipeline.submit(pdf_document), DocumentRejected)

    def test_twenty_first_import_rate_limited(self, memory_store, pdf_document):
        clock = FakeClock()
        pipeline = _pipeline(memory_store, bank_statement_payload(), clock=clock)

        for _ in range(20):
            assert isinstance(pipeline.submit(pdf_document), Committed)

        outcome = pipeline.submit(pdf_document)

        assert isinstance(outcome, RateLimited)
        assert outcome.retry_after_seconds > 0

        clock.advance(outcome.retry_after_seconds + 1)
        assert isinstance(pipeline.submit(pdf_document), Committed)

    def test_rate_limited_skips_oracle(self, memory_store, pdf_document):
        oracle = ReplayOracle(bank_statement_payload())
        pipeline = _pipeline(memory_store, None, oracle=oracle)
        pipeline.rate_limiter.max_imports = 0

        assert isinstance(pipeline.submit(pdf_document), RateLimited)
        assert oracle.requests == []


class TestExtractionFailures:
    def test_schema_error(self, memory_store, pdf_document):
        outcome = _pipeline(memory_store, "I could not read this document").submit(pdf_document)

        assert isinstance(outcome, ExtractionRejected)
        assert "not valid JSON" in outcome.error
        assert memory_store.list_entries() == []
        assert memory_store.get_rate_window().timestamps == []

    def test_envelope_violation_details(self, memory_store, pdf_document):
        payload = invoice_payload()
        payload["documentType"] = "receipt"

        outcome = _pipeline(memory_store, payload).submit(pdf_document)

        assert isinstance(outcome, ExtractionRejected)
        assert outcome.details

    def test_only_noise(self, memory_store, pdf_document):
        payload = {
            "documentType": "bank_statement",
            "transactions": [
                {"description": "Saldo anterior", "amount": 10, "date": "2024-10-01", "category": "x", "type": "INCOME"}
            ],
        }

        outcome = _pipeline(memory_store, payload).submit(pdf_document)

        assert isinstance(outcome, NoTransactionsFound)
        assert outcome.report.noise_total == 1
        assert memory_store.get_rate_window().timestamps == []

    def test_empty_transactions(self, memory_store, pdf_document):
        outcome = _pipeline(memory_store, {"documentType": "other", "transactions": []}).submit(pdf_document)
        assert isinstance(outcome, NoTransactionsFound)

    def test_oracle_error_propagates_and_releases_slot(self, memory_store, pdf_document):
        oracle = MagicMock()
        oracle.name = "broken"
        oracle.extract.side_effect = OracleError("Gemini API error 503")
        pipeline = _pipeline(memory_store, None, oracle=oracle)

        with pytest.raises(OracleError):
            pipeline.submit(pdf_document)

        assert memory_store.get_rate_window().timestamps == []
        assert memory_store.list_entries() == []

    def test_replace_oracle(self, memory_store, pdf_document):
        first = ReplayOracle({"documentType": "other", "transactions": []})
        pipeline = _pipeline(memory_store, None, oracle=first)

        previous = pipeline.replace_oracle(ReplayOracle(invoice_payload()))

        assert previous is first
        assert isinstance(pipeline.submit(pdf_document), Committed)


class TestEncryptedLedger:
    """Tests for sealing sensitive fields at rest."""

    def test_entries_sealed_in_store(self, memory_store, pdf_document):
        pipeline = _pipeline(memory_store, invoice_payload(), codec=_codec())

        outcome = pipeline.submit(pdf_document)

        assert outcome.entries[0].description == "Supermercado Central"
        stored = memory_store.list_entries()
        assert all(looks_encrypted(e.description) for e in stored)
        assert all(looks_encrypted(e.issuer) for e in stored)
        assert stored[0].amount == outcome.entries[0].amount
        assert looks_encrypted(memory_store.list_invoices()[0].issuer)

    def test_read_side_reveals(self, memory_store, pdf_document):
        pipeline = _pipeline(memory_store, invoice_payload(), codec=_codec())
        pipeline.submit(pdf_document)

        assert pipeline.list_entries()[0].description == "Supermercado Central"
        assert pipeline.list_invoices()[0].issuer == "Banco Exemplo"

    def test_duplicate_detected_with_encryption(self, memory_store, pdf_document):
        pipeline = _pipeline(memory_store, invoice_payload(), codec=_codec())
        pipeline.submit(pdf_document)

        outcome = pipeline.submit(pdf_document)

        assert isinstance(outcome, DuplicateDetected)
        assert outcome.prior_record.issuer == "Banco Exemplo"

    def test_sealed_subscriptions_still_matched(self, memory_store, pdf_document):
        codec = _codec()
        memory_store.put_entries([codec.seal_entry(make_entry("Netflix", "39.90", is_recurring=True))])
        payload = _subscription_payload("Netflix")

        outcome = _pipeline(memory_store, payload, codec=codec).submit(pdf_document)

        assert outcome.report.duplicate_subscriptions == 1

    def test_seal_failure_aborts_import(self, memory_store, pdf_document):
        broken = FieldCodec("user-123", lambda: b"short", iterations=1_000)
        pipeline = _pipeline(memory_store, invoice_payload(), codec=broken)

        with pytest.raises(CryptoFailure):
            pipeline.submit(pdf_document)

        assert memory_store.list_entries() == []
        assert memory_store.list_invoices() == []
        assert memory_store.get_rate_window().timestamps == []


class TestConcurrentImports:
    def test_same_invoice_commits_once(self, temp_db):
        store = SQLiteLedgerStore(temp_db)
        ConsentGate(store).record_decision(accepted=True)
        document = SourceDocument(b"%PDF-1.4 fatura", "application/pdf", "fatura.pdf")
        outcomes = []
        lock = threading.Lock()
        barrier = threading.Barrier(5)

        def worker():
            pipeline = IntakePipeline(store=SQLiteLedgerStore(temp_db), oracle=ReplayOracle(invoice_payload()))
            barrier.wait()
            outcome = pipeline.submit(document)
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(isinstance(o, Committed) for o in outcomes) == 1
        assert sum(isinstance(o, DuplicateDetected) for o in outcomes) == 4
        assert len(store.list_invoices()) == 1
        assert len(store.list_entries()) == 8
        assert len(store.get_rate_window().timestamps) == 1


class TestBuildPipeline:
    def test_wired_from_config(self, tmp_path, pdf_document):
        config = Config(state_db_path=tmp_path / "ledger.db", owner_name=OWNER_NAME)
        config.limits.max_imports_per_hour = 3
        config.encryption.enabled = True
        config.encryption.user_id = "user-123"
        config.encryption.iterations = 1_000

        pipeline = build_pipeline(config, oracle=ReplayOracle(bank_statement_payload()))

        assert isinstance(pipeline.store, SQLiteLedgerStore)
        assert pipeline.rate_limiter.max_imports == 3
        assert pipeline.codec is not None
        assert pipeline.owner_name == OWNER_NAME

        pipeline.consent_gate.record_decision(accepted=True)
        outcome = pipeline.submit(pdf_document)

        assert isinstance(outcome, Committed)
        assert outcome.report.noise_dropped["internal_transfer"] == 1
        assert all(looks_encrypted(e.description) for e in pipeline.store.list_entries())

    def test_memory_store_injected(self):
        store = InMemoryLedgerStore()
        pipeline = build_pipeline(Config(), store=store, oracle=ReplayOracle({}))

        assert pipeline.store is store
        assert pipeline.codec is None
