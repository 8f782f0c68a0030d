"""Tests for admission control: documents, consent and rate limiting."""

import threading

import pytest

from conftest import PDF_BYTES, FakeClock
from ledger_intake.admission import (
    ConsentGate,
    ImportRateLimiter,
    SourceDocument,
    guess_media_type,
    import_privacy_notice,
    validate_document,
)
from ledger_intake.state_store import InMemoryLedgerStore, SQLiteLedgerStore


class TestValidateDocument:
    """Tests for document admission checks."""

    def test_valid_pdf(self, pdf_document):
        result = validate_document(pdf_document)

        assert result.valid
        assert result.error is None
        assert result.warnings == []

    def test_empty(self):
        result = validate_document(SourceDocument(b"", "application/pdf", "fatura.pdf"))

        assert not result.valid
        assert result.error == "Document is empty"

    def test_too_large(self):
        result = validate_document(SourceDocument(PDF_BYTES, "application/pdf"), max_bytes=10)

        assert not result.valid
        assert result.error.startswith("Document too large")

    def test_unsupported_media_type(self):
        result = validate_document(SourceDocument(b"a;b;c", "text/csv", "extrato.csv"))

        assert not result.valid
        assert "Unsupported media type" in result.error

    def test_media_type_case_insensitive(self):
        assert validate_document(SourceDocument(PDF_BYTES, "Application/PDF")).valid

    def test_extension_mismatch_warns(self):
        result = validate_document(SourceDocument(PDF_BYTES, "application/pdf", "fatura.png"))

        assert result.valid
        assert any("extension" in w for w in result.warnings)

    def test_sensitive_filename_warns(self):
        result = validate_document(SourceDocument(PDF_BYTES, "application/pdf", "extrato_cpf_123.456.789-00.pdf"))

        assert result.valid
        assert any("sensitive" in w for w in result.warnings)

    def test_signature_mismatch_warns(self):
        result = validate_document(SourceDocument(b"hello", "application/pdf", "fatura.pdf"))

        assert result.valid
        assert result.warnings == ["Content does not look like application/pdf"]

    def test_from_path(self, tmp_path):
        path = tmp_path / "fatura.pdf"
        path.write_bytes(PDF_BYTES)

        document = SourceDocument.from_path(path)

        assert document.media_type == "application/pdf"
        assert document.filename == "fatura.pdf"
        assert document.size == len(PDF_BYTES)

    def test_guess_media_type(self):
        assert guess_media_type("foto.JPG") == "image/jpeg"
        assert guess_media_type("scan.webp") == "image/webp"


class TestConsentGate:
    """Tests for the import consent gate."""

    def test_no_consent_initially(self, memory_store):
        assert not ConsentGate(memory_store).has_consent()

    def test_accept(self, memory_store, clock):
        gate = ConsentGate(memory_store, clock=clock)

        record = gate.record_decision(accepted=True)

        assert gate.has_consent()
        assert record.version == "1.0"
        assert record.timestamp == clock.now

    def test_decline_overwrites_accept(self, memory_store):
        gate = ConsentGate(memory_store)
        gate.record_decision(accepted=True)
        gate.record_decision(accepted=False)

        assert not gate.has_consent()
        assert memory_store.get_consent().accepted is False

    def test_notice_version_bump_requires_new_consent(self, memory_store):
        ConsentGate(memory_store, notice_version="1.0").record_decision(accepted=True)

        assert not ConsentGate(memory_store, notice_version="2.0").has_consent()

    def test_notice_render(self):
        text = import_privacy_notice().render()

        assert "(v1.0)" in text
        assert "Google Gemini" in text
        assert "not stored" in text


class TestImportRateLimiter:
    """Tests for the sliding-window import limiter."""

    def test_twenty_first_import_limited(self, memory_store, clock):
        limiter = ImportRateLimiter(memory_store, clock=clock)

        for i in range(20):
            decision = limiter.reserve()
            assert decision.allowed
            assert decision.remaining == 19 - i

        decision = limiter.reserve()

        assert not decision.allowed
        assert decision.retry_after_seconds == 3600
        assert len(memory_store.get_rate_window().timestamps) == 20

    def test_retry_after_counts_down(self, memory_store, clock):
        limiter = ImportRateLimiter(memory_store, max_imports=1, clock=clock)
        limiter.reserve()

        clock.advance(1800.5)

        decision = limiter.reserve()
        assert decision.retry_after_seconds == 1800

    def test_allowed_after_window_passes(self, memory_store, clock):
        limiter = ImportRateLimiter(memory_store, max_imports=2, clock=clock)
        limiter.reserve()
        limiter.reserve()
        assert not limiter.reserve().allowed

        clock.advance(3601)

        assert limiter.reserve().allowed

    def test_sliding_window(self, memory_store, clock):
        """Only the expired timestamps free slots."""
        limiter = ImportRateLimiter(memory_store, max_imports=2, clock=clock)
        limiter.reserve()
        clock.advance(1000)
        limiter.reserve()

        clock.advance(2601)
        assert limiter.reserve().allowed
        assert not limiter.reserve().allowed

    def test_check_does_not_consume(self, memory_store, clock):
        limiter = ImportRateLimiter(memory_store, max_imports=1, clock=clock)

        assert limiter.check().allowed
        assert limiter.check().remaining == 1
        assert memory_store.get_rate_window().timestamps == []

    def test_release_returns_slot(self, memory_store, clock):
        limiter = ImportRateLimiter(memory_store, max_imports=1, clock=clock)

        decision = limiter.reserve()
        assert not limiter.check().allowed

        limiter.release(decision.reservation)
        assert limiter.check().allowed

    def test_release_unknown_reservation(self, memory_store, clock):
        limiter = ImportRateLimiter(memory_store, max_imports=3, clock=clock)
        limiter.reserve()

        limiter.release(12345.0)

        assert len(memory_store.get_rate_window().timestamps) == 1

    def test_persisted_window_shared(self, temp_db, clock):
        """Two limiters over one database count the same imports."""
        first = ImportRateLimiter(SQLiteLedgerStore(temp_db), max_imports=2, clock=clock)
        second = ImportRateLimiter(SQLiteLedgerStore(temp_db), max_imports=2, clock=clock)

        first.reserve()
        second.reserve()

        assert not first.reserve().allowed

    @pytest.mark.parametrize("store_kind", ["memory", "sqlite"])
    def test_concurrent_reservations_never_exceed_cap(self, store_kind, temp_db):
        store = InMemoryLedgerStore() if store_kind == "memory" else SQLiteLedgerStore(temp_db)
        limiter = ImportRateLimiter(store, max_imports=5, clock=FakeClock())
        results = []
        lock = threading.Lock()

        def worker():
            decision = limiter.reserve()
            with lock:
                results.append(decision.allowed)

        threads = [threading.Thread(target=worker) for _ in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 5
        assert len(store.get_rate_window().timestamps) == 5
