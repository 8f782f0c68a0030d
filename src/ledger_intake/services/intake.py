"""
Intake Pipeline Service.

Turns one financial document into committed ledger entries.

Flow:
1. Admission: document checks -> consent gate -> rate limit reservation
2. Oracle extraction (injected capability) and strict decoding
3. Per record: validation -> noise classification
4. Invoices: fingerprint over the kept lines, early duplicate exit
5. Duplicate subscription filter -> installment expansion
6. Invoices: atomic fingerprint commit; other documents: plain commit
7. Optional sealing of sensitive fields before persistence

Every terminal condition is an explicit outcome type (see schemas.outcomes).
The rate-limit reservation is released on every outcome except Committed and
on exceptions, so only successful imports count against the window.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Optional

from ..admission.consent import ConsentGate
from ..admission.documents import SourceDocument, validate_document
from ..admission.rate_limit import ImportRateLimiter
from ..classification.noise import classify_record
from ..classification.subscriptions import SubscriptionMatcher
from ..config import AmountValidationConfig, Config
from ..crypto.field_codec import FieldCodec, generate_salt
from ..oracle.base import ExtractionOracle, ExtractionRequest, OracleError
from ..oracle.gemini import GeminiExtractionOracle
from ..oracle.replay import ReplayOracle
from ..schemas.fingerprint import compute_invoice_fingerprint, normalize_due_date
from ..schemas.installments import expand_installments, resolve_base_payment_date
from ..schemas.ledger import (
    InvoiceRecord,
    LedgerEntry,
    TransactionType,
    new_entry_id,
    utc_now_iso,
)
from ..schemas.oracle_response import SchemaError, decode_oracle_response
from ..schemas.outcomes import (
    Committed,
    ConsentRequired,
    DocumentRejected,
    DuplicateDetected,
    ExtractionRejected,
    ImportReport,
    IntakeOutcome,
    NoTransactionsFound,
    RateLimited,
)
from ..schemas.sanitization import mask_sensitive_data, sanitize_name
from ..schemas.validation import RecordValidationError, ValidatedRecord, validate_record
from ..state_store.base import LedgerStore
from ..state_store.sqlite_store import SQLiteLedgerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportContext:
    """Per-submission options."""

    owner_name: Optional[str] = None
    guidance: Optional[str] = None


class IntakePipeline:
    """
    Document intake pipeline.

    Single-caller request/response: submit() runs to completion on the
    calling thread. Concurrent submit() calls are safe because the only
    shared state lives behind the store's atomic regions.
    """

    def __init__(
        self,
        store: LedgerStore,
        oracle: ExtractionOracle,
        consent_gate: Optional[ConsentGate] = None,
        rate_limiter: Optional[ImportRateLimiter] = None,
        codec: Optional[FieldCodec] = None,
        amount_config: Optional[AmountValidationConfig] = None,
        matcher: Optional[SubscriptionMatcher] = None,
        max_document_bytes: int = 4 * 1024 * 1024,
        owner_name: Optional[str] = None,
    ):
        """
        Initialize the intake pipeline.

        Args:
            store: Ledger persistence
            oracle: Extraction capability (swap with replace_oracle)
            consent_gate: Consent gate (default: notice v1.0 on store)
            rate_limiter: Rate limiter (default: 20 per hour on store)
            codec: Field codec; when set, sensitive fields are sealed at rest
            amount_config: Amount validation settings
            matcher: Duplicate subscription matcher
            max_document_bytes: Upper bound on document size
            owner_name: Default account holder name
        """
        self.store = store
        self._oracle = oracle
        self.consent_gate = consent_gate or ConsentGate(store)
        self.rate_limiter = rate_limiter or ImportRateLimiter(store)
        self.codec = codec
        self.amount_config = amount_config or AmountValidationConfig()
        self.matcher = matcher or SubscriptionMatcher()
        self.max_document_bytes = max_document_bytes
        self.owner_name = owner_name

    @property
    def oracle(self) -> ExtractionOracle:
        return self._oracle

    def replace_oracle(self, oracle: ExtractionOracle) -> ExtractionOracle:
        """Swap the extraction oracle (e.g. after credential rotation).

        Returns:
            The previous oracle; the caller decides whether to close it.
        """
        previous = self._oracle
        self._oracle = oracle
        logger.info(f"Extraction oracle replaced: {previous.name} -> {oracle.name}")
        return previous

    # === Entry point ===

    def submit(
        self,
        document: SourceDocument,
        context: Optional[ImportContext] = None,
    ) -> IntakeOutcome:
        """
        Import one document.

        Returns:
            Exactly one outcome: Committed, DuplicateDetected, RateLimited,
            ConsentRequired, NoTransactionsFound, DocumentRejected or
            ExtractionRejected

        Raises:
            OracleError: the oracle call failed (no retry; slot released)
            CryptoFailure: a sensitive field could not be sealed
        """
        context = context or ImportContext()

        validation = validate_document(document, self.max_document_bytes)
        if not validation.valid:
            logger.info(f"Document rejected: {validation.error}")
            return DocumentRejected(reason=validation.error or "invalid document")
        for warning in validation.warnings:
            logger.warning(warning)

        if not self.consent_gate.has_consent():
            logger.info("Import blocked: consent required")
            return ConsentRequired(notice_version=self.consent_gate.notice_version)

        decision = self.rate_limiter.reserve()
        if not decision.allowed:
            return RateLimited(retry_after_seconds=decision.retry_after_seconds)

        committed = False
        try:
            outcome = self._process(document, context)
            committed = isinstance(outcome, Committed)
            return outcome
        finally:
            if not committed and decision.reservation is not None:
                self.rate_limiter.release(decision.reservation)

    # === Steps ===

    def _known_recurring(self) -> list[str]:
        """Existing recurring descriptions, revealed when sealed."""
        descriptions = self.store.get_recurring_descriptions()
        if self.codec is None:
            return descriptions
        revealed = []
        for description in descriptions:
            value = self.codec.reveal_value(description, "description")
            revealed.append(value if isinstance(value, str) else str(value))
        return revealed

    def _extract(self, document: SourceDocument, context: ImportContext, known_recurring: list[str]):
        request = ExtractionRequest(
            content=document.content,
            media_type=document.media_type,
            guidance=context.guidance,
            known_recurring=known_recurring,
        )
        logger.info(f"Extracting document with {self._oracle.name} ({document.size} bytes)")
        try:
            return self._oracle.extract(request)
        except OracleError:
            logger.error(f"Extraction failed with {self._oracle.name}")
            raise

    def _process(self, document: SourceDocument, context: ImportContext) -> IntakeOutcome:
        known_recurring = self._known_recurring()
        payload = self._extract(document, context, known_recurring)

        decoded = decode_oracle_response(payload)
        if isinstance(decoded, SchemaError):
            logger.warning(f"Oracle response rejected: {decoded.message}")
            for error in decoded.errors:
                logger.debug(f"  {error}")
            return ExtractionRejected(error=decoded.message, details=list(decoded.errors))

        report = ImportReport(
            document_type=decoded.document_type.value,
            records_received=len(decoded.records) + len(decoded.rejections),
        )
        for rejection in decoded.rejections:
            report.validation_errors.append(f"record {rejection.index}: {'; '.join(rejection.errors)}")
            logger.debug(f"Record {rejection.index} rejected ({rejection.hint!r}): {rejection.errors}")

        owner_name = context.owner_name or self.owner_name
        invoice_due_date = decoded.invoice_due_date if decoded.is_invoice else None
        issuer = sanitize_name(decoded.issuer)

        candidates: list[ValidatedRecord] = []
        for index, raw in decoded.numbered_records():
            try:
                record = validate_record(raw, self.amount_config)
            except RecordValidationError as e:
                report.validation_errors.append(f"record {index}: {e}")
                logger.debug(f"Record dropped ({mask_sensitive_data(raw.description)[:60]!r}): {e}")
                continue

            classification = classify_record(record, decoded.document_type, owner_name)
            if classification.dropped:
                report.noise_dropped[classification.reason.value] += 1
                logger.debug(
                    f"Noise dropped ({classification.reason.value}/{classification.rule}): "
                    f"{mask_sensitive_data(record.description)[:60]!r}"
                )
                continue

            candidates.append(record)

        # The fingerprint covers every line that is real money movement,
        # including recurring lines the subscription filter drops below
        fingerprint: Optional[str] = None
        if decoded.is_invoice and candidates:
            fingerprint = compute_invoice_fingerprint(
                invoice_due_date, [(record.description, record.amount) for record in candidates]
            )
            # Early exit; commit_invoice() is the authoritative check
            prior = self.store.get_invoice(fingerprint)
            if prior is not None:
                logger.info(f"Duplicate invoice (due {prior.due_date}, imported {prior.imported_at})")
                return DuplicateDetected(prior_record=self._reveal_invoice(prior))

        survivors: list[ValidatedRecord] = []
        for record in candidates:
            if record.is_recurring and known_recurring:
                match = self.matcher.match(record.description, known_recurring)
                if match is not None:
                    report.duplicate_subscriptions += 1
                    logger.debug(f"Duplicate subscription ({match.rule.value}) dropped")
                    continue
            survivors.append(record)

        entries: list[LedgerEntry] = []
        contributing: list[ValidatedRecord] = []
        for record in survivors:
            try:
                expanded = expand_installments(
                    record,
                    resolve_base_payment_date(record, invoice_due_date),
                    issuer=issuer,
                    credit_card_issuer=issuer if decoded.is_invoice else None,
                    linked_to_invoice=decoded.is_invoice,
                )
            except RecordValidationError as e:
                report.validation_errors.append(f"installments: {e}")
                logger.debug(f"Installment expansion failed: {e}")
                continue
            entries.extend(expanded)
            contributing.append(record)

        report.records_kept = len(contributing)
        report.entries_generated = len(entries)

        logger.info(
            f"Document {report.document_type}: {report.records_received} records, "
            f"{report.records_kept} kept, {report.noise_total} noise, "
            f"{report.duplicate_subscriptions} duplicate subscriptions, "
            f"{len(report.validation_errors)} invalid"
        )

        if not entries:
            return NoTransactionsFound(report=report)

        if fingerprint is not None:
            return self._commit_invoice(entries, contributing, fingerprint, invoice_due_date, issuer, report)

        self.store.put_entries(self._seal(entries))
        logger.info(f"Committed {len(entries)} entries")
        return Committed(entries=entries, invoice_record=None, report=report)

    def _seal(self, entries: list[LedgerEntry]) -> list[LedgerEntry]:
        if self.codec is None:
            return entries
        return [self.codec.seal_entry(entry) for entry in entries]

    def _commit_invoice(
        self,
        entries: list[LedgerEntry],
        records: list[ValidatedRecord],
        fingerprint: str,
        due_date: Optional[date],
        issuer: Optional[str],
        report: ImportReport,
    ) -> IntakeOutcome:
        record = InvoiceRecord(
            id=new_entry_id(),
            due_date=normalize_due_date(due_date),
            total_amount=sum(
                (r.amount for r in records if r.type == TransactionType.EXPENSE), Decimal("0")
            ),
            transaction_count=len(entries),
            imported_at=utc_now_iso(),
            fingerprint=fingerprint,
            transaction_ids=[entry.id for entry in entries],
            issuer=issuer,
        )
        stored = replace(record, issuer=self.codec.encrypt(issuer)) if self.codec and issuer else record

        commit = self.store.commit_invoice(stored, self._seal(entries))
        if not commit.committed:
            logger.info("Duplicate invoice detected at commit")
            return DuplicateDetected(prior_record=self._reveal_invoice(commit.record))

        logger.info(f"Committed invoice with {len(entries)} entries (due {record.due_date})")
        return Committed(entries=entries, invoice_record=record, report=report)

    def _reveal_invoice(self, record: InvoiceRecord) -> InvoiceRecord:
        if self.codec is None or record.issuer is None:
            return record
        return replace(record, issuer=self.codec.reveal_value(record.issuer, "issuer"))

    # === Read side ===

    def list_entries(self) -> list[LedgerEntry]:
        """Committed entries with sensitive fields revealed."""
        entries = self.store.list_entries()
        if self.codec is None:
            return entries
        return [self.codec.reveal_entry(entry) for entry in entries]

    def list_invoices(self) -> list[InvoiceRecord]:
        """Invoice records with the issuer revealed."""
        return [self._reveal_invoice(record) for record in self.store.list_invoices()]


def build_codec(config: Config, store: LedgerStore) -> Optional[FieldCodec]:
    """Field codec when encryption is enabled, else None."""
    if not config.encryption.enabled:
        return None
    return FieldCodec(
        user_id=config.encryption.user_id or "",
        salt_provider=lambda: store.get_or_create_salt(generate_salt),
        iterations=config.encryption.iterations,
    )


def build_oracle(config: Config, replay_path: Optional[Path] = None) -> ExtractionOracle:
    """Construct the configured extraction oracle."""
    if replay_path is not None:
        return ReplayOracle.from_file(replay_path)
    if config.oracle.provider == "replay":
        raise OracleError("The replay provider needs a captured response file")
    return GeminiExtractionOracle(
        api_key=config.oracle.api_key or "",
        model=config.oracle.model,
        base_url=config.oracle.base_url,
        timeout_seconds=config.oracle.timeout_seconds,
    )


def build_pipeline(
    config: Config,
    store: Optional[LedgerStore] = None,
    oracle: Optional[ExtractionOracle] = None,
) -> IntakePipeline:
    """Composition root: wire store, oracle, admission and codec from config."""
    store = store or SQLiteLedgerStore(config.state_db_path)

    return IntakePipeline(
        store=store,
        oracle=oracle or build_oracle(config),
        consent_gate=ConsentGate(store, notice_version=config.consent.notice_version),
        rate_limiter=ImportRateLimiter(
            store,
            max_imports=config.limits.max_imports_per_hour,
            window_seconds=config.limits.window_seconds,
        ),
        codec=build_codec(config, store),
        amount_config=config.amount_validation,
        matcher=SubscriptionMatcher(
            aliases=config.subscriptions.aliases,
            containment_ratio=config.subscriptions.containment_ratio,
        ),
        max_document_bytes=config.limits.max_document_bytes,
        owner_name=config.owner_name,
    )
