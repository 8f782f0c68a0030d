"""
SSOT (Single Source of Truth) schemas for the intake pipeline.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .fingerprint import FINGERPRINT_VERSION, compute_invoice_fingerprint, normalize_due_date
from .installments import (
    InstallmentError,
    build_entry,
    expand_installments,
    resolve_base_payment_date,
    shift_months,
    strip_installment_marker,
)
from .ledger import (
    NO_DUE_DATE,
    ConsentRecord,
    DocumentType,
    InvoiceRecord,
    LedgerEntry,
    RateWindow,
    TransactionType,
    new_entry_id,
    utc_now_iso,
)
from .oracle_response import (
    DecodedExtraction,
    DecodeResult,
    OracleEnvelope,
    RawExtractedRecord,
    RecordRejection,
    SchemaError,
    decode_oracle_response,
)
from .outcomes import (
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
from .sanitization import mask_sensitive_data, sanitize_name, sanitize_tags, sanitize_text
from .validation import RecordValidationError, ValidatedRecord, normalize_amount, validate_record

__all__ = [
    # Ledger (canonical output schema)
    "LedgerEntry",
    "InvoiceRecord",
    "ConsentRecord",
    "RateWindow",
    "TransactionType",
    "DocumentType",
    "NO_DUE_DATE",
    "new_entry_id",
    "utc_now_iso",
    # Oracle response (canonical input schema)
    "RawExtractedRecord",
    "OracleEnvelope",
    "DecodedExtraction",
    "DecodeResult",
    "RecordRejection",
    "SchemaError",
    "decode_oracle_response",
    # Validation (SSOT)
    "ValidatedRecord",
    "RecordValidationError",
    "validate_record",
    "normalize_amount",
    # Sanitization
    "mask_sensitive_data",
    "sanitize_text",
    "sanitize_name",
    "sanitize_tags",
    # Fingerprint
    "compute_invoice_fingerprint",
    "normalize_due_date",
    "FINGERPRINT_VERSION",
    # Installments
    "InstallmentError",
    "expand_installments",
    "resolve_base_payment_date",
    "shift_months",
    "strip_installment_marker",
    "build_entry",
    # Outcomes
    "Committed",
    "DuplicateDetected",
    "RateLimited",
    "ConsentRequired",
    "NoTransactionsFound",
    "DocumentRejected",
    "ExtractionRejected",
    "ImportReport",
    "IntakeOutcome",
]
