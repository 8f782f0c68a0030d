"""
Admission control in front of the intake pipeline.

Order: document validation -> consent gate -> rate limiter.
"""

from .consent import CURRENT_NOTICE_VERSION, ConsentGate, PrivacyNotice, import_privacy_notice
from .documents import (
    ALLOWED_MEDIA_TYPES,
    DocumentValidation,
    SourceDocument,
    guess_media_type,
    validate_document,
)
from .rate_limit import ImportRateLimiter, RateDecision

__all__ = [
    "CURRENT_NOTICE_VERSION",
    "ConsentGate",
    "PrivacyNotice",
    "import_privacy_notice",
    "ALLOWED_MEDIA_TYPES",
    "DocumentValidation",
    "SourceDocument",
    "guess_media_type",
    "validate_document",
    "ImportRateLimiter",
    "RateDecision",
]
