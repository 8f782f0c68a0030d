"""
Text sanitization for untrusted oracle output and privacy-safe logging.

Oracle text fields are cleaned before they can reach the ledger, and any
record text written to logs goes through mask_sensitive_data() first.
"""

import re

# Replacement applied per pattern, in order (CNPJ before CPF so the longer
# document number is not half-masked as a CPF).
SENSITIVE_PATTERNS: list[tuple[str, str]] = [
    # CNPJ: 12.345.678/0001-90
    (r"\b\d{2}\.?\d{3}\.?\d{3}/?\d{4}-?\d{2}\b", "[CNPJ]"),
    # CPF: 123.456.789-00
    (r"\b\d{3}\.?\d{3}\.?\d{3}-?\d{2}\b", "[CPF]"),
    # Full card numbers (16 digits, possibly separated)
    (r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b", "[CARD]"),
    # IBAN patterns (various country formats)
    (r"\b[A-Z]{2}\d{2}[A-Z0-9]{4,30}\b", "[IBAN]"),
    # Email addresses
    (r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", "[EMAIL]"),
    # Brazilian phone numbers: (11) 91234-5678
    (r"\(?\b\d{2}\)?\s?\d{4,5}-\d{4}\b", "[PHONE]"),
]

_SENSITIVE_REGEXES = [(re.compile(p), repl) for p, repl in SENSITIVE_PATTERNS]

_HTML_TAG = re.compile(r"<[^>]*>")
_SCRIPT_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)

MAX_DESCRIPTION_LENGTH = 200
MAX_NAME_LENGTH = 100
MAX_TAGS = 10
MAX_TAG_LENGTH = 30


def mask_sensitive_data(text: str | None) -> str:
    """Mask personal identifiers in text destined for logs."""
    if not text:
        return ""
    masked = text
    for regex, replacement in _SENSITIVE_REGEXES:
        masked = regex.sub(replacement, masked)
    return masked


def sanitize_text(value: str | None, max_length: int = MAX_DESCRIPTION_LENGTH) -> str:
    """
    Strip markup and collapse whitespace.

    - Removes HTML tags and stray angle brackets
    - Removes javascript: protocols and inline event handlers
    - Collapses whitespace and truncates to max_length
    """
    if not value or not isinstance(value, str):
        return ""

    result = _HTML_TAG.sub("", value)
    result = result.replace("<", "").replace(">", "")
    result = _SCRIPT_PROTOCOL.sub("", result)
    result = _EVENT_HANDLER.sub("", result)
    result = " ".join(result.split())

    return result[:max_length].rstrip()


def sanitize_name(value: str | None) -> str | None:
    """Sanitize a person name (debtor, reimbursed_by). Empty becomes None."""
    cleaned = sanitize_text(value, MAX_NAME_LENGTH)
    return cleaned or None


def sanitize_tags(tags: list[str] | None) -> list[str]:
    """Lowercase, de-duplicate and bound a tag list, preserving order."""
    if not tags:
        return []

    result: list[str] = []
    for tag in tags:
        cleaned = sanitize_text(tag, MAX_TAG_LENGTH).lower()
        if cleaned and cleaned not in result:
            result.append(cleaned)
        if len(result) >= MAX_TAGS:
            break
    return result
