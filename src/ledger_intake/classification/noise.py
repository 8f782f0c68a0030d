"""
Noise classification for extracted lines.

Drops lines that are not real money movement:
- internal_transfer: transfers between the owner's own accounts,
  investment applications and redemptions (bank statements)
- invoice_payment: bill-payment confirmations and auto-debit lines
- balance_info: previous/current/available balance and total lines

Classification looks at the line's own text only. The section a line was
printed under ("Pagamentos e Financiamentos", "Payments & Financing") is
never consulted, so a real purchase listed there is kept while a
"Pagamento em 05 OUT" summary line is dropped.

The oracle's shouldIgnore flag is honored, but every record is re-evaluated
by these rules first.
"""

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from ..schemas.ledger import DocumentType


class NoiseReason(str, Enum):
    """Why a line was dropped."""

    INTERNAL_TRANSFER = "internal_transfer"
    INVOICE_PAYMENT = "invoice_payment"
    BALANCE_INFO = "balance_info"
    ORACLE_FLAGGED = "oracle_flagged"


@dataclass(frozen=True)
class NoiseClassification:
    """Result of classifying one line. reason is None when the line is kept."""

    reason: Optional[NoiseReason] = None
    rule: Optional[str] = None

    @property
    def keep(self) -> bool:
        return self.reason is None

    @property
    def dropped(self) -> bool:
        return self.reason is not None


KEEP = NoiseClassification()


class ClassifiableRecord(Protocol):
    description: str
    should_ignore: bool
    ignore_reason: Optional[str]


# All patterns are matched against normalize_text() output
# (lowercase, accents removed, whitespace collapsed).

INVOICE_PAYMENT_PATTERNS: list[str] = [
    "pagamento fatura",
    "pgto fatura",
    "pagamento de fatura",
    "pagto cartao",
    "pagamento cartao",
    "debito automatico fatura",
    "pag fatura",
    "fatura cartao",
    "quitacao fatura",
    "pagamento recebido",
    "pagamento efetuado",
    "pagto efetuado",
]

# Issuer-specific auto-debit renderings ("DEB AUT FATURA", "DEBITO AUT. CARTAO")
INVOICE_AUTO_DEBIT = re.compile(r"\bdeb(?:ito)?\.?\s*aut(?:omatico)?\.?\s*(?:fat(?:ura)?|cart(?:ao)?)\b")

# Invoice payment summary: "Pagamento em 05 OUT", "Pagto recebido em 05/10"
INVOICE_PAYMENT_SUMMARY = re.compile(
    r"^pag(?:amento|to)?\.?\s+(?:recebido\s+|efetuado\s+)?em\s+\d{1,2}\b"
)

BALANCE_PATTERNS: list[str] = [
    "saldo anterior",
    "saldo atual",
    "saldo disponivel",
    "saldo do dia",
    "saldo final",
    "saldo inicial",
    "saldo em conta",
    "saldo bloqueado",
    "limite disponivel",
    "total da fatura",
    "fatura anterior",
]

INTERNAL_TRANSFER_PATTERNS: list[str] = [
    "transferencia entre contas",
    "transferencia propria",
    "investimento proprio",
]

INTERNAL_TRANSFER_WORDS = re.compile(r"\b(?:resgate|aplicacao|poupanca)\b")

TRANSFER_KEYWORDS = re.compile(r"\b(?:transferencia|transf|pix|ted|doc)\b")


def normalize_text(value: str | None) -> str:
    """Lowercase, strip accents and collapse whitespace."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.lower().split())


def _first_pattern(text: str, patterns: list[str]) -> Optional[str]:
    for pattern in patterns:
        if pattern in text:
            return pattern
    return None


def is_invoice_payment(text: str, document_type: DocumentType) -> Optional[str]:
    """Return the matched rule if the normalized text is a bill payment line."""
    rule = _first_pattern(text, INVOICE_PAYMENT_PATTERNS)
    if rule:
        return rule
    if INVOICE_AUTO_DEBIT.search(text):
        return "auto_debit"
    if document_type == DocumentType.INVOICE and INVOICE_PAYMENT_SUMMARY.search(text):
        return "payment_summary"
    return None


def is_balance_info(text: str) -> Optional[str]:
    """Return the matched rule if the normalized text is a balance line."""
    return _first_pattern(text, BALANCE_PATTERNS)


def is_internal_transfer(text: str, owner_name: Optional[str] = None) -> Optional[str]:
    """Return the matched rule if the normalized text moves money between own accounts."""
    rule = _first_pattern(text, INTERNAL_TRANSFER_PATTERNS)
    if rule:
        return rule

    match = INTERNAL_TRANSFER_WORDS.search(text)
    if match:
        return match.group(0)

    owner = normalize_text(owner_name)
    if owner and TRANSFER_KEYWORDS.search(text):
        if re.search(rf"\b{re.escape(owner)}\b", text):
            return "owner_transfer"

    return None


def _oracle_reason(ignore_reason: Optional[str]) -> NoiseReason:
    value = normalize_text(ignore_reason).replace(" ", "_")
    try:
        return NoiseReason(value)
    except ValueError:
        return NoiseReason.ORACLE_FLAGGED


def classify_record(
    record: ClassifiableRecord,
    document_type: DocumentType,
    owner_name: Optional[str] = None,
) -> NoiseClassification:
    """
    Classify one extracted line as keep or drop(reason).

    Pure function; safe to call concurrently.

    Args:
        record: Extracted record (description, should_ignore, ignore_reason)
        document_type: Kind of document the line came from
        owner_name: Account holder name for own-account transfer detection

    Returns:
        NoiseClassification (KEEP when the line is real money movement)
    """
    text = normalize_text(record.description)

    rule = is_balance_info(text)
    if rule:
        return NoiseClassification(NoiseReason.BALANCE_INFO, rule)

    rule = is_invoice_payment(text, document_type)
    if rule:
        return NoiseClassification(NoiseReason.INVOICE_PAYMENT, rule)

    if document_type != DocumentType.INVOICE:
        rule = is_internal_transfer(text, owner_name)
        if rule:
            return NoiseClassification(NoiseReason.INTERNAL_TRANSFER, rule)

    if record.should_ignore:
        return NoiseClassification(_oracle_reason(record.ignore_reason), "oracle")

    return KEEP
