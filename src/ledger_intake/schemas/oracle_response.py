"""
Strict decoding of extraction-oracle responses.

The oracle is untrusted: its JSON is decoded here, at the boundary, into
frozen pydantic models that forbid unknown fields. Decoding never raises;
it returns a tagged result:

- DecodedExtraction: envelope accepted. Individual transactions that failed
  validation are listed in ``rejections`` and the rest continue.
- SchemaError: the envelope itself is unusable; nothing may be imported.
"""

import json
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .ledger import DocumentType, TransactionType
from .sanitization import mask_sensitive_data


def _coerce_iso_date(value: Any) -> Any:
    """Accept 'YYYY-MM-DD' with an optional time suffix; drop the time."""
    if isinstance(value, str):
        value = value.strip()
        if len(value) > 10 and value[10] in ("T", " "):
            return value[:10]
    return value


def _coerce_amount(value: Any) -> Any:
    """Normalize oracle amount renderings to something Decimal accepts."""
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    if isinstance(value, float):
        return str(value)
    if isinstance(value, str):
        text = value.strip().replace("R$", "").replace(" ", "")
        if "," in text and "." in text:
            # 1.234,56 -> 1234.56
            text = text.replace(".", "").replace(",", ".")
        elif "," in text:
            text = text.replace(",", ".")
        try:
            Decimal(text)
        except InvalidOperation as e:
            raise ValueError(f"amount is not numeric: {value!r}") from e
        return text
    return value


class RawExtractedRecord(BaseModel):
    """One transaction line as guessed by the oracle (camelCase on the wire)."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    description: str
    amount: Decimal
    date: date
    payment_date: Optional[date] = Field(default=None, alias="paymentDate")
    category: str
    type: TransactionType
    is_recurring: Optional[bool] = Field(default=None, alias="isRecurring")
    current_installment: Optional[int] = Field(default=None, alias="currentInstallment")
    total_installments: Optional[int] = Field(default=None, alias="totalInstallments")
    should_ignore: Optional[bool] = Field(default=None, alias="shouldIgnore")
    ignore_reason: Optional[str] = Field(default=None, alias="ignoreReason")
    debtor: Optional[str] = None
    reimbursed_by: Optional[str] = Field(default=None, alias="reimbursedBy")
    tags: Optional[list[str]] = None

    @field_validator("date", "payment_date", mode="before")
    @classmethod
    def _dates(cls, value: Any) -> Any:
        return _coerce_iso_date(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Any:
        return _coerce_amount(value)

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value


class OracleEnvelope(BaseModel):
    """Top-level oracle response."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    document_type: DocumentType = Field(alias="documentType")
    issuer: Optional[str] = None
    invoice_due_date: Optional[date] = Field(default=None, alias="invoiceDueDate")
    transactions: list[Any]

    @field_validator("invoice_due_date", mode="before")
    @classmethod
    def _due_date(cls, value: Any) -> Any:
        return _coerce_iso_date(value)

    @field_validator("document_type", mode="before")
    @classmethod
    def _document_type(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


@dataclass(frozen=True)
class RecordRejection:
    """A transaction that was dropped because it failed validation."""

    index: int
    errors: list[str]
    # Masked description, when one could be read
    hint: str = ""


@dataclass(frozen=True)
class DecodedExtraction:
    """Successful decode of an oracle response."""

    document_type: DocumentType
    issuer: Optional[str]
    invoice_due_date: Optional[date]
    records: list[RawExtractedRecord] = field(default_factory=list)
    rejections: list[RecordRejection] = field(default_factory=list)
    # Position of each entry of records in the original transactions array
    record_indices: list[int] = field(default_factory=list)

    ok = True

    @property
    def is_invoice(self) -> bool:
        return self.document_type == DocumentType.INVOICE

    def numbered_records(self) -> list[tuple[int, RawExtractedRecord]]:
        """Records paired with their position in the transactions array."""
        indices = self.record_indices or range(len(self.records))
        return list(zip(indices, self.records))


@dataclass(frozen=True)
class SchemaError:
    """The oracle response could not be decoded; fail closed."""

    message: str
    errors: list[str] = field(default_factory=list)

    ok = False


DecodeResult = Union[DecodedExtraction, SchemaError]


def _format_errors(error: ValidationError) -> list[str]:
    formatted = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "<root>"
        formatted.append(f"{location}: {item.get('msg', 'invalid')}")
    return formatted


def decode_record(index: int, item: Any) -> RawExtractedRecord | RecordRejection:
    """Decode one transaction item; never raises."""
    if not isinstance(item, dict):
        return RecordRejection(index=index, errors=[f"<root>: expected object, got {type(item).__name__}"])

    try:
        return RawExtractedRecord.model_validate(item)
    except ValidationError as e:
        description = item.get("description")
        hint = mask_sensitive_data(description)[:60] if isinstance(description, str) else ""
        return RecordRejection(index=index, errors=_format_errors(e), hint=hint)


def decode_oracle_response(payload: Any) -> DecodeResult:
    """
    Decode a raw oracle payload (dict, JSON string or bytes).

    Returns:
        DecodedExtraction or SchemaError
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError:
            return SchemaError(message="Oracle response is not valid UTF-8")

    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            return SchemaError(message=f"Oracle response is not valid JSON: {e.msg}")

    if not isinstance(payload, dict):
        return SchemaError(message=f"Oracle response must be an object, got {type(payload).__name__}")

    try:
        envelope = OracleEnvelope.model_validate(payload)
    except ValidationError as e:
        return SchemaError(message="Oracle response failed schema validation", errors=_format_errors(e))

    records: list[RawExtractedRecord] = []
    record_indices: list[int] = []
    rejections: list[RecordRejection] = []
    for index, item in enumerate(envelope.transactions):
        decoded = decode_record(index, item)
        if isinstance(decoded, RecordRejection):
            rejections.append(decoded)
        else:
            records.append(decoded)
            record_indices.append(index)

    return DecodedExtraction(
        document_type=envelope.document_type,
        issuer=envelope.issuer,
        invoice_due_date=envelope.invoice_due_date,
        records=records,
        rejections=rejections,
        record_indices=record_indices,
    )
