"""Field-level encryption codec."""

from .field_codec import (
    SENSITIVE_FIELDS,
    CryptoFailure,
    FieldCodec,
    derive_key,
    generate_salt,
    looks_encrypted,
)

__all__ = [
    "SENSITIVE_FIELDS",
    "CryptoFailure",
    "FieldCodec",
    "derive_key",
    "generate_salt",
    "looks_encrypted",
]
