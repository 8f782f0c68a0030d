"""
Field-level encryption of sensitive ledger fields at rest.

Key derivation:
    PBKDF2-HMAC-SHA256(user_id, installation salt, 100000 rounds) -> 256-bit key
    The salt is 16 random bytes created once per installation and persisted
    by the store; the key itself is never persisted.

Encrypted field format:
    base64(IV (12 bytes) || AES-GCM ciphertext+tag)
    The plaintext is the JSON serialization of the value.

Reads tolerate mixed datasets: a stored string is only decrypted when it
looks encrypted (base64 of more than 12 bytes that are not printable text).
Decrypt failures fall back to the raw value; encrypt failures raise.
"""

import base64
import binascii
import dataclasses
import json
import logging
import os
import threading
from collections.abc import Callable
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..schemas.ledger import LedgerEntry

logger = logging.getLogger(__name__)

SALT_BYTES = 16
IV_BYTES = 12
KEY_BYTES = 32
TAG_BYTES = 16
DEFAULT_ITERATIONS = 100_000

# LedgerEntry fields protected at rest
SENSITIVE_FIELDS: tuple[str, ...] = (
    "description",
    "debtor",
    "reimbursed_by",
    "issuer",
    "credit_card_issuer",
)


class CryptoFailure(Exception):
    """Encryption or decryption of a field failed."""

    pass


def generate_salt() -> bytes:
    """Fresh random installation salt."""
    return os.urandom(SALT_BYTES)


def derive_key(user_id: str, salt: bytes, iterations: int = DEFAULT_ITERATIONS) -> bytes:
    """Derive the 256-bit AES key from a user identifier and the salt."""
    if not user_id:
        raise CryptoFailure("user_id is required for key derivation")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(user_id.encode("utf-8"))


def _is_printable(data: bytes) -> bool:
    return all(0x20 <= byte <= 0x7E for byte in data)


def looks_encrypted(value: Any) -> bool:
    """Heuristic: base64 text decoding to at least 12 non-printable bytes."""
    if not isinstance(value, str) or not value:
        return False
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(decoded) >= IV_BYTES and not _is_printable(decoded)


class FieldCodec:
    """
    Encrypts and decrypts individual field values.

    The key is derived lazily, once per codec instance. salt_provider is
    called at most once and must return the installation salt (typically
    ``lambda: store.get_or_create_salt(generate_salt)``).
    """

    def __init__(
        self,
        user_id: str,
        salt_provider: Callable[[], bytes],
        iterations: int = DEFAULT_ITERATIONS,
    ):
        if not user_id:
            raise CryptoFailure("user_id is required for field encryption")
        self._user_id = user_id
        self._salt_provider = salt_provider
        self._iterations = iterations
        self._key: Optional[bytes] = None
        self._lock = threading.Lock()

    def _get_key(self) -> bytes:
        if self._key is None:
            with self._lock:
                if self._key is None:
                    salt = self._salt_provider()
                    if len(salt) != SALT_BYTES:
                        raise CryptoFailure(f"installation salt must be {SALT_BYTES} bytes")
                    self._key = derive_key(self._user_id, salt, self._iterations)
        return self._key

    def encrypt(self, value: Any) -> str:
        """
        Encrypt a JSON-serializable value.

        Raises:
            CryptoFailure: if the value cannot be serialized or encrypted
        """
        try:
            plaintext = json.dumps(value, ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise CryptoFailure(f"value is not serializable: {type(value).__name__}") from e

        iv = os.urandom(IV_BYTES)
        try:
            ciphertext = AESGCM(self._get_key()).encrypt(iv, plaintext, None)
        except CryptoFailure:
            raise
        except Exception as e:
            raise CryptoFailure("encryption failed") from e

        return base64.b64encode(iv + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> Any:
        """
        Decrypt a value produced by encrypt().

        Raises:
            CryptoFailure: malformed blob, wrong key or tampered ciphertext
        """
        try:
            combined = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise CryptoFailure("encrypted value is not valid base64") from e

        if len(combined) < IV_BYTES + TAG_BYTES:
            raise CryptoFailure("encrypted value is too short")

        iv, ciphertext = combined[:IV_BYTES], combined[IV_BYTES:]
        try:
            plaintext = AESGCM(self._get_key()).decrypt(iv, ciphertext, None)
        except InvalidTag as e:
            raise CryptoFailure("authentication tag mismatch") from e

        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CryptoFailure("decrypted payload is not valid JSON") from e

    def reveal_value(self, raw: Any, field_name: str = "value") -> Any:
        """
        Decrypt a stored value if it looks encrypted.

        Never raises: on failure the raw value is returned and a warning
        naming the field (never the value) is logged.
        """
        if not looks_encrypted(raw):
            return raw
        try:
            return self.decrypt(raw)
        except CryptoFailure as e:
            logger.warning(f"Could not decrypt field '{field_name}': {e}; using stored value")
            return raw

    def seal_entry(self, entry: LedgerEntry) -> LedgerEntry:
        """
        Return a copy of entry with its sensitive fields encrypted.

        Raises:
            CryptoFailure: naming the field that could not be encrypted
        """
        updates: dict[str, Any] = {}
        for name in SENSITIVE_FIELDS:
            value = getattr(entry, name)
            if value is None:
                continue
            try:
                updates[name] = self.encrypt(value)
            except CryptoFailure as e:
                raise CryptoFailure(f"failed to encrypt field '{name}': {e}") from e
        return dataclasses.replace(entry, **updates)

    def reveal_entry(self, entry: LedgerEntry) -> LedgerEntry:
        """Return a copy of entry with its sensitive fields decrypted where possible."""
        updates = {
            name: self.reveal_value(getattr(entry, name), name)
            for name in SENSITIVE_FIELDS
            if getattr(entry, name) is not None
        }
        return dataclasses.replace(entry, **updates)
