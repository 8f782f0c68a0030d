"""
Document admission checks.

Runs before consent and rate limiting: a document that can never be
extracted must not consume an import slot.
"""

import mimetypes
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# Media types the extraction oracle accepts, with their file extensions
ALLOWED_MEDIA_TYPES: dict[str, tuple[str, ...]] = {
    "application/pdf": (".pdf",),
    "image/jpeg": (".jpg", ".jpeg"),
    "image/png": (".png",),
    "image/webp": (".webp",),
}

DEFAULT_MAX_DOCUMENT_BYTES = 4 * 1024 * 1024

# Leading bytes per media type
_SIGNATURES: dict[str, tuple[bytes, ...]] = {
    "application/pdf": (b"%PDF",),
    "image/jpeg": (b"\xff\xd8\xff",),
    "image/png": (b"\x89PNG\r\n\x1a\n",),
    "image/webp": (b"RIFF",),
}

_SENSITIVE_FILENAME_PATTERNS = [
    re.compile(r"cpf", re.IGNORECASE),
    re.compile(r"cnpj", re.IGNORECASE),
    re.compile(r"senha|password", re.IGNORECASE),
    re.compile(r"\d{3}\.\d{3}\.\d{3}-\d{2}"),
    re.compile(r"\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}"),
]


@dataclass(frozen=True)
class SourceDocument:
    """A document submitted for import. Content is never persisted."""

    content: bytes
    media_type: str
    filename: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: Path, media_type: Optional[str] = None) -> "SourceDocument":
        """Read a document from disk, guessing the media type from the extension."""
        path = Path(path)
        return cls(
            content=path.read_bytes(),
            media_type=media_type or guess_media_type(path.name) or "application/octet-stream",
            filename=path.name,
        )


@dataclass(frozen=True)
class DocumentValidation:
    valid: bool
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


def guess_media_type(filename: str) -> Optional[str]:
    """Media type for a filename, limited to the allowed types."""
    suffix = Path(filename).suffix.lower()
    for media_type, extensions in ALLOWED_MEDIA_TYPES.items():
        if suffix in extensions:
            return media_type
    guessed, _ = mimetypes.guess_type(filename)
    return guessed


def validate_document(
    document: SourceDocument,
    max_bytes: int = DEFAULT_MAX_DOCUMENT_BYTES,
) -> DocumentValidation:
    """
    Validate size and media type of a document before extraction.

    Mismatched extensions, unexpected leading bytes and sensitive-looking
    file names only produce warnings.
    """
    if document.size == 0:
        return DocumentValidation(valid=False, error="Document is empty")

    if document.size > max_bytes:
        return DocumentValidation(
            valid=False,
            error=(
                f"Document too large ({document.size / 1024 / 1024:.2f} MB). "
                f"Maximum: {max_bytes / 1024 / 1024:.2f} MB"
            ),
        )

    media_type = (document.media_type or "").lower()
    if media_type not in ALLOWED_MEDIA_TYPES:
        return DocumentValidation(
            valid=False,
            error=f"Unsupported media type: {media_type or 'unknown'}. Use PDF or images.",
        )

    warnings: list[str] = []

    if document.filename:
        suffix = Path(document.filename).suffix.lower()
        if suffix and suffix not in ALLOWED_MEDIA_TYPES[media_type]:
            warnings.append(f"File extension ({suffix}) does not match the declared media type")
        if any(p.search(document.filename) for p in _SENSITIVE_FILENAME_PATTERNS):
            warnings.append("File name may contain sensitive information; consider renaming it")

    if not document.content.startswith(_SIGNATURES[media_type]):
        warnings.append(f"Content does not look like {media_type}")

    return DocumentValidation(valid=True, warnings=warnings)
