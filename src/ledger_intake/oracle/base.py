"""
Extraction oracle interface.

The oracle turns a document into structured guesses. Its output is
untrusted: callers must decode it with decode_oracle_response().
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


class OracleError(Exception):
    """The oracle call failed (transport, HTTP status, blocked response)."""

    pass


@dataclass(frozen=True)
class ExtractionRequest:
    """Input handed to the oracle."""

    content: bytes
    media_type: str
    guidance: Optional[str] = None
    known_recurring: list[str] = field(default_factory=list)


class ExtractionOracle(ABC):
    """An injectable extraction capability."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier for logs and reports."""

    @abstractmethod
    def extract(self, request: ExtractionRequest) -> Any:
        """
        Extract transactions from a document.

        Returns:
            Raw payload (dict or JSON text); decoded by the caller

        Raises:
            OracleError: if the oracle could not be reached or refused
        """

    def close(self) -> None:
        """Release resources held by the oracle."""

    def __enter__(self) -> "ExtractionOracle":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
