"""Replay oracle: returns a previously captured extraction payload.

Used for offline re-imports of a saved response and in tests. No network.
"""

import copy
import json
from pathlib import Path
from typing import Any

from .base import ExtractionOracle, ExtractionRequest, OracleError


class ReplayOracle(ExtractionOracle):
    def __init__(self, payload: Any):
        self._payload = payload
        self.requests: list[ExtractionRequest] = []

    @classmethod
    def from_file(cls, path: Path | str) -> "ReplayOracle":
        """Load a captured payload from a JSON file."""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise OracleError(f"Cannot read replay file {path}: {e}") from e
        try:
            return cls(json.loads(text))
        except json.JSONDecodeError:
            # Keep the raw text; the decoder reports it as a schema error
            return cls(text)

    @property
    def name(self) -> str:
        return "replay"

    def extract(self, request: ExtractionRequest) -> Any:
        self.requests.append(request)
        return copy.deepcopy(self._payload)
