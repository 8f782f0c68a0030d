"""Extraction oracle boundary.

Oracles are injected into the pipeline; there is no module-level client.
"""

from ledger_intake.oracle.base import ExtractionOracle, ExtractionRequest, OracleError
from ledger_intake.oracle.gemini import GeminiExtractionOracle
from ledger_intake.oracle.prompts import PROMPT_VERSION, ExtractionPrompt
from ledger_intake.oracle.replay import ReplayOracle

__all__ = [
    "ExtractionOracle",
    "ExtractionRequest",
    "OracleError",
    "GeminiExtractionOracle",
    "ReplayOracle",
    "ExtractionPrompt",
    "PROMPT_VERSION",
]
