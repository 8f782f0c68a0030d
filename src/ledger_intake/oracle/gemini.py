"""Gemini extraction oracle.

Sends the document inline (base64) together with the versioned extraction
prompt to the generateContent endpoint in JSON response mode.

Privacy Constraints (non-negotiable):
- Never log prompts, document content or responses at INFO level
- The API key travels in a header, never in the URL or in logs

No retries happen here; a failed call raises OracleError and the caller
decides what to do.
"""

from __future__ import annotations

import base64
import logging
from datetime import date
from typing import Any

import httpx

from .base import ExtractionOracle, ExtractionRequest, OracleError
from .prompts import ExtractionPrompt

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-flash"


def _strip_code_fences(content: str) -> str:
    """Remove a markdown code block wrapper around JSON text."""
    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


class GeminiExtractionOracle(ExtractionOracle):
    """Extraction oracle backed by the Gemini API."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: int = 60,
        client: httpx.Client | None = None,
    ):
        if not api_key:
            raise OracleError("Gemini API key is not configured")
        self._api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client or httpx.Client()
        self._prompt = ExtractionPrompt()

    @property
    def name(self) -> str:
        return f"gemini:{self.model}"

    def close(self) -> None:
        self._client.close()

    def _build_payload(self, request: ExtractionRequest) -> dict[str, Any]:
        user_message = self._prompt.format_user_message(
            current_year=date.today().year,
            known_recurring=request.known_recurring,
            guidance=request.guidance,
        )
        return {
            "systemInstruction": {"parts": [{"text": self._prompt.system_prompt}]},
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {
                            "inlineData": {
                                "mimeType": request.media_type,
                                "data": base64.b64encode(request.content).decode("ascii"),
                            }
                        },
                        {"text": user_message},
                    ],
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "temperature": 0,
            },
        }

    def extract(self, request: ExtractionRequest) -> Any:
        """Call generateContent and return the response text (JSON).

        Raises:
            OracleError: on timeout, HTTP error, transport error or a
                blocked/empty response
        """
        url = f"{self.base_url}/models/{self.model}:generateContent"

        # Use explicit Timeout with long read timeout for document inference
        request_timeout = httpx.Timeout(
            connect=10.0,
            read=float(self.timeout_seconds),
            write=30.0,
            pool=10.0,
        )

        logger.debug("Calling Gemini model %s (%d bytes, %s)", self.model, len(request.content), request.media_type)

        try:
            response = self._client.post(
                url,
                json=self._build_payload(request),
                headers={"x-goog-api-key": self._api_key},
                timeout=request_timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.warning("Gemini request timed out after %ds", self.timeout_seconds)
            raise OracleError(f"Gemini request timed out after {self.timeout_seconds}s") from e
        except httpx.HTTPStatusError as e:
            logger.error("Gemini API error %s for model '%s'", e.response.status_code, self.model)
            raise OracleError(f"Gemini API error {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error("Gemini request failed: %s", type(e).__name__)
            raise OracleError(f"Gemini request failed: {type(e).__name__}") from e
        except ValueError as e:
            raise OracleError("Gemini returned a non-JSON HTTP body") from e

        if not isinstance(data, dict):
            raise OracleError(f"Gemini returned {type(data).__name__} instead of an object")

        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise OracleError(f"Gemini blocked the request: {block_reason}")

        candidates = data.get("candidates") or []
        if not candidates:
            raise OracleError("Gemini returned no candidates")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        content = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not content.strip():
            raise OracleError("Gemini returned an empty response")

        logger.debug("Gemini %s returned %d chars", self.model, len(content))
        return _strip_code_fences(content)
