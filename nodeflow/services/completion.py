"""AI completion capability backed by the Gemini REST API."""

from typing import Any, Dict, Optional, Protocol

import httpx

from ..core.logging import get_logger
from ..models.core import CompletionResult


logger = get_logger(__name__)


class CompletionClient(Protocol):
    """Anything that can turn a prompt into text."""

    def complete(self, prompt: str, model: str) -> CompletionResult:
        ...


class GeminiCompletionClient:
    """Calls `models/{model}:generateContent`.

    Failures are reported through `CompletionResult.success`; transport errors
    are not raised.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def complete(self, prompt: str, model: str) -> CompletionResult:
        if not self.api_key:
            return self._error("GEMINI_API_KEY is not set in environment variables")

        url = f"{self.base_url}/models/{model}:generateContent"
        payload = {"contents": [{"parts": [{"text": prompt}]}]}

        logger.info(f"Calling Gemini API with model: {model}")
        logger.debug(f"Prompt: {prompt}")

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(url, params={"key": self.api_key}, json=payload)
                if response.status_code >= 400:
                    return self._error(self._error_message(response))
                body = response.json()
        except httpx.TimeoutException:
            return self._error(f"Request timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            return self._error(str(e) or type(e).__name__)
        except ValueError as e:
            return self._error(f"Invalid response body: {e}")

        if not isinstance(body, dict):
            return self._error("Invalid response body: expected a JSON object")

        text = self._extract_text(body)
        if text is None:
            return self._error(self._blocked_reason(body))

        logger.debug(f"Gemini API response: {text}")
        return CompletionResult(success=True, text=text)

    @staticmethod
    def _error(message: str) -> CompletionResult:
        logger.error(f"Gemini API error: {message}")
        return CompletionResult(
            success=False,
            text=f"Error calling Gemini API: {message}",
            error=message
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return f"[{response.status_code}] {error['message']}"
        return f"HTTP {response.status_code}"

    @staticmethod
    def _extract_text(body: Dict[str, Any]) -> Optional[str]:
        candidates = body.get("candidates") or []
        if not candidates:
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        texts = [part.get("text", "") for part in parts if isinstance(part, dict)]
        if not texts:
            return None
        return "".join(texts)

    @staticmethod
    def _blocked_reason(body: Dict[str, Any]) -> str:
        feedback = body.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            return f"Prompt blocked: {feedback['blockReason']}"
        return "Response contained no text"
