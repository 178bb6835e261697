"""Async client for OpenAI-compatible chat-completions endpoints."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .llm_providers import ProviderConfig

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Raised when the completion endpoint is unreachable or answers with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class CompletionResponse:
    """Text returned by one completion call plus usage data."""
    content: str
    model: str
    total_tokens: Optional[int] = None


class CompletionClient:
    """Thin async wrapper around POST {base_url}/chat/completions."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.temperature = temperature
        self.max_tokens = max_tokens
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    @property
    def model(self) -> str:
        return self.config.model_name

    async def complete(self, messages: List[Dict[str, str]]) -> CompletionResponse:
        """
        Send one chat-completions request.

        Args:
            messages: OpenAI-style message list (system/user/assistant)

        Returns:
            CompletionResponse with the first choice's content

        Raises:
            CompletionError: On transport failure, non-2xx status or malformed body
        """
        payload = {
            "model": self.config.model_name,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        try:
            response = await self._client.post("/chat/completions", json=payload)
        except httpx.HTTPError as e:
            raise CompletionError(f"Completion request failed: {e}") from e

        if not response.is_success:
            raise CompletionError(
                f"Completion request failed: {response.status_code} - {_error_message(response)}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise CompletionError("Completion endpoint returned invalid JSON") from e

        unexpected = CompletionError("Completion endpoint returned an unexpected payload")
        if not isinstance(data, dict):
            raise unexpected

        choices = data.get("choices") or []
        if not isinstance(choices, list) or (choices and not isinstance(choices[0], dict)):
            raise unexpected

        content = ""
        if choices:
            message = choices[0].get("message") or {}
            if not isinstance(message, dict):
                raise unexpected
            content = message.get("content") or ""
            if not isinstance(content, str):
                raise unexpected

        usage = data.get("usage")
        total_tokens = usage.get("total_tokens") if isinstance(usage, dict) else None
        model = data.get("model")
        return CompletionResponse(
            content=content,
            model=model if isinstance(model, str) and model else self.config.model_name,
            total_tokens=total_tokens if isinstance(total_tokens, int) else None,
        )

    async def test_connection(self) -> Dict[str, Any]:
        """Send a minimal request and report whether the endpoint answers."""
        try:
            response = await self.complete([{"role": "user", "content": "Hello"}])
        except CompletionError as e:
            return {"success": False, "message": str(e)}
        return {"success": True, "message": f"Connected. Model: {response.model}"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "CompletionClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    if isinstance(error, str):
        return error
    return response.reason_phrase
