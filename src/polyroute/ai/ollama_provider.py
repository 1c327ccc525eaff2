"""Ollama (local runtime) provider implementation.

Talks to the Ollama REST API directly with httpx. Credentials carry only
the base URL (default ``http://localhost:11434``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from ..errors import PermanentProviderError, TransientProviderError
from ..timeouts import build_ai_httpx_timeout
from .provider_logging import empty_response_message, log_provider_warning
from .provider_utils import (
    ClientCache,
    error_from_status,
    format_chat_messages,
    transient_error,
)
from .types import AIResponse, CompletionRequest, Provider, TokenUsage

if TYPE_CHECKING:
    from ..config import Credentials

DEFAULT_TEMPERATURE = 0.7
CHAT_PATH = "/api/chat"
TAGS_PATH = "/api/tags"


class OllamaProvider:
    """Local-model provider implementation."""

    provider = Provider.OLLAMA

    def __init__(self) -> None:
        self._clients = ClientCache(self._build_client, self._close_client)

    @staticmethod
    def _build_client(credentials: Credentials) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=credentials.base_url or "")

    @staticmethod
    async def _close_client(client: httpx.AsyncClient) -> None:
        await client.aclose()

    async def _request(
        self,
        credentials: Credentials,
        method: str,
        path: str,
        timeout_sec: int | float,
        **kwargs: Any,
    ) -> Any:
        try:
            async with self._clients.lease(credentials) as client:
                response = await client.request(
                    method, path, timeout=build_ai_httpx_timeout(timeout_sec), **kwargs
                )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise error_from_status(self.provider, e.response.status_code, e) from e
        except httpx.TimeoutException as e:
            raise transient_error(self.provider, e, "request timed out") from e
        except httpx.TransportError as e:
            # Usually "connection refused": the runtime is not running
            raise transient_error(self.provider, e, "is not reachable (is Ollama running?)") from e
        try:
            return response.json()
        except ValueError as e:
            # Usually a proxy or a half-started runtime answering with HTML
            raise TransientProviderError(
                self.provider, f"ollama returned invalid JSON from {path}"
            ) from e

    async def complete(self, request: CompletionRequest, credentials: Credentials) -> AIResponse:
        """Send one non-streaming /api/chat request."""
        payload = {
            "model": request.model.wire_name,
            "messages": format_chat_messages(request.messages, request.system_prompt),
            "stream": False,
            "options": {
                "temperature": DEFAULT_TEMPERATURE,
                "num_predict": request.max_output_tokens,
            },
        }
        data = await self._request(
            credentials, "POST", CHAT_PATH, request.timeout_sec, json=payload
        )

        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content", "") if isinstance(message, dict) else ""
        if not isinstance(content, str) or not content.strip():
            raise PermanentProviderError(
                self.provider, empty_response_message(self.provider, request.model.id)
            )
        if data.get("done_reason") == "length":
            log_provider_warning(self.provider, "Response truncated due to num_predict limit")

        return AIResponse(
            content=content.strip(),
            model_used=request.model.id,
            provider=self.provider,
            usage=TokenUsage.from_counts(
                data.get("prompt_eval_count"),
                data.get("eval_count"),
            ),
        )

    async def probe(self, credentials: Credentials, timeout_sec: int | float) -> None:
        """Lightweight reachability check: list local models."""
        await self._request(credentials, "GET", TAGS_PATH, timeout_sec)
