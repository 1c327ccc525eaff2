"""Gemini (Google) provider implementation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
from google import genai
from google.genai import types
from google.genai.errors import APIError

from ..errors import PermanentProviderError
from .provider_logging import empty_response_message, log_provider_warning
from .provider_utils import ClientCache, error_from_status, transient_error
from .types import AIResponse, ChatMessage, CompletionRequest, Provider, TokenUsage

if TYPE_CHECKING:
    from ..config import Credentials

DEFAULT_TEMPERATURE = 0.7


class GeminiProvider:
    """Gemini (Google) provider implementation."""

    provider = Provider.GOOGLE

    def __init__(self) -> None:
        self._clients = ClientCache(self._build_client)

    @staticmethod
    def _build_client(credentials: Credentials) -> genai.Client:
        # No retry_options: the router retries with tenacity.
        http_options = types.HttpOptions(base_url=credentials.base_url)
        return genai.Client(api_key=credentials.api_key, http_options=http_options)

    @staticmethod
    def _http_options(timeout_sec: int | float) -> types.HttpOptions:
        # Gemini SDK takes milliseconds; 0 means no timeout -> None.
        return types.HttpOptions(timeout=int(timeout_sec * 1000) if timeout_sec > 0 else None)

    @staticmethod
    def format_messages(chat_messages: tuple[ChatMessage, ...]) -> list[types.Content]:
        """Convert messages to Gemini contents ("assistant" becomes "model")."""
        formatted = []
        for msg in chat_messages:
            role = "model" if msg.role == "assistant" else "user"
            formatted.append(types.Content(role=role, parts=[types.Part(text=msg.content)]))
        return formatted

    async def _call(self, operation: Any, detail: str) -> Any:
        try:
            return await operation
        except APIError as e:
            raise error_from_status(self.provider, getattr(e, "code", None), e) from e
        except httpx.TimeoutException as e:
            raise transient_error(self.provider, e, f"{detail} timed out") from e
        except httpx.TransportError as e:
            raise transient_error(self.provider, e, f"{detail} connection failed") from e

    async def complete(self, request: CompletionRequest, credentials: Credentials) -> AIResponse:
        """Send one non-streaming generate_content request."""
        config = types.GenerateContentConfig(
            system_instruction=request.system_prompt or None,
            max_output_tokens=request.max_output_tokens,
            temperature=DEFAULT_TEMPERATURE,
            http_options=self._http_options(request.timeout_sec),
        )
        async with self._clients.lease(credentials) as client:
            response = await self._call(
                client.aio.models.generate_content(
                    model=request.model.wire_name,
                    contents=self.format_messages(request.messages),
                    config=config,
                ),
                "request",
            )

        if response.candidates:
            finish_reason = getattr(response.candidates[0], "finish_reason", None)
            if finish_reason == "MAX_TOKENS":
                log_provider_warning(self.provider, "Response truncated due to max tokens")
            elif finish_reason in ("SAFETY", "RECITATION"):
                raise PermanentProviderError(
                    self.provider,
                    f"google blocked the response (finish_reason={finish_reason})",
                )

        content = response.text or ""
        if not content.strip():
            raise PermanentProviderError(
                self.provider, empty_response_message(self.provider, request.model.id)
            )

        usage_meta = getattr(response, "usage_metadata", None)
        prompt_tokens = getattr(usage_meta, "prompt_token_count", None) or 0
        completion_tokens = getattr(usage_meta, "candidates_token_count", None) or 0
        total_tokens = getattr(usage_meta, "total_token_count", None) or (
            prompt_tokens + completion_tokens
        )
        return AIResponse(
            content=content.strip(),
            model_used=request.model.id,
            provider=self.provider,
            usage=TokenUsage(prompt_tokens, completion_tokens, total_tokens),
        )

    async def probe(self, credentials: Credentials, timeout_sec: int | float) -> None:
        """Lightweight reachability check: list one model page."""
        config = types.ListModelsConfig(page_size=1, http_options=self._http_options(timeout_sec))
        async with self._clients.lease(credentials) as client:
            await self._call(client.aio.models.list(config=config), "probe")
