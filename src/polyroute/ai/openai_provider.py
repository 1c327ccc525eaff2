"""OpenAI provider implementation.

Uses the Chat Completions API; the router owns retries, so the SDK client
is built with ``max_retries=0``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
)

from ..errors import PermanentProviderError
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


class OpenAIProvider:
    """OpenAI (GPT) provider implementation."""

    provider = Provider.OPENAI

    def __init__(self) -> None:
        self._clients = ClientCache(self._build_client, self._close_client)

    @staticmethod
    def _build_client(credentials: Credentials) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=credentials.api_key,
            base_url=credentials.base_url,
            max_retries=0,
        )

    @staticmethod
    async def _close_client(client: AsyncOpenAI) -> None:
        await client.close()

    async def _create_chat_completion(self, client: Any, **kwargs: Any) -> Any:
        try:
            return await client.chat.completions.create(**kwargs)
        except APITimeoutError as e:
            raise transient_error(self.provider, e, "request timed out") from e
        except APIConnectionError as e:
            raise transient_error(self.provider, e, "connection failed") from e
        except APIStatusError as e:
            raise error_from_status(self.provider, e.status_code, e) from e

    async def complete(self, request: CompletionRequest, credentials: Credentials) -> AIResponse:
        """Send one non-streaming chat completion."""
        async with self._clients.lease(credentials) as client:
            response = await self._create_chat_completion(
                client,
                model=request.model.wire_name,
                messages=format_chat_messages(request.messages, request.system_prompt),
                max_tokens=request.max_output_tokens,
                temperature=DEFAULT_TEMPERATURE,
                timeout=build_ai_httpx_timeout(request.timeout_sec),
            )

        choice = response.choices[0] if response.choices else None
        content = (choice.message.content or "") if choice else ""
        if not content.strip():
            raise PermanentProviderError(
                self.provider, empty_response_message(self.provider, request.model.id)
            )
        if choice.finish_reason == "length":
            log_provider_warning(self.provider, "Response truncated due to max_tokens limit")

        usage = response.usage
        return AIResponse(
            content=content.strip(),
            model_used=request.model.id,
            provider=self.provider,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
        )

    async def probe(self, credentials: Credentials, timeout_sec: int | float) -> None:
        """Lightweight reachability check: list models."""
        try:
            async with self._clients.lease(credentials) as client:
                await client.models.list(timeout=build_ai_httpx_timeout(timeout_sec))
        except APITimeoutError as e:
            raise transient_error(self.provider, e, "probe timed out") from e
        except APIConnectionError as e:
            raise transient_error(self.provider, e, "probe connection failed") from e
        except APIStatusError as e:
            raise error_from_status(self.provider, e.status_code, e) from e
