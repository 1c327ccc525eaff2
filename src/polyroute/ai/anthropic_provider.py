"""Anthropic (Claude) provider implementation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from anthropic import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncAnthropic,
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


class AnthropicProvider:
    """Claude provider implementation using the Messages API."""

    provider = Provider.ANTHROPIC

    def __init__(self) -> None:
        self._clients = ClientCache(self._build_client, self._close_client)

    @staticmethod
    def _build_client(credentials: Credentials) -> AsyncAnthropic:
        # Disable SDK retries - the router retries with tenacity
        return AsyncAnthropic(
            api_key=credentials.api_key,
            base_url=credentials.base_url,
            max_retries=0,
        )

    @staticmethod
    async def _close_client(client: AsyncAnthropic) -> None:
        await client.close()

    async def _create_message(self, client: Any, **kwargs: Any) -> Any:
        try:
            return await client.messages.create(**kwargs)
        except APITimeoutError as e:
            raise transient_error(self.provider, e, "request timed out") from e
        except APIConnectionError as e:
            raise transient_error(self.provider, e, "connection failed") from e
        except APIStatusError as e:
            # 529 (overloaded) lands in the transient bucket with other 5xx
            raise error_from_status(self.provider, e.status_code, e) from e

    async def complete(self, request: CompletionRequest, credentials: Credentials) -> AIResponse:
        """Send one non-streaming Messages API request."""
        # Claude takes the system prompt as a separate field
        kwargs: dict[str, Any] = {
            "model": request.model.wire_name,
            "messages": format_chat_messages(request.messages),
            "max_tokens": request.max_output_tokens,
            "temperature": DEFAULT_TEMPERATURE,
            "timeout": build_ai_httpx_timeout(request.timeout_sec),
        }
        if request.system_prompt:
            kwargs["system"] = request.system_prompt

        async with self._clients.lease(credentials) as client:
            response = await self._create_message(client, **kwargs)

        content = ""
        for block in response.content:
            if getattr(block, "type", None) == "text":
                content += block.text
        if not content.strip():
            raise PermanentProviderError(
                self.provider, empty_response_message(self.provider, request.model.id)
            )
        if response.stop_reason == "max_tokens":
            log_provider_warning(self.provider, "Response truncated due to max_tokens limit")

        return AIResponse(
            content=content.strip(),
            model_used=request.model.id,
            provider=self.provider,
            usage=TokenUsage.from_counts(
                response.usage.input_tokens,
                response.usage.output_tokens,
            ),
        )

    async def probe(self, credentials: Credentials, timeout_sec: int | float) -> None:
        """Lightweight reachability check: list models."""
        try:
            async with self._clients.lease(credentials) as client:
                await client.models.list(limit=1, timeout=build_ai_httpx_timeout(timeout_sec))
        except APITimeoutError as e:
            raise transient_error(self.provider, e, "probe timed out") from e
        except APIConnectionError as e:
            raise transient_error(self.provider, e, "probe connection failed") from e
        except APIStatusError as e:
            raise error_from_status(self.provider, e.status_code, e) from e
