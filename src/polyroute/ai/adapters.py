"""Provider adapter interface and registry."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from .anthropic_provider import AnthropicProvider
from .gemini_provider import GeminiProvider
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider
from .types import AIResponse, CompletionRequest, Provider

if TYPE_CHECKING:
    from ..config import Credentials


class ProviderAdapter(Protocol):
    """Capability set every backend family implements.

    Adapters raise only ``TransientProviderError`` or
    ``PermanentProviderError``; SDK-specific exceptions never escape.
    """

    async def complete(self, request: CompletionRequest, credentials: Credentials) -> AIResponse:
        ...

    async def probe(self, credentials: Credentials, timeout_sec: int | float) -> None:
        ...


ProviderClass = (
    type[OpenAIProvider]
    | type[AnthropicProvider]
    | type[GeminiProvider]
    | type[OllamaProvider]
)

PROVIDER_CLASSES: dict[Provider, ProviderClass] = {
    Provider.OPENAI: OpenAIProvider,
    Provider.ANTHROPIC: AnthropicProvider,
    Provider.GOOGLE: GeminiProvider,
    Provider.OLLAMA: OllamaProvider,
}


def build_default_adapters() -> dict[Provider, ProviderAdapter]:
    """Instantiate one adapter per provider."""
    return {provider: provider_class() for provider, provider_class in PROVIDER_CLASSES.items()}
