"""Shared typed contracts for the catalog, router, and provider adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional


class Provider(str, Enum):
    """Closed set of supported backend families."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    OLLAMA = "ollama"


PROVIDER_DISPLAY_NAMES: dict[Provider, str] = {
    Provider.OPENAI: "OpenAI",
    Provider.ANTHROPIC: "Anthropic",
    Provider.GOOGLE: "Google",
    Provider.OLLAMA: "Ollama (Local)",
}

LOCAL_PROVIDERS: frozenset[Provider] = frozenset({Provider.OLLAMA})


def provider_display_name(provider: Provider) -> str:
    """Human-readable provider name for pickers and status tables."""
    return PROVIDER_DISPLAY_NAMES[provider]


def parse_provider(value: str) -> Provider:
    """Resolve a provider name (case-insensitive) or raise ``ValueError``."""
    normalized = value.strip().lower()
    try:
        return Provider(normalized)
    except ValueError:
        valid = ", ".join(p.value for p in Provider)
        raise ValueError(f"Unknown provider '{value}'. Valid providers: {valid}") from None


MessageRole = Literal["user", "assistant"]


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """One turn of a conversation resubmitted by the caller."""

    role: MessageRole
    content: str

    def __post_init__(self) -> None:
        if self.role not in ("user", "assistant"):
            raise ValueError(f"Invalid message role: {self.role}")

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> ChatMessage:
        return cls(role="assistant", content=content)

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token usage metadata returned by providers."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(cls, prompt_tokens: Optional[int], completion_tokens: Optional[int]) -> TokenUsage:
        """Build usage from possibly-missing counts, deriving the total."""
        prompt = prompt_tokens or 0
        completion = completion_tokens or 0
        return cls(prompt, completion, prompt + completion)


@dataclass(frozen=True, slots=True)
class AIResponse:
    """Uniform response returned for every backend."""

    content: str
    model_used: str
    provider: Provider
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """Catalog entry for a selectable model."""

    id: str
    display_name: str
    provider: Provider
    description: str
    context_limit: int
    max_output_tokens: int = 4096
    cost_per_1k_tokens: float = 0.0
    api_model: Optional[str] = None

    @property
    def wire_name(self) -> str:
        """Model name sent to the backend."""
        return self.api_model or self.id


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    """Provider-neutral request handed to an adapter for one attempt."""

    model: ModelInfo
    messages: tuple[ChatMessage, ...]
    system_prompt: Optional[str] = None
    timeout_sec: int | float = 0

    @property
    def max_output_tokens(self) -> int:
        return self.model.max_output_tokens
