"""Model registry and provider/model lookup helpers."""

from __future__ import annotations

from typing import Iterable, Optional, Protocol

from ..errors import UnknownModelError
from .types import ModelInfo, Provider, TokenUsage


class CredentialView(Protocol):
    """Anything that can answer whether a provider has credentials."""

    def is_configured(self, provider: Provider) -> bool:
        ...


# Built-in models, in picker order.
# Wire names follow each provider's documented model ids:
# - OpenAI: https://platform.openai.com/docs/models
# - Anthropic: https://docs.anthropic.com/en/docs/about-claude/models
# - Google: https://ai.google.dev/gemini-api/docs/models
# - Ollama: https://ollama.com/library
DEFAULT_MODELS: tuple[ModelInfo, ...] = (
    # OpenAI
    ModelInfo(
        id="gpt-4",
        display_name="GPT-4",
        provider=Provider.OPENAI,
        description="Most capable OpenAI model",
        context_limit=8192,
        max_output_tokens=4096,
        cost_per_1k_tokens=0.03,
    ),
    ModelInfo(
        id="gpt-4-turbo",
        display_name="GPT-4 Turbo",
        provider=Provider.OPENAI,
        description="Faster, cheaper GPT-4 with large context",
        context_limit=128000,
        max_output_tokens=4096,
        cost_per_1k_tokens=0.01,
        api_model="gpt-4-turbo-preview",
    ),
    ModelInfo(
        id="gpt-4o",
        display_name="GPT-4o",
        provider=Provider.OPENAI,
        description="Omni model - text, vision, and audio",
        context_limit=128000,
        max_output_tokens=4096,
        cost_per_1k_tokens=0.005,
    ),
    ModelInfo(
        id="gpt-3.5-turbo",
        display_name="GPT-3.5 Turbo",
        provider=Provider.OPENAI,
        description="Fast and cost-effective",
        context_limit=16385,
        max_output_tokens=4096,
        cost_per_1k_tokens=0.0005,
    ),
    # Anthropic
    ModelInfo(
        id="claude-3-opus",
        display_name="Claude 3 Opus",
        provider=Provider.ANTHROPIC,
        description="Most capable Claude model",
        context_limit=200000,
        max_output_tokens=4096,
        cost_per_1k_tokens=0.015,
        api_model="claude-3-opus-20240229",
    ),
    ModelInfo(
        id="claude-3-sonnet",
        display_name="Claude 3 Sonnet",
        provider=Provider.ANTHROPIC,
        description="Balanced performance and speed",
        context_limit=200000,
        max_output_tokens=4096,
        cost_per_1k_tokens=0.003,
        api_model="claude-3-sonnet-20240229",
    ),
    ModelInfo(
        id="claude-3-haiku",
        display_name="Claude 3 Haiku",
        provider=Provider.ANTHROPIC,
        description="Fastest Claude model",
        context_limit=200000,
        max_output_tokens=4096,
        cost_per_1k_tokens=0.00025,
        api_model="claude-3-haiku-20240307",
    ),
    # Google
    ModelInfo(
        id="gemini-pro",
        display_name="Gemini Pro",
        provider=Provider.GOOGLE,
        description="Google's most capable model",
        context_limit=1000000,
        max_output_tokens=2048,
        cost_per_1k_tokens=0.000125,
    ),
    # Ollama (local runtime)
    ModelInfo(
        id="ollama-llama2",
        display_name="Llama 2 (Local)",
        provider=Provider.OLLAMA,
        description="Meta Llama 2 running locally",
        context_limit=4096,
        max_output_tokens=2048,
        api_model="llama2",
    ),
    ModelInfo(
        id="ollama-codellama",
        display_name="CodeLlama (Local)",
        provider=Provider.OLLAMA,
        description="Meta CodeLlama - optimized for code",
        context_limit=16384,
        max_output_tokens=8192,
        api_model="codellama",
    ),
    ModelInfo(
        id="ollama-mistral",
        display_name="Mistral (Local)",
        provider=Provider.OLLAMA,
        description="Mistral 7B running locally",
        context_limit=32768,
        max_output_tokens=8192,
        api_model="mistral",
    ),
    ModelInfo(
        id="ollama-codegeex",
        display_name="CodeGeeX (Local)",
        provider=Provider.OLLAMA,
        description="CodeGeeX - multilingual code model",
        context_limit=8192,
        max_output_tokens=4096,
        api_model="codegeex4",
    ),
)


class ModelCatalog:
    """Immutable, insertion-ordered registry of known models."""

    def __init__(self, models: Iterable[ModelInfo]) -> None:
        registry: dict[str, ModelInfo] = {}
        for model in models:
            if model.id in registry:
                raise ValueError(f"Duplicate model id in catalog: {model.id}")
            registry[model.id] = model
        self._models = registry
        self._ordered = tuple(registry.values())

    @classmethod
    def default(cls) -> ModelCatalog:
        """Catalog of the built-in models."""
        return cls(DEFAULT_MODELS)

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def list_models(self) -> tuple[ModelInfo, ...]:
        """All models in declaration order."""
        return self._ordered

    def get(self, model_id: str) -> Optional[ModelInfo]:
        return self._models.get(model_id)

    def model_by_id(self, model_id: str) -> ModelInfo:
        """Look up a model or raise ``UnknownModelError``."""
        model = self._models.get(model_id)
        if model is None:
            raise UnknownModelError(model_id)
        return model

    def models_for_provider(self, provider: Provider) -> tuple[ModelInfo, ...]:
        return tuple(m for m in self._ordered if m.provider is provider)

    def is_configured(self, model_id: str, credentials: CredentialView) -> bool:
        """True iff the model exists and its provider has credentials."""
        model = self._models.get(model_id)
        if model is None:
            return False
        return credentials.is_configured(model.provider)

    def estimate_cost(self, model_id: str, usage: TokenUsage) -> Optional[float]:
        """Estimate USD cost of a call from the model's flat per-1k rate."""
        model = self._models.get(model_id)
        if model is None:
            return None
        return usage.total_tokens / 1000 * model.cost_per_1k_tokens
