"""polyroute - resilient request layer over several AI model providers."""

from .ai.catalog import ModelCatalog
from .ai.types import AIResponse, ChatMessage, ModelInfo, Provider, TokenUsage
from .config import ConfigStore, RelaySettings
from .errors import (
    CircuitOpenError,
    ConfigError,
    PermanentProviderError,
    PolyrouteError,
    ProviderError,
    RetriesExhaustedError,
    TransientProviderError,
    UnconfiguredError,
    UnknownModelError,
)
from .resilience import BreakerState, CircuitBreakerRegistry, HealthMonitor, HealthStatus
from .router import RequestRouter

__version__ = "0.1.0"

__all__ = [
    "AIResponse",
    "BreakerState",
    "ChatMessage",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "ConfigError",
    "ConfigStore",
    "HealthMonitor",
    "HealthStatus",
    "ModelCatalog",
    "ModelInfo",
    "PermanentProviderError",
    "PolyrouteError",
    "Provider",
    "ProviderError",
    "RelaySettings",
    "RequestRouter",
    "RetriesExhaustedError",
    "TokenUsage",
    "TransientProviderError",
    "UnconfiguredError",
    "UnknownModelError",
]
