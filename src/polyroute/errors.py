"""Exception hierarchy surfaced by the request layer.

Every error that leaves the router is one of these kinds and carries the
responsible provider (``None`` only when no provider could be resolved).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .ai.types import Provider


class PolyrouteError(Exception):
    """Base class for all polyroute errors."""

    def __init__(self, message: str, provider: Optional[Provider] = None) -> None:
        super().__init__(message)
        self.provider = provider


class ConfigError(ValueError, PolyrouteError):
    """Settings file or settings mapping failed validation."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.provider = None


class UnconfiguredError(PolyrouteError):
    """The resolved provider has no usable credentials."""

    def __init__(self, provider: Provider) -> None:
        super().__init__(
            f"{provider.value} is not configured. Add credentials to your settings.",
            provider,
        )


class UnknownModelError(PolyrouteError):
    """The requested model id is not in the catalog."""

    def __init__(self, model_id: str) -> None:
        super().__init__(f"Unknown model: {model_id}")
        self.model_id = model_id


class CircuitOpenError(PolyrouteError):
    """Call rejected without a network attempt because the breaker is open."""

    def __init__(self, provider: Provider, remaining_sec: float) -> None:
        remaining_sec = max(0.0, remaining_sec)
        if remaining_sec > 0:
            detail = f"retry in {remaining_sec:.1f}s"
        else:
            detail = "a recovery trial is already in flight"
        super().__init__(
            f"{provider.value} is temporarily unavailable (circuit breaker open, {detail})",
            provider,
        )
        self.remaining_sec = remaining_sec


class ProviderError(PolyrouteError):
    """Base for failures reported by a backend provider."""

    def __init__(
        self,
        provider: Provider,
        message: str,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, provider)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Timeout, rate limit, connection, or server-side failure. Retryable."""


class RetriesExhaustedError(TransientProviderError):
    """Every attempt in the retry budget failed with a transient error."""

    def __init__(
        self,
        provider: Provider,
        attempts: int,
        last_error: TransientProviderError,
    ) -> None:
        super().__init__(
            provider,
            f"{provider.value} request failed after {attempts} attempt(s): {last_error}",
            status_code=last_error.status_code,
        )
        self.attempts = attempts
        self.last_error = last_error


class PermanentProviderError(ProviderError):
    """Authentication failure or malformed request. Never retried."""


__all__ = [
    "CircuitOpenError",
    "ConfigError",
    "PermanentProviderError",
    "PolyrouteError",
    "ProviderError",
    "RetriesExhaustedError",
    "TransientProviderError",
    "UnconfiguredError",
    "UnknownModelError",
]
