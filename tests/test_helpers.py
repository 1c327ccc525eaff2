"""Shared helpers for polyroute tests."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from tenacity import wait_none

from polyroute.ai.types import AIResponse, CompletionRequest, TokenUsage
from polyroute.config import ConfigStore, Credentials
from polyroute.resilience.circuit_breaker import BreakerConfig, CircuitBreakerRegistry
from polyroute.router import RequestRouter


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubAdapter:
    """Adapter double that replays scripted outcomes and counts calls.

    Each outcome is either a string (returned as content), an exception
    instance (raised), or ``None`` (the default "ok" reply). Once the script
    runs out every call succeeds.
    """

    def __init__(self, *outcomes: Any, gate: Optional[asyncio.Event] = None) -> None:
        self.outcomes = list(outcomes)
        self.gate = gate
        self.started = asyncio.Event()
        self.calls = 0
        self.requests: list[CompletionRequest] = []
        self.credentials: list[Credentials] = []
        self.probe_calls = 0
        self.probe_error: Optional[BaseException] = None
        self.probe_delay = 0.0

    async def complete(self, request: CompletionRequest, credentials: Credentials) -> AIResponse:
        self.calls += 1
        self.requests.append(request)
        self.credentials.append(credentials)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        return AIResponse(
            content=outcome or "ok",
            model_used=request.model.id,
            provider=request.model.provider,
            usage=TokenUsage.from_counts(10, 5),
        )

    async def probe(self, credentials: Credentials, timeout_sec: int | float) -> None:
        self.probe_calls += 1
        if self.probe_delay:
            await asyncio.sleep(self.probe_delay)
        if self.probe_error is not None:
            raise self.probe_error


def make_settings(**overrides: Any) -> dict[str, Any]:
    """Settings mapping with direct keys for every hosted provider."""
    settings: dict[str, Any] = {
        "default_model": "gpt-4",
        "api_keys": {
            "openai": {"type": "direct", "value": "sk-test-openai-000000"},
            "anthropic": {"type": "direct", "value": "sk-ant-test-000000"},
            "google": {"type": "direct", "value": "AIza-test-google"},
        },
        "ollama_base_url": "http://localhost:11434",
        "timeout": 30,
        "retry_attempts": 3,
        "circuit_breaker": {
            "failure_threshold": 3,
            "failure_window_sec": 60,
            "cooldown_sec": 30,
            "max_cooldown_sec": 300,
        },
    }
    settings.update(overrides)
    return settings


def make_router(
    store: Optional[ConfigStore] = None,
    adapters: Optional[dict] = None,
    clock: Optional[FakeClock] = None,
) -> RequestRouter:
    """Router with zero backoff and an injectable breaker clock."""
    store = store or ConfigStore.from_mapping(make_settings())
    breakers = CircuitBreakerRegistry(
        BreakerConfig.from_settings(store.settings),
        clock=clock or FakeClock(),
    )
    return RequestRouter(
        store,
        adapters=adapters or {},
        breakers=breakers,
        retry_wait=wait_none(),
    )
