"""Request router: model resolution, fault isolation, retries, uniform results.

One ``complete`` call:

1. captures the config snapshot and resolves the model and its provider;
2. asks the provider's circuit breaker for admission (fail fast when open);
3. runs the adapter under a tenacity retry loop that retries only
   ``TransientProviderError``;
4. reports one outcome per call to the breaker and health monitor.

A half-open breaker admits one *call*, which keeps the trial slot for its
whole retry budget.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Iterable, Mapping
from typing import Any, Optional, Union

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from .ai.adapters import ProviderAdapter, build_default_adapters
from .ai.catalog import ModelCatalog
from .ai.types import (
    AIResponse,
    ChatMessage,
    CompletionRequest,
    ModelInfo,
    Provider,
)
from .config import ConfigSnapshot, ConfigStore, Credentials
from .errors import (
    PermanentProviderError,
    ProviderError,
    RetriesExhaustedError,
    TransientProviderError,
)
from .logging import (
    before_sleep_log_event,
    estimate_message_chars,
    extract_http_error_context,
    log_event,
    sanitize_error_message,
)
from .prompts import (
    build_annotate_prompt,
    build_explain_prompt,
    build_generate_prompt,
    build_optimize_prompt,
    build_refactor_prompt,
)
from .resilience.circuit_breaker import (
    BreakerConfig,
    BreakerSnapshot,
    BreakerTicket,
    CircuitBreakerRegistry,
)
from .resilience.health import HealthMonitor, HealthRecord
from .timeouts import (
    RETRY_BACKOFF_INITIAL_SEC,
    RETRY_BACKOFF_JITTER,
    RETRY_BACKOFF_MAX_SEC,
)

MessageInput = Union[str, ChatMessage, Mapping[str, Any]]


def default_retry_wait() -> wait_base:
    """Exponential backoff with jitter between attempts."""
    return wait_exponential_jitter(
        initial=RETRY_BACKOFF_INITIAL_SEC,
        max=RETRY_BACKOFF_MAX_SEC,
        jitter=RETRY_BACKOFF_JITTER,
    )


def normalize_messages(messages: Union[str, Iterable[MessageInput]]) -> tuple[ChatMessage, ...]:
    """Accept a prompt string, ChatMessages, or role/content mappings."""
    if isinstance(messages, str):
        messages = [messages]
    normalized: list[ChatMessage] = []
    for item in messages:
        if isinstance(item, ChatMessage):
            normalized.append(item)
        elif isinstance(item, str):
            normalized.append(ChatMessage.user(item))
        elif isinstance(item, Mapping):
            normalized.append(ChatMessage(role=item.get("role", "user"), content=str(item.get("content", ""))))
        else:
            raise TypeError(f"Unsupported message type: {type(item).__name__}")
    if not normalized:
        raise ValueError("At least one message is required")
    return tuple(normalized)


async def _await_cancellable(operation: Awaitable[Any], cancel: Optional[asyncio.Event]) -> Any:
    """Await ``operation``; abort it as soon as ``cancel`` is set."""
    if cancel is None:
        return await operation
    task = asyncio.ensure_future(operation)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise
    if task in done:
        waiter.cancel()
        return task.result()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise asyncio.CancelledError("cancelled by caller")


class RequestRouter:
    """Single entry point for completions and administrative reads."""

    def __init__(
        self,
        store: ConfigStore,
        catalog: Optional[ModelCatalog] = None,
        adapters: Optional[Mapping[Provider, ProviderAdapter]] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        health: Optional[HealthMonitor] = None,
        *,
        retry_wait: Optional[wait_base] = None,
    ) -> None:
        self._store = store
        self._catalog = catalog if catalog is not None else ModelCatalog.default()
        self._adapters = dict(adapters) if adapters is not None else build_default_adapters()
        if breakers is None:
            breakers = CircuitBreakerRegistry(BreakerConfig.from_settings(store.settings))
        self._breakers = breakers
        if health is None:
            health = HealthMonitor(store, breakers, self._adapters)
        self._health = health
        self._retry_wait = retry_wait if retry_wait is not None else default_retry_wait()

    @property
    def catalog(self) -> ModelCatalog:
        return self._catalog

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def health(self) -> HealthMonitor:
        return self._health

    def _resolve(self, snapshot: ConfigSnapshot, model_id: Optional[str]) -> tuple[ModelInfo, Credentials]:
        model = self._catalog.model_by_id(model_id or snapshot.settings.default_model)
        return model, snapshot.credentials_for(model.provider)

    async def _dispatch(
        self,
        adapter: ProviderAdapter,
        request: CompletionRequest,
        credentials: Credentials,
        cancel: Optional[asyncio.Event],
    ) -> AIResponse:
        provider = request.model.provider
        if cancel is not None and cancel.is_set():
            raise asyncio.CancelledError("cancelled by caller")
        try:
            return await _await_cancellable(adapter.complete(request, credentials), cancel)
        except ProviderError:
            raise
        except Exception as e:
            # Unmapped backend failures (bad payloads, SDK validation) are
            # retried and count against the breaker.
            raise TransientProviderError(
                provider,
                sanitize_error_message(
                    f"{provider.value} unexpected error: {type(e).__name__}: {e}"
                ),
            ) from e

    async def complete(
        self,
        messages: Union[str, Iterable[MessageInput]],
        model_id: Optional[str] = None,
        *,
        system_prompt: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AIResponse:
        """Run one completion against the resolved model's provider.

        Args:
            messages: Conversation so far, oldest first (or a single prompt)
            model_id: Catalog id; the configured default when omitted
            system_prompt: Optional system instruction
            cancel: Optional event; setting it aborts the in-flight attempt

        Raises:
            UnknownModelError: Model id not in the catalog
            UnconfiguredError: Provider has no credentials
            CircuitOpenError: Provider breaker rejected the call
            RetriesExhaustedError: Every attempt failed transiently
            PermanentProviderError: Auth/malformed request; not retried
            asyncio.CancelledError: The caller cancelled
        """
        snapshot = self._store.snapshot()
        settings = snapshot.settings
        model, credentials = self._resolve(snapshot, model_id)
        provider = model.provider
        request = CompletionRequest(
            model=model,
            messages=normalize_messages(messages),
            system_prompt=system_prompt,
            timeout_sec=settings.timeout,
        )
        adapter = self._adapters[provider]

        ticket = self._breakers.acquire(provider)
        log_event(
            "ai_request",
            level=logging.INFO,
            provider=provider,
            model=model.id,
            message_count=len(request.messages),
            input_chars=estimate_message_chars(request.messages),
            has_system_prompt=bool(system_prompt),
            max_output_tokens=request.max_output_tokens,
            breaker_trial=ticket.trial,
        )

        started = time.perf_counter()
        attempts = 0
        try:
            retrying = AsyncRetrying(
                stop=stop_after_attempt(settings.retry_attempts),
                wait=self._retry_wait,
                retry=retry_if_exception_type(TransientProviderError),
                before_sleep=before_sleep_log_event(
                    provider=provider.value,
                    operation="complete",
                ),
                reraise=True,
            )
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    response = await self._dispatch(adapter, request, credentials, cancel)
        except TransientProviderError as e:
            self._breakers.record_failure(ticket)
            self._health.observe(provider, ok=False, error=str(e))
            exhausted = RetriesExhaustedError(provider, attempts, e)
            self._log_failure(ticket, model, attempts, started, exhausted)
            raise exhausted from e
        except PermanentProviderError as e:
            # Client-side fault: says nothing about backend health.
            self._breakers.release(ticket)
            self._log_failure(ticket, model, attempts, started, e)
            raise
        except asyncio.CancelledError:
            self._breakers.release(ticket)
            log_event(
                "ai_cancelled",
                level=logging.INFO,
                provider=provider,
                model=model.id,
                latency_ms=round((time.perf_counter() - started) * 1000, 1),
            )
            raise
        except BaseException:
            self._breakers.release(ticket)
            raise

        self._breakers.record_success(ticket)
        self._health.observe(provider, ok=True)
        cost = self._catalog.estimate_cost(model.id, response.usage)
        log_event(
            "ai_response",
            level=logging.INFO,
            provider=provider,
            model=model.id,
            attempts=attempts,
            latency_ms=round((time.perf_counter() - started) * 1000, 1),
            output_chars=len(response.content),
            input_tokens=response.usage.prompt_tokens,
            output_tokens=response.usage.completion_tokens,
            total_tokens=response.usage.total_tokens,
            estimated_cost_usd=round(cost, 6) if cost is not None else None,
        )
        return response

    def _log_failure(
        self,
        ticket: BreakerTicket,
        model: ModelInfo,
        attempts: int,
        started: float,
        error: ProviderError,
    ) -> None:
        root = error
        while root.__cause__ is not None:
            root = root.__cause__
        http_context = extract_http_error_context(root) if root is not error else {}
        http_context.setdefault("http_status", error.status_code)
        log_event(
            "ai_error",
            level=logging.ERROR,
            provider=ticket.provider,
            model=model.id,
            attempts=attempts,
            latency_ms=round((time.perf_counter() - started) * 1000, 1),
            error_kind=type(error).__name__,
            error_type=type(error.__cause__).__name__ if error.__cause__ else None,
            error=str(error),
            **http_context,
        )

    # ------------------------------------------------------------------
    # Code-task wrappers
    # ------------------------------------------------------------------

    async def generate(
        self,
        description: str,
        language: str,
        model_id: Optional[str] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> AIResponse:
        """Generate code from a natural-language description."""
        prompt = build_generate_prompt(description, language)
        return await self.complete([ChatMessage.user(prompt)], model_id, cancel=cancel)

    async def explain(
        self,
        code: str,
        model_id: Optional[str] = None,
        *,
        language: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AIResponse:
        """Explain what a piece of code does."""
        prompt = build_explain_prompt(code, language)
        return await self.complete([ChatMessage.user(prompt)], model_id, cancel=cancel)

    async def refactor(
        self,
        code: str,
        language: str,
        model_id: Optional[str] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> AIResponse:
        """Refactor code for readability and maintainability."""
        prompt = build_refactor_prompt(code, language)
        return await self.complete([ChatMessage.user(prompt)], model_id, cancel=cancel)

    async def optimize(
        self,
        code: str,
        language: str,
        model_id: Optional[str] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> AIResponse:
        """Optimize code for performance."""
        prompt = build_optimize_prompt(code, language)
        return await self.complete([ChatMessage.user(prompt)], model_id, cancel=cancel)

    async def annotate(
        self,
        code: str,
        model_id: Optional[str] = None,
        *,
        language: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AIResponse:
        """Add explanatory comments to code."""
        prompt = build_annotate_prompt(code, language)
        return await self.complete([ChatMessage.user(prompt)], model_id, cancel=cancel)

    # ------------------------------------------------------------------
    # Read / administrative operations
    # ------------------------------------------------------------------

    def list_models(self) -> tuple[ModelInfo, ...]:
        return self._catalog.list_models()

    def is_configured(self, model_id: str) -> bool:
        return self._catalog.is_configured(model_id, self._store)

    def missing_credentials(self) -> frozenset[Provider]:
        return self._store.missing_credentials()

    def status(self, provider: Provider) -> BreakerSnapshot:
        return self._breakers.status(provider)

    def statuses(self) -> dict[Provider, BreakerSnapshot]:
        return self._breakers.statuses()

    def reset(self, provider: Provider) -> BreakerSnapshot:
        """Operator escape hatch: force the provider's breaker closed."""
        return self._breakers.reset(provider)

    async def probe(self, provider: Provider) -> HealthRecord:
        return await self._health.probe(provider)

    async def probe_all(self, providers: Optional[Iterable[Provider]] = None) -> dict[Provider, HealthRecord]:
        return await self._health.probe_all(providers)

    def refresh(self) -> ConfigSnapshot:
        """Reload external settings; breaker thresholds follow the new values."""
        snapshot = self._store.refresh()
        self._breakers.configure(BreakerConfig.from_settings(snapshot.settings))
        return snapshot
