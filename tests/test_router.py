"""Request router behavior: resolution, retries, breaker and health outcomes."""

import asyncio
import logging

import pytest
from tenacity import wait_none

from polyroute.ai.catalog import ModelCatalog
from polyroute.ai.types import ChatMessage, Provider
from polyroute.config import ConfigStore
from polyroute.errors import (
    CircuitOpenError,
    PermanentProviderError,
    RetriesExhaustedError,
    TransientProviderError,
    UnconfiguredError,
    UnknownModelError,
)
from polyroute.resilience.circuit_breaker import BreakerState
from polyroute.resilience.health import HealthStatus
from polyroute.router import RequestRouter
from test_helpers import FakeClock, StubAdapter, make_router, make_settings


def _rate_limited(provider=Provider.OPENAI):
    return TransientProviderError(provider, "rate limited", status_code=429)


def _timeout(provider=Provider.OPENAI):
    return TransientProviderError(provider, "request timed out")


def _unauthorized(provider=Provider.OPENAI):
    return PermanentProviderError(provider, "invalid api key", status_code=401)


async def _wait_started(adapter: StubAdapter) -> None:
    await asyncio.wait_for(adapter.started.wait(), timeout=1.0)


@pytest.mark.asyncio
async def test_complete_returns_uniform_response(router, adapters):
    response = await router.complete([ChatMessage.user("hello")], "gpt-4")

    assert response.content == "ok"
    assert response.model_used == "gpt-4"
    assert response.provider is Provider.OPENAI
    assert response.usage.total_tokens == 15
    assert adapters[Provider.OPENAI].calls == 1
    assert router.status(Provider.OPENAI).state is BreakerState.CLOSED


@pytest.mark.asyncio
async def test_complete_uses_default_model_and_forwards_request(router, adapters):
    await router.complete("hi there", system_prompt="Be brief.")

    request = adapters[Provider.OPENAI].requests[0]
    assert request.model.id == "gpt-4"
    assert request.messages == (ChatMessage.user("hi there"),)
    assert request.system_prompt == "Be brief."
    assert request.timeout_sec == 30


@pytest.mark.asyncio
async def test_complete_accepts_role_content_mappings(router, adapters):
    await router.complete(
        [
            {"role": "user", "content": "Q1"},
            {"role": "assistant", "content": "A1"},
            {"role": "user", "content": "Q2"},
        ],
        "claude-3-haiku",
    )

    request = adapters[Provider.ANTHROPIC].requests[0]
    assert [m.role for m in request.messages] == ["user", "assistant", "user"]


@pytest.mark.asyncio
async def test_empty_messages_rejected_before_any_call(router, adapters):
    with pytest.raises(ValueError):
        await router.complete([], "gpt-4")
    assert adapters[Provider.OPENAI].calls == 0


@pytest.mark.asyncio
async def test_unknown_model_makes_no_call_and_leaves_breakers_alone(router, adapters):
    with pytest.raises(UnknownModelError) as exc_info:
        await router.complete("hi", "no-such-model")

    assert exc_info.value.model_id == "no-such-model"
    assert exc_info.value.provider is None
    assert all(adapter.calls == 0 for adapter in adapters.values())
    for snapshot in router.statuses().values():
        assert snapshot.state is BreakerState.CLOSED
        assert snapshot.consecutive_failures == 0


@pytest.mark.asyncio
async def test_unconfigured_provider_fails_without_call(adapters, clock):
    settings = make_settings()
    del settings["api_keys"]["anthropic"]
    router = make_router(ConfigStore.from_mapping(settings), adapters, clock)

    with pytest.raises(UnconfiguredError) as exc_info:
        await router.complete("hi", "claude-3-opus")

    assert exc_info.value.provider is Provider.ANTHROPIC
    assert adapters[Provider.ANTHROPIC].calls == 0
    assert router.status(Provider.ANTHROPIC).consecutive_failures == 0


@pytest.mark.asyncio
async def test_transient_errors_retried_within_one_admission(router, adapters):
    adapters[Provider.OPENAI].outcomes = [_rate_limited(), _rate_limited(), "done"]

    response = await router.complete("hi", "gpt-4")

    assert response.content == "done"
    assert adapters[Provider.OPENAI].calls == 3
    snapshot = router.status(Provider.OPENAI)
    assert snapshot.state is BreakerState.CLOSED
    assert snapshot.consecutive_failures == 0


@pytest.mark.asyncio
async def test_exhausted_retries_count_as_one_breaker_failure(router, adapters):
    adapters[Provider.OPENAI].outcomes = [_timeout(), _timeout(), _timeout()]

    with pytest.raises(RetriesExhaustedError) as exc_info:
        await router.complete("hi", "gpt-4")

    error = exc_info.value
    assert isinstance(error, TransientProviderError)
    assert error.attempts == 3
    assert error.provider is Provider.OPENAI
    assert isinstance(error.last_error, TransientProviderError)
    assert adapters[Provider.OPENAI].calls == 3
    assert router.status(Provider.OPENAI).consecutive_failures == 1
    assert router.health.record(Provider.OPENAI).error is not None


@pytest.mark.asyncio
async def test_permanent_error_not_retried_and_not_counted(router, adapters):
    adapters[Provider.OPENAI].outcomes = [_unauthorized()]

    with pytest.raises(PermanentProviderError) as exc_info:
        await router.complete("hi", "gpt-4")

    assert exc_info.value.status_code == 401
    assert adapters[Provider.OPENAI].calls == 1
    assert router.status(Provider.OPENAI).consecutive_failures == 0


@pytest.mark.asyncio
async def test_unexpected_adapter_exception_is_retried(router, adapters):
    adapters[Provider.GOOGLE].outcomes = [RuntimeError("boom")]

    response = await router.complete("hi", "gemini-pro")

    assert response.content == "ok"
    assert adapters[Provider.GOOGLE].calls == 2


@pytest.mark.asyncio
async def test_unexpected_adapter_exceptions_count_against_breaker(adapters):
    store = ConfigStore.from_mapping(make_settings(retry_attempts=1))
    router = make_router(store, adapters)
    adapters[Provider.GOOGLE].outcomes = [ValueError("malformed payload")] * 3

    for _ in range(3):
        with pytest.raises(RetriesExhaustedError) as exc_info:
            await router.complete("hi", "gemini-pro")

    assert exc_info.value.provider is Provider.GOOGLE
    assert "malformed payload" in str(exc_info.value.last_error)
    assert isinstance(exc_info.value.last_error.__cause__, ValueError)
    assert router.status(Provider.GOOGLE).state is BreakerState.OPEN


@pytest.mark.asyncio
async def test_breaker_opens_fails_fast_then_recovers(adapters):
    clock = FakeClock()
    store = ConfigStore.from_mapping(make_settings(retry_attempts=1))
    router = make_router(store, adapters, clock)
    adapter = adapters[Provider.OPENAI]
    adapter.outcomes = [_timeout(), _timeout(), _timeout()]

    for _ in range(3):
        with pytest.raises(RetriesExhaustedError):
            await router.complete("hi", "gpt-4")
    assert router.status(Provider.OPENAI).state is BreakerState.OPEN

    with pytest.raises(CircuitOpenError) as exc_info:
        await router.complete("hi", "gpt-4")
    assert exc_info.value.remaining_sec == pytest.approx(30.0)
    assert adapter.calls == 3

    clock.advance(30)
    response = await router.complete("hi", "gpt-4")
    assert response.content == "ok"
    assert adapter.calls == 4
    assert router.status(Provider.OPENAI).state is BreakerState.CLOSED


@pytest.mark.asyncio
async def test_open_breaker_does_not_affect_other_providers(adapters):
    store = ConfigStore.from_mapping(make_settings(retry_attempts=1))
    router = make_router(store, adapters)
    adapters[Provider.OPENAI].outcomes = [_timeout()] * 3

    for _ in range(3):
        with pytest.raises(RetriesExhaustedError):
            await router.complete("hi", "gpt-4")

    response = await router.complete("hi", "claude-3-sonnet")
    assert response.provider is Provider.ANTHROPIC


@pytest.mark.asyncio
async def test_half_open_admits_one_call_at_a_time(adapters):
    clock = FakeClock()
    store = ConfigStore.from_mapping(make_settings(retry_attempts=1))
    router = make_router(store, adapters, clock)
    adapter = adapters[Provider.OPENAI]
    adapter.outcomes = [_timeout()] * 3
    for _ in range(3):
        with pytest.raises(RetriesExhaustedError):
            await router.complete("hi", "gpt-4")

    clock.advance(30)
    adapter.gate = asyncio.Event()
    adapter.started.clear()
    trial = asyncio.create_task(router.complete("trial", "gpt-4"))
    await _wait_started(adapter)

    with pytest.raises(CircuitOpenError):
        await router.complete("second", "gpt-4")
    assert adapter.calls == 4

    adapter.gate.set()
    response = await trial
    assert response.content == "ok"
    assert router.status(Provider.OPENAI).state is BreakerState.CLOSED


@pytest.mark.asyncio
async def test_permanent_error_on_trial_releases_slot(adapters):
    clock = FakeClock()
    store = ConfigStore.from_mapping(make_settings(retry_attempts=1))
    router = make_router(store, adapters, clock)
    adapter = adapters[Provider.OPENAI]
    adapter.outcomes = [_timeout()] * 3 + [_unauthorized()]
    for _ in range(3):
        with pytest.raises(RetriesExhaustedError):
            await router.complete("hi", "gpt-4")

    clock.advance(30)
    with pytest.raises(PermanentProviderError):
        await router.complete("hi", "gpt-4")
    assert router.status(Provider.OPENAI).state is BreakerState.HALF_OPEN

    await router.complete("hi", "gpt-4")
    assert router.status(Provider.OPENAI).state is BreakerState.CLOSED


@pytest.mark.asyncio
async def test_task_cancellation_releases_ticket(router, adapters):
    adapter = adapters[Provider.OPENAI]
    adapter.gate = asyncio.Event()

    task = asyncio.create_task(router.complete("hi", "gpt-4"))
    await _wait_started(adapter)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    snapshot = router.status(Provider.OPENAI)
    assert snapshot.state is BreakerState.CLOSED
    assert snapshot.consecutive_failures == 0


@pytest.mark.asyncio
async def test_cancelled_trial_frees_slot_for_next_call(adapters):
    clock = FakeClock()
    store = ConfigStore.from_mapping(make_settings(retry_attempts=1))
    router = make_router(store, adapters, clock)
    adapter = adapters[Provider.OPENAI]
    adapter.outcomes = [_timeout()] * 3
    for _ in range(3):
        with pytest.raises(RetriesExhaustedError):
            await router.complete("hi", "gpt-4")

    clock.advance(30)
    adapter.gate = asyncio.Event()
    adapter.started.clear()
    task = asyncio.create_task(router.complete("hi", "gpt-4"))
    await _wait_started(adapter)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert router.status(Provider.OPENAI).state is BreakerState.HALF_OPEN
    adapter.gate.set()
    await router.complete("hi", "gpt-4")
    assert router.status(Provider.OPENAI).state is BreakerState.CLOSED


@pytest.mark.asyncio
async def test_cancel_event_aborts_in_flight_call(router, adapters):
    adapter = adapters[Provider.OPENAI]
    adapter.gate = asyncio.Event()
    cancel = asyncio.Event()

    call = asyncio.create_task(router.complete("hi", "gpt-4", cancel=cancel))
    await _wait_started(adapter)
    cancel.set()

    with pytest.raises(asyncio.CancelledError):
        await call
    assert adapter.calls == 1
    assert router.status(Provider.OPENAI).consecutive_failures == 0


@pytest.mark.asyncio
async def test_cancel_event_already_set_skips_dispatch(router, adapters):
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(asyncio.CancelledError):
        await router.complete("hi", "gpt-4", cancel=cancel)
    assert adapters[Provider.OPENAI].calls == 0


@pytest.mark.asyncio
async def test_success_updates_health_record(router):
    await router.complete("hi", "gpt-4o")

    record = router.health.record(Provider.OPENAI)
    assert record.status is HealthStatus.HEALTHY
    assert record.checked


@pytest.mark.asyncio
async def test_in_flight_call_keeps_captured_credentials(adapters, clock):
    settings = make_settings()
    store = ConfigStore(lambda: settings)
    router = make_router(store, adapters, clock)
    adapter = adapters[Provider.OPENAI]
    adapter.gate = asyncio.Event()

    call = asyncio.create_task(router.complete("hi", "gpt-4"))
    await _wait_started(adapter)

    settings["api_keys"] = {}
    router.refresh()
    adapter.gate.set()
    response = await call

    assert response.provider is Provider.OPENAI
    assert adapter.credentials[0].api_key == "sk-test-openai-000000"
    with pytest.raises(UnconfiguredError):
        await router.complete("hi", "gpt-4")


@pytest.mark.asyncio
async def test_refresh_applies_new_breaker_thresholds(adapters, clock):
    settings = make_settings(retry_attempts=1)
    store = ConfigStore(lambda: settings)
    router = make_router(store, adapters, clock)

    settings["circuit_breaker"] = {"failure_threshold": 1, "cooldown_sec": 10}
    router.refresh()
    adapters[Provider.OPENAI].outcomes = [_timeout()]

    with pytest.raises(RetriesExhaustedError):
        await router.complete("hi", "gpt-4")
    assert router.status(Provider.OPENAI).state is BreakerState.OPEN
    assert router.breakers.remaining_cooldown(Provider.OPENAI) == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_reset_reopens_traffic(adapters, clock):
    store = ConfigStore.from_mapping(make_settings(retry_attempts=1))
    router = make_router(store, adapters, clock)
    adapters[Provider.OPENAI].outcomes = [_timeout()] * 3
    for _ in range(3):
        with pytest.raises(RetriesExhaustedError):
            await router.complete("hi", "gpt-4")

    snapshot = router.reset(Provider.OPENAI)
    assert snapshot.state is BreakerState.CLOSED

    response = await router.complete("hi", "gpt-4")
    assert response.content == "ok"


@pytest.mark.asyncio
async def test_generate_builds_prompt_from_description(router, adapters):
    await router.generate("a function that reverses a string", "Python", "gpt-4")

    prompt = adapters[Provider.OPENAI].requests[0].messages[0].content
    assert "a function that reverses a string" in prompt
    assert "Python" in prompt


@pytest.mark.asyncio
async def test_refactor_and_explain_embed_code(router, adapters):
    code = "def f(x):\n    return x*2"
    await router.refactor(code, "Python", "ollama-codellama")
    await router.explain(code, "ollama-codellama")

    requests = adapters[Provider.OLLAMA].requests
    assert len(requests) == 2
    assert all(code in r.messages[0].content for r in requests)


@pytest.mark.asyncio
async def test_optimize_and_annotate_route_to_model_provider(router, adapters):
    await router.optimize("SELECT * FROM t", "SQL", "gemini-pro")
    await router.annotate("SELECT * FROM t", "gemini-pro")

    assert adapters[Provider.GOOGLE].calls == 2


@pytest.mark.asyncio
async def test_generate_requires_language(router, adapters):
    with pytest.raises(ValueError):
        await router.generate("anything", "", "gpt-4")
    assert adapters[Provider.OPENAI].calls == 0


def test_read_operations(router):
    assert router.list_models()[0].id == "gpt-4"
    assert router.is_configured("gpt-4")
    assert not router.is_configured("no-such-model")
    assert router.missing_credentials() == frozenset()


@pytest.mark.asyncio
async def test_empty_catalog_is_kept(adapters):
    store = ConfigStore.from_mapping(make_settings())
    router = RequestRouter(store, ModelCatalog([]), adapters=adapters, retry_wait=wait_none())

    assert router.list_models() == ()
    with pytest.raises(UnknownModelError):
        await router.complete("hi", "gpt-4")
    assert adapters[Provider.OPENAI].calls == 0


@pytest.mark.asyncio
async def test_request_and_retry_events_are_logged(router, adapters, caplog):
    adapters[Provider.OPENAI].outcomes = [_rate_limited()]

    with caplog.at_level(logging.INFO):
        await router.complete("hi", "gpt-4")

    assert '"event":"ai_request"' in caplog.text
    assert '"event":"provider_retry"' in caplog.text
    assert '"event":"ai_response"' in caplog.text
    assert '"estimated_cost_usd":0.00045' in caplog.text
