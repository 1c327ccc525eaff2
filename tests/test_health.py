"""Tests for provider health probing and classification."""

import asyncio
import logging
import time

import pytest

from polyroute.ai.types import Provider
from polyroute.config import ConfigStore
from polyroute.errors import PermanentProviderError, TransientProviderError
from polyroute.resilience.circuit_breaker import (
    BreakerConfig,
    BreakerState,
    CircuitBreakerRegistry,
)
from polyroute.resilience.health import (
    HealthMonitor,
    HealthStatus,
    classify_health,
)
from test_helpers import FakeClock, make_settings


def _monitor(adapters, store=None, breakers=None, **kwargs):
    store = store or ConfigStore.from_mapping(make_settings())
    breakers = breakers or CircuitBreakerRegistry(BreakerConfig(failure_threshold=1), clock=FakeClock())
    return HealthMonitor(store, breakers, adapters, **kwargs)


def _open(breakers, provider):
    breakers.record_failure(breakers.acquire(provider))


def test_classify_health():
    assert classify_health(True, 10.0, BreakerState.CLOSED, 100.0) is HealthStatus.HEALTHY
    assert classify_health(True, 150.0, BreakerState.CLOSED, 100.0) is HealthStatus.DEGRADED
    assert classify_health(True, 10.0, BreakerState.HALF_OPEN, 100.0) is HealthStatus.DEGRADED
    assert classify_health(True, 10.0, BreakerState.OPEN, 100.0) is HealthStatus.UNHEALTHY
    assert classify_health(False, 10.0, BreakerState.CLOSED, 100.0) is HealthStatus.UNHEALTHY


def test_initial_records_are_healthy_and_unchecked(adapters):
    monitor = _monitor(adapters)
    records = monitor.records()

    assert list(records) == list(Provider)
    for record in records.values():
        assert record.status is HealthStatus.HEALTHY
        assert record.last_checked_at is None
        assert not record.checked


@pytest.mark.asyncio
async def test_successful_probe_is_healthy(adapters):
    monitor = _monitor(adapters)

    record = await monitor.probe(Provider.OPENAI)

    assert record.status is HealthStatus.HEALTHY
    assert record.checked
    assert record.error is None
    assert record.latency_ms >= 0
    assert adapters[Provider.OPENAI].probe_calls == 1
    assert monitor.record(Provider.OPENAI) == record


@pytest.mark.asyncio
async def test_slow_probe_is_degraded(adapters):
    adapters[Provider.OLLAMA].probe_delay = 0.05
    monitor = _monitor(adapters, degraded_latency_ms=5)

    record = await monitor.probe(Provider.OLLAMA)

    assert record.status is HealthStatus.DEGRADED
    assert record.latency_ms > 5


@pytest.mark.asyncio
async def test_failed_probe_is_unhealthy_with_error(adapters):
    adapters[Provider.ANTHROPIC].probe_error = TransientProviderError(
        Provider.ANTHROPIC, "anthropic probe connection failed"
    )
    monitor = _monitor(adapters)

    record = await monitor.probe(Provider.ANTHROPIC)

    assert record.status is HealthStatus.UNHEALTHY
    assert "connection failed" in record.error


@pytest.mark.asyncio
async def test_auth_failure_probe_is_unhealthy(adapters):
    adapters[Provider.GOOGLE].probe_error = PermanentProviderError(
        Provider.GOOGLE, "google API error (403): forbidden", status_code=403
    )
    monitor = _monitor(adapters)

    record = await monitor.probe(Provider.GOOGLE)

    assert record.status is HealthStatus.UNHEALTHY


@pytest.mark.asyncio
async def test_probe_timeout_is_unhealthy(adapters):
    adapters[Provider.OPENAI].probe_delay = 1.0
    monitor = _monitor(adapters, probe_timeout_sec=0.05)

    record = await monitor.probe(Provider.OPENAI)

    assert record.status is HealthStatus.UNHEALTHY
    assert "timed out" in record.error


@pytest.mark.asyncio
async def test_settings_probe_timeout_bounds_hung_probe(adapters):
    adapters[Provider.OPENAI].probe_delay = 3600
    store = ConfigStore.from_mapping(make_settings(health={"probe_timeout_sec": 0.05}))
    monitor = _monitor(adapters, store=store)

    record = await asyncio.wait_for(monitor.probe(Provider.OPENAI), timeout=1.0)

    assert record.status is HealthStatus.UNHEALTHY
    assert "timed out" in record.error


@pytest.mark.parametrize("timeout", [0, -1])
def test_non_positive_probe_timeout_rejected(adapters, timeout):
    with pytest.raises(ValueError, match="probe_timeout_sec"):
        _monitor(adapters, probe_timeout_sec=timeout)


@pytest.mark.asyncio
async def test_unconfigured_provider_probe_is_unhealthy(adapters):
    settings = make_settings()
    del settings["api_keys"]["google"]
    monitor = _monitor(adapters, store=ConfigStore.from_mapping(settings))

    record = await monitor.probe(Provider.GOOGLE)

    assert record.status is HealthStatus.UNHEALTHY
    assert "not configured" in record.error
    assert adapters[Provider.GOOGLE].probe_calls == 0


@pytest.mark.asyncio
async def test_open_breaker_overrides_successful_probe(adapters):
    breakers = CircuitBreakerRegistry(BreakerConfig(failure_threshold=1), clock=FakeClock())
    _open(breakers, Provider.OPENAI)
    monitor = _monitor(adapters, breakers=breakers)

    record = await monitor.probe(Provider.OPENAI)

    assert record.status is HealthStatus.UNHEALTHY
    assert record.error is None


@pytest.mark.asyncio
async def test_half_open_breaker_reports_degraded(adapters):
    clock = FakeClock()
    breakers = CircuitBreakerRegistry(
        BreakerConfig(failure_threshold=1, cooldown_sec=10.0), clock=clock
    )
    _open(breakers, Provider.OPENAI)
    clock.advance(10)
    breakers.acquire(Provider.OPENAI)
    monitor = _monitor(adapters, breakers=breakers)

    record = await monitor.probe(Provider.OPENAI)

    assert record.status is HealthStatus.DEGRADED


@pytest.mark.asyncio
async def test_probe_all_runs_concurrently(adapters):
    for adapter in adapters.values():
        adapter.probe_delay = 0.2
    monitor = _monitor(adapters)

    started = time.perf_counter()
    records = await monitor.probe_all()
    elapsed = time.perf_counter() - started

    assert set(records) == set(Provider)
    assert elapsed < 0.6


@pytest.mark.asyncio
async def test_probe_all_subset_keeps_order(adapters):
    monitor = _monitor(adapters)

    records = await monitor.probe_all([Provider.OLLAMA, Provider.OPENAI])

    assert list(records) == [Provider.OLLAMA, Provider.OPENAI]
    assert adapters[Provider.ANTHROPIC].probe_calls == 0


def test_observe_folds_call_outcomes(adapters):
    breakers = CircuitBreakerRegistry(BreakerConfig(failure_threshold=5), clock=FakeClock())
    monitor = _monitor(adapters, breakers=breakers)

    failed = monitor.observe(Provider.OPENAI, ok=False, error="timeout talking to sk-abcdefghijklmnop")
    assert failed.status is HealthStatus.UNHEALTHY
    assert "sk-abcdefghijklmnop" not in failed.error

    recovered = monitor.observe(Provider.OPENAI, ok=True)
    assert recovered.status is HealthStatus.HEALTHY
    assert recovered.error is None
    assert recovered.checked


@pytest.mark.asyncio
async def test_probe_emits_health_event(adapters, caplog):
    monitor = _monitor(adapters)

    with caplog.at_level(logging.INFO):
        await monitor.probe(Provider.OPENAI)

    assert '"event":"health_probe"' in caplog.text
    assert '"status":"healthy"' in caplog.text


@pytest.mark.asyncio
async def test_probe_is_cancellable(adapters):
    adapters[Provider.OPENAI].probe_delay = 5.0
    monitor = _monitor(adapters, probe_timeout_sec=10)

    task = asyncio.create_task(monitor.probe(Provider.OPENAI))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
