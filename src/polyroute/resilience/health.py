"""Provider health probing and classification."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from ..ai.types import Provider
from ..errors import PolyrouteError
from ..logging import log_event, sanitize_error_message
from ..time_utils import utc_now
from .circuit_breaker import BreakerState, CircuitBreakerRegistry

if TYPE_CHECKING:
    from ..ai.adapters import ProviderAdapter
    from ..config import ConfigStore


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True, slots=True)
class HealthRecord:
    """Latest known health of one provider. Not persisted."""

    provider: Provider
    status: HealthStatus
    latency_ms: float = 0.0
    last_checked_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def checked(self) -> bool:
        return self.last_checked_at is not None


def classify_health(
    probe_ok: bool,
    latency_ms: float,
    breaker_state: BreakerState,
    degraded_latency_ms: float,
) -> HealthStatus:
    """Combine probe outcome, latency, and breaker state into one status."""
    if not probe_ok or breaker_state is BreakerState.OPEN:
        return HealthStatus.UNHEALTHY
    if latency_ms > degraded_latency_ms or breaker_state is BreakerState.HALF_OPEN:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


class HealthMonitor:
    """Probes providers on demand and keeps one record per provider.

    Probe timeout and the degraded-latency threshold come from the store's
    current settings unless overridden here.
    """

    def __init__(
        self,
        store: ConfigStore,
        breakers: CircuitBreakerRegistry,
        adapters: Mapping[Provider, ProviderAdapter],
        *,
        probe_timeout_sec: float | None = None,
        degraded_latency_ms: float | None = None,
    ) -> None:
        if probe_timeout_sec is not None and probe_timeout_sec <= 0:
            raise ValueError("probe_timeout_sec must be greater than zero")
        self._store = store
        self._breakers = breakers
        self._adapters = adapters
        self._probe_timeout_sec = probe_timeout_sec
        self._degraded_latency_ms = degraded_latency_ms
        self._locks = {provider: threading.Lock() for provider in Provider}
        self._records = {
            provider: HealthRecord(provider, HealthStatus.HEALTHY) for provider in Provider
        }

    def _store_record(self, record: HealthRecord) -> None:
        with self._locks[record.provider]:
            self._records[record.provider] = record

    def record(self, provider: Provider) -> HealthRecord:
        provider = Provider(provider)
        with self._locks[provider]:
            return self._records[provider]

    def records(self) -> dict[Provider, HealthRecord]:
        return {provider: self.record(provider) for provider in Provider}

    async def probe(self, provider: Provider) -> HealthRecord:
        """Run one reachability probe and classify the provider."""
        provider = Provider(provider)
        snapshot = self._store.snapshot()
        settings = snapshot.settings
        timeout_sec = (
            self._probe_timeout_sec
            if self._probe_timeout_sec is not None
            else settings.probe_timeout_sec
        )
        degraded_ms = (
            self._degraded_latency_ms
            if self._degraded_latency_ms is not None
            else settings.degraded_latency_ms
        )

        probe_ok = False
        error: Optional[str] = None
        error_type: Optional[str] = None
        started = time.perf_counter()
        try:
            credentials = snapshot.credentials_for(provider)
            adapter = self._adapters[provider]
            await asyncio.wait_for(
                adapter.probe(credentials, timeout_sec),
                timeout=timeout_sec,
            )
            probe_ok = True
        except TimeoutError:
            error_type = "TimeoutError"
            error = f"Probe timed out after {timeout_sec}s"
        except PolyrouteError as e:
            error_type = type(e).__name__
            error = sanitize_error_message(str(e))
        except Exception as e:
            # Any other probe failure means the endpoint is not usable.
            error_type = type(e).__name__
            error = sanitize_error_message(str(e)) or error_type
        latency_ms = round((time.perf_counter() - started) * 1000, 1)

        breaker_state = self._breakers.status(provider).state
        status = classify_health(probe_ok, latency_ms, breaker_state, degraded_ms)
        record = HealthRecord(
            provider=provider,
            status=status,
            latency_ms=latency_ms,
            last_checked_at=utc_now(),
            error=error,
        )
        self._store_record(record)

        log_event(
            "health_probe",
            level=logging.INFO if probe_ok else logging.WARNING,
            provider=provider,
            status=status,
            latency_ms=latency_ms,
            breaker_state=breaker_state,
            error_type=error_type,
            error=error,
        )
        return record

    async def probe_all(
        self,
        providers: Iterable[Provider] | None = None,
    ) -> dict[Provider, HealthRecord]:
        """Probe several providers concurrently; each has its own timeout."""
        targets = list(dict.fromkeys(Provider(p) for p in (providers or Provider)))
        results = await asyncio.gather(*(self.probe(p) for p in targets))
        return dict(zip(targets, results))

    def observe(self, provider: Provider, ok: bool, error: Optional[str] = None) -> HealthRecord:
        """Fold a routed call's outcome into the provider's record.

        Keeps the last probe latency; only status, timestamp, and error change.
        """
        provider = Provider(provider)
        breaker_state = self._breakers.status(provider).state
        degraded_ms = (
            self._degraded_latency_ms
            if self._degraded_latency_ms is not None
            else self._store.settings.degraded_latency_ms
        )
        with self._locks[provider]:
            previous = self._records[provider]
            status = classify_health(ok, previous.latency_ms, breaker_state, degraded_ms)
            if ok:
                error = None
            record = HealthRecord(
                provider=provider,
                status=status,
                latency_ms=previous.latency_ms,
                last_checked_at=utc_now(),
                error=sanitize_error_message(error) if error else None,
            )
            self._records[provider] = record
            return record
