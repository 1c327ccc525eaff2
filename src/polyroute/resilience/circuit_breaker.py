"""Per-provider circuit breaker.

One entry per provider, each guarded by its own lock. Calls to different
providers never contend; calls to the same provider serialize only around
the admission and outcome bookkeeping, never around network I/O.

State machine::

    closed --(threshold failures in window)--> open
    open --(cooldown elapsed, next call)--> half_open (single trial admitted)
    half_open --(trial succeeds)--> closed
    half_open --(trial fails)--> open (cooldown backed off)
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from ..ai.types import Provider
from ..errors import CircuitOpenError
from ..logging import log_event
from ..timeouts import (
    DEFAULT_COOLDOWN_BACKOFF,
    DEFAULT_COOLDOWN_SEC,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_FAILURE_WINDOW_SEC,
    DEFAULT_MAX_COOLDOWN_SEC,
)

if TYPE_CHECKING:
    from ..config import RelaySettings


class BreakerState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True, slots=True)
class BreakerConfig:
    """Thresholds shared by every provider's breaker."""

    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    failure_window_sec: float = DEFAULT_FAILURE_WINDOW_SEC
    cooldown_sec: float = DEFAULT_COOLDOWN_SEC
    max_cooldown_sec: float = DEFAULT_MAX_COOLDOWN_SEC
    backoff_multiplier: float = DEFAULT_COOLDOWN_BACKOFF

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.cooldown_sec < 0 or self.max_cooldown_sec < self.cooldown_sec:
            raise ValueError("cooldown_sec must be >= 0 and <= max_cooldown_sec")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> BreakerConfig:
        return cls(
            failure_threshold=settings.failure_threshold,
            failure_window_sec=settings.failure_window_sec,
            cooldown_sec=settings.cooldown_sec,
            max_cooldown_sec=settings.max_cooldown_sec,
        )


@dataclass(frozen=True, slots=True)
class BreakerSnapshot:
    """Read-only view of one provider's breaker.

    ``last_failure_at`` and ``cooldown_until`` are readings of the registry
    clock (monotonic seconds by default), not wall-clock timestamps.
    """

    provider: Provider
    state: BreakerState
    consecutive_failures: int
    last_failure_at: Optional[float] = None
    cooldown_until: Optional[float] = None


@dataclass(frozen=True, slots=True)
class BreakerTicket:
    """Admission handed out by ``acquire``; every ticket gets exactly one outcome."""

    provider: Provider
    trial: bool
    generation: int


@dataclass
class _BreakerEntry:
    provider: Provider
    cooldown_sec: float
    lock: threading.Lock = field(default_factory=threading.Lock)
    state: BreakerState = BreakerState.CLOSED
    failure_times: deque[float] = field(default_factory=deque)
    consecutive_failures: int = 0
    last_failure_at: Optional[float] = None
    cooldown_until: Optional[float] = None
    trial_in_flight: bool = False
    generation: int = 0

    def snapshot(self) -> BreakerSnapshot:
        return BreakerSnapshot(
            provider=self.provider,
            state=self.state,
            consecutive_failures=self.consecutive_failures,
            last_failure_at=self.last_failure_at,
            cooldown_until=self.cooldown_until,
        )


class CircuitBreakerRegistry:
    """Indexed table of breakers, one per provider."""

    def __init__(
        self,
        config: BreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or BreakerConfig()
        self._clock = clock
        self._entries: dict[Provider, _BreakerEntry] = {
            provider: _BreakerEntry(provider, cooldown_sec=self._config.cooldown_sec)
            for provider in Provider
        }

    @property
    def config(self) -> BreakerConfig:
        return self._config

    def configure(self, config: BreakerConfig) -> None:
        """Apply new thresholds. Current states and counters are kept."""
        self._config = config

    def _entry(self, provider: Provider) -> _BreakerEntry:
        return self._entries[Provider(provider)]

    def _transition(
        self,
        entry: _BreakerEntry,
        new_state: BreakerState,
        reason: str,
    ) -> None:
        old_state = entry.state
        entry.state = new_state
        log_event(
            "circuit_state_change",
            level=logging.WARNING if new_state is BreakerState.OPEN else logging.INFO,
            provider=entry.provider,
            from_state=old_state,
            to_state=new_state,
            reason=reason,
            consecutive_failures=entry.consecutive_failures,
            cooldown_sec=entry.cooldown_sec if new_state is BreakerState.OPEN else None,
        )

    def _open(self, entry: _BreakerEntry, now: float, reason: str) -> None:
        entry.cooldown_until = now + entry.cooldown_sec
        entry.failure_times.clear()
        self._transition(entry, BreakerState.OPEN, reason)

    def _reject(self, entry: _BreakerEntry, remaining: float) -> CircuitOpenError:
        log_event(
            "circuit_rejected",
            level=logging.INFO,
            provider=entry.provider,
            state=entry.state,
            remaining_sec=round(remaining, 3),
        )
        return CircuitOpenError(entry.provider, remaining)

    def acquire(self, provider: Provider) -> BreakerTicket:
        """Admit a call or fail fast.

        Raises:
            CircuitOpenError: While the cooldown runs, or while another
                call holds the half-open trial slot
        """
        entry = self._entry(provider)
        with entry.lock:
            now = self._clock()
            if entry.state is BreakerState.OPEN:
                remaining = (entry.cooldown_until or now) - now
                if remaining > 0:
                    raise self._reject(entry, remaining)
                self._transition(entry, BreakerState.HALF_OPEN, "cooldown_elapsed")
                entry.trial_in_flight = True
                return BreakerTicket(entry.provider, trial=True, generation=entry.generation)

            if entry.state is BreakerState.HALF_OPEN:
                if entry.trial_in_flight:
                    raise self._reject(entry, 0.0)
                entry.trial_in_flight = True
                return BreakerTicket(entry.provider, trial=True, generation=entry.generation)

            return BreakerTicket(entry.provider, trial=False, generation=entry.generation)

    def record_success(self, ticket: BreakerTicket) -> None:
        entry = self._entry(ticket.provider)
        with entry.lock:
            if ticket.generation != entry.generation:
                return
            if ticket.trial:
                entry.trial_in_flight = False
                entry.consecutive_failures = 0
                entry.failure_times.clear()
                entry.cooldown_until = None
                entry.cooldown_sec = self._config.cooldown_sec
                self._transition(entry, BreakerState.CLOSED, "trial_succeeded")
            elif entry.state is BreakerState.CLOSED:
                entry.consecutive_failures = 0
                entry.failure_times.clear()

    def record_failure(self, ticket: BreakerTicket) -> None:
        entry = self._entry(ticket.provider)
        with entry.lock:
            if ticket.generation != entry.generation:
                return
            now = self._clock()
            entry.last_failure_at = now

            if ticket.trial:
                entry.trial_in_flight = False
                entry.consecutive_failures += 1
                entry.cooldown_sec = min(
                    entry.cooldown_sec * self._config.backoff_multiplier,
                    self._config.max_cooldown_sec,
                )
                self._open(entry, now, "trial_failed")
                return

            if entry.state is not BreakerState.CLOSED:
                # Late result from a call admitted before the breaker opened.
                entry.consecutive_failures += 1
                return

            cutoff = now - self._config.failure_window_sec
            while entry.failure_times and entry.failure_times[0] <= cutoff:
                entry.failure_times.popleft()
            entry.failure_times.append(now)
            entry.consecutive_failures = len(entry.failure_times)

            if entry.consecutive_failures >= self._config.failure_threshold:
                entry.cooldown_sec = self._config.cooldown_sec
                self._open(entry, now, "failure_threshold")

    def release(self, ticket: BreakerTicket) -> None:
        """Give a ticket back without counting an outcome (e.g. caller cancelled)."""
        entry = self._entry(ticket.provider)
        with entry.lock:
            if ticket.generation == entry.generation and ticket.trial:
                entry.trial_in_flight = False

    def reset(self, provider: Provider) -> BreakerSnapshot:
        """Force the breaker closed with zero failures."""
        entry = self._entry(provider)
        with entry.lock:
            entry.generation += 1
            entry.consecutive_failures = 0
            entry.failure_times.clear()
            entry.last_failure_at = None
            entry.cooldown_until = None
            entry.trial_in_flight = False
            entry.cooldown_sec = self._config.cooldown_sec
            if entry.state is not BreakerState.CLOSED:
                self._transition(entry, BreakerState.CLOSED, "manual_reset")
            return entry.snapshot()

    def status(self, provider: Provider) -> BreakerSnapshot:
        entry = self._entry(provider)
        with entry.lock:
            return entry.snapshot()

    def statuses(self) -> dict[Provider, BreakerSnapshot]:
        return {provider: self.status(provider) for provider in Provider}

    def remaining_cooldown(self, provider: Provider) -> float:
        """Seconds until an open breaker admits its trial call; 0 otherwise."""
        entry = self._entry(provider)
        with entry.lock:
            if entry.state is not BreakerState.OPEN or entry.cooldown_until is None:
                return 0.0
            return max(0.0, entry.cooldown_until - self._clock())
