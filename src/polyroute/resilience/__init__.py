"""Fault isolation and health monitoring for provider backends."""

from .circuit_breaker import (
    BreakerConfig,
    BreakerSnapshot,
    BreakerState,
    BreakerTicket,
    CircuitBreakerRegistry,
)
from .health import HealthMonitor, HealthRecord, HealthStatus

__all__ = [
    "BreakerConfig",
    "BreakerSnapshot",
    "BreakerState",
    "BreakerTicket",
    "CircuitBreakerRegistry",
    "HealthMonitor",
    "HealthRecord",
    "HealthStatus",
]
