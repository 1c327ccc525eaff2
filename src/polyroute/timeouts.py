"""Centralized timeout, retry, and breaker policy defaults."""

from __future__ import annotations

import math
from typing import Any

import httpx


# Provider request timeout default (seconds, 0 = wait forever).
DEFAULT_REQUEST_TIMEOUT_SEC = 60

# Shared provider HTTP timeout buckets.
AI_HTTP_CONNECT_TIMEOUT_SEC = 10.0
AI_HTTP_WRITE_TIMEOUT_SEC = 15.0
AI_HTTP_POOL_TIMEOUT_SEC = 5.0

# Health probe defaults.
DEFAULT_PROBE_TIMEOUT_SEC = 5.0
DEFAULT_DEGRADED_LATENCY_MS = 2000.0

# Retry/backoff timing defaults.
STANDARD_RETRY_ATTEMPTS = 3
RETRY_BACKOFF_INITIAL_SEC = 1.0
RETRY_BACKOFF_MAX_SEC = 30.0
RETRY_BACKOFF_JITTER = 1.0

# Circuit breaker defaults.
DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_FAILURE_WINDOW_SEC = 60.0
DEFAULT_COOLDOWN_SEC = 60.0
DEFAULT_MAX_COOLDOWN_SEC = 300.0
DEFAULT_COOLDOWN_BACKOFF = 2.0


def normalize_timeout(value: Any, fallback: int | float) -> int | float:
    """Normalize timeout-like values to non-negative finite int/float."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        normalized = float(fallback)
    else:
        normalized = float(value)
    if not math.isfinite(normalized) or normalized < 0:
        normalized = float(fallback)
    if normalized.is_integer():
        return int(normalized)
    return normalized


def build_ai_httpx_timeout(read_timeout_sec: int | float) -> httpx.Timeout | None:
    """Build httpx timeout config for provider clients."""
    timeout_sec = normalize_timeout(read_timeout_sec, DEFAULT_REQUEST_TIMEOUT_SEC)
    if timeout_sec <= 0:
        return None
    return httpx.Timeout(
        connect=AI_HTTP_CONNECT_TIMEOUT_SEC,
        read=timeout_sec,
        write=AI_HTTP_WRITE_TIMEOUT_SEC,
        pool=AI_HTTP_POOL_TIMEOUT_SEC,
    )


def format_timeout(timeout: int | float) -> str:
    """Format timeout value for user-facing messages."""
    if timeout == 0:
        return "0 (wait forever)"
    return f"{timeout} seconds"
