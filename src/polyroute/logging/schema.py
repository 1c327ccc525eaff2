"""Preferred key order per structured log event.

``provider`` is rendered in the block header, so it is not listed here.
"""

from __future__ import annotations

DEFAULT_EVENT_KEY_ORDER: list[str] = ["ts_utc", "level", "logger"]

EVENT_KEY_ORDER: dict[str, list[str]] = {
    "app_start": ["ts_utc", "level", "command", "settings_file", "log_file"],
    "app_stop": ["ts_utc", "level", "reason", "uptime_ms", "error_type", "error"],
    "config_refresh": [
        "ts_utc",
        "level",
        "default_model",
        "configured",
        "missing",
        "error_type",
        "error",
    ],
    "credential_load_error": ["ts_utc", "level", "key_type", "error_type", "error"],
    "ai_request": [
        "ts_utc",
        "level",
        "model",
        "message_count",
        "input_chars",
        "has_system_prompt",
        "max_output_tokens",
    ],
    "ai_response": [
        "ts_utc",
        "level",
        "model",
        "attempts",
        "latency_ms",
        "output_chars",
        "input_tokens",
        "output_tokens",
        "total_tokens",
        "estimated_cost_usd",
    ],
    "ai_error": [
        "ts_utc",
        "level",
        "model",
        "attempts",
        "latency_ms",
        "error_kind",
        "error_type",
        "error",
        "http_status",
        "http_method",
        "http_url",
        "http_reason",
    ],
    "ai_cancelled": ["ts_utc", "level", "model", "latency_ms"],
    "provider_retry": [
        "ts_utc",
        "level",
        "operation",
        "attempt",
        "sleep_sec",
        "result",
        "error_type",
        "error",
    ],
    "circuit_state_change": [
        "ts_utc",
        "level",
        "from_state",
        "to_state",
        "reason",
        "consecutive_failures",
        "cooldown_sec",
    ],
    "provider_log": ["ts_utc", "level", "message"],
    "circuit_rejected": ["ts_utc", "level", "state", "remaining_sec"],
    "health_probe": [
        "ts_utc",
        "level",
        "status",
        "latency_ms",
        "breaker_state",
        "error_type",
        "error",
    ],
}
