"""Plaintext rendering of polyroute's structured log events.

Every record becomes one block::

    === circuit_state_change [openai] ===
    summary: closed -> open (failure threshold reached)
    ts_utc: 2024-05-01T10:00:00.000000Z
    ...

The bracketed provider and the ``summary`` line are derived from the JSON
payload written by ``log_event``. Records from other loggers (httpx, the
SDKs) are shown with their message text.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from ..time_utils import utc_now_iso
from .sanitization import sanitize_error_message
from .schema import DEFAULT_EVENT_KEY_ORDER, EVENT_KEY_ORDER

HTTPX_REQUEST_FORMAT = 'HTTP Request: %s %s "%s %d %s"'


def _retry_summary(data: dict[str, Any]) -> str:
    text = f"attempt {data.get('attempt')} failed"
    if data.get("error_type"):
        text += f" with {data['error_type']}"
    if data.get("sleep_sec") is not None:
        text += f", next try in {data['sleep_sec']}s"
    return text


def _state_change_summary(data: dict[str, Any]) -> str:
    text = f"{data.get('from_state')} -> {data.get('to_state')}"
    if data.get("reason"):
        text += f" ({data['reason']})"
    if data.get("cooldown_sec") is not None:
        text += f", cooling down {data['cooldown_sec']}s"
    return text


def _rejected_summary(data: dict[str, Any]) -> str:
    return f"fail-fast while {data.get('state')}, {data.get('remaining_sec')}s remaining"


def _probe_summary(data: dict[str, Any]) -> str:
    text = f"{data.get('status')} in {data.get('latency_ms')}ms"
    if data.get("breaker_state"):
        text += f", breaker {data['breaker_state']}"
    return text


def _error_summary(data: dict[str, Any]) -> str:
    text = f"{data.get('model')} failed with {data.get('error_kind')}"
    if data.get("http_status") is not None:
        text += f" (HTTP {data['http_status']})"
    return text + f" after {data.get('attempts')} attempt(s)"


def _response_summary(data: dict[str, Any]) -> str:
    return (
        f"{data.get('model')} answered in {data.get('latency_ms')}ms "
        f"({data.get('total_tokens')} tokens)"
    )


EVENT_SUMMARIES: dict[str, Callable[[dict[str, Any]], str]] = {
    "provider_retry": _retry_summary,
    "circuit_state_change": _state_change_summary,
    "circuit_rejected": _rejected_summary,
    "health_probe": _probe_summary,
    "ai_error": _error_summary,
    "ai_response": _response_summary,
}


def _decode_httpx_record(record: logging.LogRecord) -> dict[str, Any] | None:
    """Turn httpx's request log line into fields; the URL may carry a key."""
    if (
        record.name != "httpx"
        or str(record.msg) != HTTPX_REQUEST_FORMAT
        or not isinstance(record.args, tuple)
        or len(record.args) != 5
    ):
        return None
    method, url, version, status, reason = record.args
    return {
        "event": "httpx_request",
        "http_method": str(method),
        "http_url": sanitize_error_message(str(url)),
        "http_version": str(version),
        "http_status": status if isinstance(status, int) else str(status),
        "http_reason": str(reason),
    }


def _parse_event_payload(message: str) -> dict[str, Any] | None:
    if not (message.startswith("{") and message.endswith("}")):
        return None
    try:
        parsed = json.loads(message)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


class StructuredTextFormatter(logging.Formatter):
    """Render log records as ``=== event [provider] ===`` blocks."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._first_entry = True

    @staticmethod
    def _format_value(value: Any) -> str:
        if isinstance(value, (dict, list)):
            value = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        return str(value).replace("\n", "\\n")

    @staticmethod
    def _ordered_keys(event_name: str, data: dict[str, Any]) -> list[str]:
        preferred = EVENT_KEY_ORDER.get(event_name, DEFAULT_EVENT_KEY_ORDER)
        present = [key for key in preferred if data.get(key) is not None]
        rest = sorted(key for key, value in data.items() if key not in preferred and value is not None)
        return present + rest

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "ts_utc": utc_now_iso(),
            "level": record.levelname,
            "logger": record.name,
        }
        message = record.getMessage()
        payload = _parse_event_payload(message) or _decode_httpx_record(record)
        if payload is not None:
            data.update(payload)
        else:
            data["message"] = message

        event_name = str(data.pop("event", record.name))
        # Shown in the header instead of as a field.
        provider = data.pop("provider", None)
        header = f"=== {event_name} [{provider}] ===" if provider else f"=== {event_name} ==="
        lines = [header]

        summarize = EVENT_SUMMARIES.get(event_name)
        if summarize is not None:
            lines.append(f"summary: {summarize(data)}")
        for key in self._ordered_keys(event_name, data):
            lines.append(f"{key}: {self._format_value(data[key])}")

        if record.exc_info:
            lines.append("traceback:")
            lines.append(self.formatException(record.exc_info))

        body = "\n".join(lines)
        if self._first_entry:
            self._first_entry = False
            return body
        return "\n" + body
