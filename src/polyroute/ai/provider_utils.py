"""Shared helpers for provider implementations."""

from __future__ import annotations

import logging
import threading
from collections.abc import AsyncIterator, Awaitable, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..errors import PermanentProviderError, ProviderError, TransientProviderError
from ..logging import log_event, sanitize_error_message
from .types import ChatMessage, Provider

if TYPE_CHECKING:
    from ..config import Credentials

# Status codes worth another attempt: request timeout, conflict/lock,
# rate limit, and every server-side failure (incl. Anthropic's 529).
TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 429})


def is_transient_status(status_code: Optional[int]) -> bool:
    """Return True when an HTTP status should be retried."""
    if status_code is None:
        return False
    return status_code in TRANSIENT_STATUS_CODES or status_code >= 500


def error_from_status(
    provider: Provider,
    status_code: Optional[int],
    error: BaseException,
) -> ProviderError:
    """Map an HTTP-status failure into the transient/permanent taxonomy."""
    message = sanitize_error_message(f"{provider.value} API error ({status_code}): {error}")
    if is_transient_status(status_code):
        return TransientProviderError(provider, message, status_code=status_code)
    return PermanentProviderError(provider, message, status_code=status_code)


def transient_error(provider: Provider, error: BaseException, detail: str) -> TransientProviderError:
    """Wrap a connection/timeout failure."""
    return TransientProviderError(
        provider,
        sanitize_error_message(f"{provider.value} {detail}: {type(error).__name__}: {error}"),
    )


def format_chat_messages(
    chat_messages: Sequence[ChatMessage],
    system_prompt: Optional[str] = None,
    *,
    system_role: str = "system",
) -> list[dict[str, str]]:
    """Convert messages into simple role/content payloads."""
    formatted: list[dict[str, str]] = []
    if system_prompt:
        formatted.append({"role": system_role, "content": system_prompt})
    for msg in chat_messages:
        formatted.append(msg.to_dict())
    return formatted


class _ClientEntry:
    __slots__ = ("key", "client", "leases", "retired")

    def __init__(self, key: tuple[Any, ...], client: Any) -> None:
        self.key = key
        self.client = client
        self.leases = 0
        self.retired = False


class ClientCache:
    """Keeps one SDK client per provider, keyed by API key and endpoint.

    Timeouts are passed per call, so probes and completions share the
    client's connection pool. A refresh that changes the key or endpoint
    builds a new client; the replaced one is closed once its last in-flight
    call finishes.
    """

    def __init__(
        self,
        factory: Callable[[Credentials], Any],
        closer: Optional[Callable[[Any], Awaitable[None]]] = None,
    ) -> None:
        self._factory = factory
        self._closer = closer
        self._lock = threading.Lock()
        self._entry: Optional[_ClientEntry] = None

    @asynccontextmanager
    async def lease(self, credentials: Credentials) -> AsyncIterator[Any]:
        """Hold the current client for the duration of one call."""
        with self._lock:
            entry, drained = self._current(credentials)
            entry.leases += 1
        try:
            if drained is not None:
                await self._close(drained)
            yield entry.client
        finally:
            with self._lock:
                entry.leases -= 1
                finished = entry.retired and entry.leases == 0
            if finished:
                await self._close(entry)

    def _current(self, credentials: Credentials) -> tuple[_ClientEntry, Optional[_ClientEntry]]:
        # Caller holds the lock. Returns the live entry plus a retired entry
        # that has no leases left and should be closed now.
        key = (credentials.api_key, credentials.base_url)
        entry = self._entry
        if entry is not None and entry.key == key:
            return entry, None
        drained = None
        if entry is not None:
            entry.retired = True
            if entry.leases == 0:
                drained = entry
        self._entry = _ClientEntry(key, self._factory(credentials))
        return self._entry, drained

    async def _close(self, entry: _ClientEntry) -> None:
        if self._closer is None:
            return
        try:
            await self._closer(entry.client)
        except Exception as e:
            log_event(
                "provider_log",
                level=logging.WARNING,
                message=sanitize_error_message(
                    f"failed to close replaced client: {type(e).__name__}: {e}"
                ),
            )
