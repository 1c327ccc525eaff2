"""Shared provider log-message helpers."""

from __future__ import annotations

import logging

from ..logging import log_event
from .types import Provider


def log_provider_warning(provider: Provider, message: str) -> None:
    log_event(
        "provider_log",
        level=logging.WARNING,
        provider=provider,
        message=message,
    )


def empty_response_message(provider: Provider, model: str) -> str:
    """Build the standard empty-response message."""
    return f"No response content from {provider.value} (model={model})"
