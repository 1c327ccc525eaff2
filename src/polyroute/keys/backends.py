"""Secret sources for provider API keys: environment, JSON file, keyring.

Each loader names the provider it is loading for, so a failed load reads
as "anthropic API key: ..." in the ``credential_load_error`` event and in
CLI output.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import keyring
from keyring.errors import KeyringError


class KeyLoadError(ValueError):
    """A configured key source could not produce a usable secret."""

    def __init__(self, provider: str, source: str, reason: str) -> None:
        super().__init__(f"{provider} API key ({source}): {reason}")
        self.provider = provider
        self.source = source


def _usable(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def load_from_env(provider: str, var_name: str) -> str:
    """Read the key from an environment variable; blank counts as unset."""
    value = _usable(os.environ.get(var_name))
    if value is None:
        raise KeyLoadError(
            provider,
            f"env {var_name}",
            f"environment variable is not set (export {var_name}=...)",
        )
    return value


def _walk_dotted(data: Any, dotted_key: str) -> tuple[Any, list[str]]:
    """Follow ``a.b.c`` through nested dicts.

    Returns the value (or None) and the keys available at the level where
    the lookup stopped.
    """
    node = data
    for part in dotted_key.split("."):
        if not isinstance(node, dict):
            return None, []
        if part not in node:
            return None, [str(k) for k in node]
        node = node[part]
    return node, []


def load_from_json(provider: str, file_path: str, key_name: str) -> str:
    """Read the key from a JSON file; nested keys use dot notation."""
    source = f"json {file_path}"
    path = Path(file_path).expanduser()
    if not path.is_file():
        raise FileNotFoundError(f"{provider} API key file not found: {file_path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise KeyLoadError(provider, source, f"Invalid JSON: {e}") from e

    value, available = _walk_dotted(data, key_name)
    if value is None:
        raise KeyLoadError(
            provider,
            source,
            f"key '{key_name}' not found (Available keys: {', '.join(available)})",
        )
    secret = _usable(value)
    if secret is None:
        raise KeyLoadError(provider, source, f"key '{key_name}' is not a string")
    return secret


def load_from_keyring(provider: str, service: str, account: str) -> str:
    """Read the key from the system credential store via keyring."""
    source = f"keyring {service}/{account}"
    try:
        secret = _usable(keyring.get_password(service, account))
    except KeyringError as e:
        raise KeyLoadError(provider, source, f"Failed to access credential store: {e}") from e

    if secret is None:
        raise KeyLoadError(
            provider,
            source,
            f"API key not found (add it with: keyring set {service} {account})",
        )
    return secret
