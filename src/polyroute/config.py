"""Settings model and the credential-owning configuration store.

Settings are read from an external source (a JSON file or a callable) and
turned into an immutable :class:`ConfigSnapshot`. ``ConfigStore.refresh()``
builds a complete new snapshot before swapping the single reference, so a
call that captured the previous snapshot keeps using it to the end.
"""

from __future__ import annotations

import json
import logging
import math
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Union

from .ai.types import LOCAL_PROVIDERS, Provider
from .constants import DEFAULT_OLLAMA_BASE_URL
from .errors import ConfigError, UnconfiguredError
from .keys.loader import KeyConfig, load_api_key, validate_key_config
from .logging import log_event
from .timeouts import (
    DEFAULT_COOLDOWN_SEC,
    DEFAULT_DEGRADED_LATENCY_MS,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_FAILURE_WINDOW_SEC,
    DEFAULT_MAX_COOLDOWN_SEC,
    DEFAULT_PROBE_TIMEOUT_SEC,
    DEFAULT_REQUEST_TIMEOUT_SEC,
    STANDARD_RETRY_ATTEMPTS,
)

DEFAULT_MODEL_ID = "gpt-4"

_KNOWN_SETTINGS_KEYS = {
    "default_model",
    "api_keys",
    "ollama_base_url",
    "timeout",
    "retry_attempts",
    "circuit_breaker",
    "health",
}


def _number(raw: Mapping[str, Any], key: str, default: float, *, context: str = "") -> float:
    value = raw.get(key, default)
    label = f"{context}.{key}" if context else key
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{label}' must be a number")
    if not math.isfinite(value) or value < 0:
        raise ConfigError(f"'{label}' must be a non-negative finite number")
    return value


def _positive_number(raw: Mapping[str, Any], key: str, default: float, *, context: str = "") -> float:
    value = _number(raw, key, default, context=context)
    if value <= 0:
        label = f"{context}.{key}" if context else key
        raise ConfigError(f"'{label}' must be greater than zero")
    return value


def _positive_int(raw: Mapping[str, Any], key: str, default: int, *, context: str = "") -> int:
    value = raw.get(key, default)
    label = f"{context}.{key}" if context else key
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"'{label}' must be a positive integer")
    return value


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{key}' must be a dictionary")
    return value


@dataclass(frozen=True, slots=True)
class RelaySettings:
    """Typed view of the externally stored settings."""

    default_model: str = DEFAULT_MODEL_ID
    api_keys: Mapping[Provider, KeyConfig] = field(default_factory=dict)
    ollama_base_url: str = DEFAULT_OLLAMA_BASE_URL
    timeout: int | float = DEFAULT_REQUEST_TIMEOUT_SEC
    retry_attempts: int = STANDARD_RETRY_ATTEMPTS
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    failure_window_sec: float = DEFAULT_FAILURE_WINDOW_SEC
    cooldown_sec: float = DEFAULT_COOLDOWN_SEC
    max_cooldown_sec: float = DEFAULT_MAX_COOLDOWN_SEC
    probe_timeout_sec: float = DEFAULT_PROBE_TIMEOUT_SEC
    degraded_latency_ms: float = DEFAULT_DEGRADED_LATENCY_MS
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> RelaySettings:
        """Validate a raw settings mapping.

        Raises:
            ConfigError: If any field has the wrong shape
        """
        if not isinstance(raw, Mapping):
            raise ConfigError("Settings must be a dictionary-like mapping")

        default_model = raw.get("default_model", DEFAULT_MODEL_ID)
        if not isinstance(default_model, str) or not default_model.strip():
            raise ConfigError("'default_model' must be a non-empty string")

        api_keys_raw = _section(raw, "api_keys")
        api_keys: dict[Provider, KeyConfig] = {}
        for name, key_config in api_keys_raw.items():
            try:
                provider = Provider(str(name).lower())
            except ValueError:
                raise ConfigError(f"Unknown provider in api_keys: '{name}'") from None
            if provider in LOCAL_PROVIDERS:
                raise ConfigError(
                    f"'{provider.value}' does not use an API key; set 'ollama_base_url' instead"
                )
            try:
                api_keys[provider] = validate_key_config(provider.value, dict(key_config))
            except (TypeError, ValueError) as e:
                raise ConfigError(str(e)) from e

        ollama_base_url = raw.get("ollama_base_url", DEFAULT_OLLAMA_BASE_URL)
        if ollama_base_url is None:
            ollama_base_url = ""
        if not isinstance(ollama_base_url, str):
            raise ConfigError("'ollama_base_url' must be a string")

        breaker = _section(raw, "circuit_breaker")
        health = _section(raw, "health")

        timeout = _number(raw, "timeout", DEFAULT_REQUEST_TIMEOUT_SEC)
        cooldown_sec = _number(breaker, "cooldown_sec", DEFAULT_COOLDOWN_SEC, context="circuit_breaker")
        max_cooldown_sec = _number(
            breaker,
            "max_cooldown_sec",
            max(DEFAULT_MAX_COOLDOWN_SEC, cooldown_sec),
            context="circuit_breaker",
        )
        if max_cooldown_sec < cooldown_sec:
            raise ConfigError("'circuit_breaker.max_cooldown_sec' must be >= cooldown_sec")

        return cls(
            default_model=default_model.strip(),
            api_keys=MappingProxyType(api_keys),
            ollama_base_url=ollama_base_url.strip().rstrip("/"),
            timeout=int(timeout) if float(timeout).is_integer() else timeout,
            retry_attempts=_positive_int(raw, "retry_attempts", STANDARD_RETRY_ATTEMPTS),
            failure_threshold=_positive_int(
                breaker, "failure_threshold", DEFAULT_FAILURE_THRESHOLD, context="circuit_breaker"
            ),
            failure_window_sec=_number(
                breaker, "failure_window_sec", DEFAULT_FAILURE_WINDOW_SEC, context="circuit_breaker"
            ),
            cooldown_sec=cooldown_sec,
            max_cooldown_sec=max_cooldown_sec,
            probe_timeout_sec=_positive_number(
                health, "probe_timeout_sec", DEFAULT_PROBE_TIMEOUT_SEC, context="health"
            ),
            degraded_latency_ms=_number(
                health, "degraded_latency_ms", DEFAULT_DEGRADED_LATENCY_MS, context="health"
            ),
            extras=MappingProxyType(
                {str(k): v for k, v in raw.items() if k not in _KNOWN_SETTINGS_KEYS}
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the settings file shape."""
        data: dict[str, Any] = {
            "default_model": self.default_model,
            "api_keys": {p.value: dict(cfg) for p, cfg in self.api_keys.items()},
            "ollama_base_url": self.ollama_base_url,
            "timeout": self.timeout,
            "retry_attempts": self.retry_attempts,
            "circuit_breaker": {
                "failure_threshold": self.failure_threshold,
                "failure_window_sec": self.failure_window_sec,
                "cooldown_sec": self.cooldown_sec,
                "max_cooldown_sec": self.max_cooldown_sec,
            },
            "health": {
                "probe_timeout_sec": self.probe_timeout_sec,
                "degraded_latency_ms": self.degraded_latency_ms,
            },
        }
        data.update(self.extras)
        return data


@dataclass(frozen=True, slots=True)
class Credentials:
    """Secret/endpoint bundle for one provider. Never shown to callers."""

    provider: Provider
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        if self.provider in LOCAL_PROVIDERS:
            return bool(self.base_url)
        return bool(self.api_key and self.api_key.strip())

    def __repr__(self) -> str:
        masked = "***" if self.api_key else None
        return f"Credentials(provider={self.provider.value!r}, api_key={masked!r}, base_url={self.base_url!r})"


@dataclass(frozen=True, slots=True)
class ConfigSnapshot:
    """Settings plus resolved credentials, captured once per call."""

    settings: RelaySettings
    credentials: Mapping[Provider, Credentials]

    def is_configured(self, provider: Provider) -> bool:
        creds = self.credentials.get(provider)
        return creds is not None and creds.is_configured

    def credentials_for(self, provider: Provider) -> Credentials:
        creds = self.credentials.get(provider)
        if creds is None or not creds.is_configured:
            raise UnconfiguredError(provider)
        return creds

    def missing_credentials(self) -> frozenset[Provider]:
        return frozenset(p for p in Provider if not self.is_configured(p))


SettingsSource = Callable[[], Union[Mapping[str, Any], RelaySettings]]
KeyLoader = Callable[[str, KeyConfig], str]


def load_settings(path: str) -> RelaySettings:
    """Load settings from a JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigError: If the JSON is malformed or the structure is invalid
    """
    settings_path = Path(path).expanduser().resolve()
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    try:
        with open(settings_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {settings_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Settings file must contain a JSON object: {settings_path}")

    # Relative json key-file paths are resolved against the settings file.
    for key_config in (raw.get("api_keys") or {}).values():
        if isinstance(key_config, dict) and key_config.get("type") == "json":
            key_path = key_config.get("path")
            if isinstance(key_path, str):
                candidate = Path(key_path).expanduser()
                if not candidate.is_absolute():
                    candidate = settings_path.parent / candidate
                key_config["path"] = str(candidate)

    return RelaySettings.from_dict(raw)


def resolve_credentials(
    settings: RelaySettings,
    key_loader: KeyLoader = load_api_key,
) -> dict[Provider, Credentials]:
    """Load every provider's secret. Failures leave that provider unconfigured."""
    resolved: dict[Provider, Credentials] = {}
    for provider in Provider:
        if provider in LOCAL_PROVIDERS:
            resolved[provider] = Credentials(provider, base_url=settings.ollama_base_url or None)
            continue

        key_config = settings.api_keys.get(provider)
        if key_config is None:
            resolved[provider] = Credentials(provider)
            continue

        try:
            api_key = key_loader(provider.value, key_config).strip()
        except (ValueError, KeyError, OSError) as e:
            log_event(
                "credential_load_error",
                level=logging.WARNING,
                provider=provider,
                key_type=key_config.get("type"),
                error_type=type(e).__name__,
                error=str(e),
            )
            api_key = ""
        resolved[provider] = Credentials(provider, api_key=api_key or None)
    return resolved


class ConfigStore:
    """Owns the credential set and swaps it atomically on refresh."""

    def __init__(self, source: SettingsSource, *, key_loader: KeyLoader = load_api_key) -> None:
        self._source = source
        self._key_loader = key_loader
        self._lock = threading.Lock()
        self._snapshot = self._build_snapshot()

    @classmethod
    def from_file(cls, path: str, **kwargs: Any) -> ConfigStore:
        return cls(lambda: load_settings(path), **kwargs)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], **kwargs: Any) -> ConfigStore:
        return cls(lambda: raw, **kwargs)

    def _build_snapshot(self) -> ConfigSnapshot:
        raw = self._source()
        settings = raw if isinstance(raw, RelaySettings) else RelaySettings.from_dict(raw)
        credentials = resolve_credentials(settings, self._key_loader)
        return ConfigSnapshot(settings=settings, credentials=MappingProxyType(credentials))

    def refresh(self) -> ConfigSnapshot:
        """Re-read the source and publish a new snapshot.

        The previous snapshot stays in place when the source fails.
        """
        try:
            snapshot = self._build_snapshot()
        except (ConfigError, OSError) as e:
            log_event(
                "config_refresh",
                level=logging.ERROR,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise
        with self._lock:
            self._snapshot = snapshot
        log_event(
            "config_refresh",
            level=logging.INFO,
            default_model=snapshot.settings.default_model,
            configured=sorted(p.value for p in Provider if snapshot.is_configured(p)),
            missing=sorted(p.value for p in snapshot.missing_credentials()),
        )
        return snapshot

    def snapshot(self) -> ConfigSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def settings(self) -> RelaySettings:
        return self.snapshot().settings

    def missing_credentials(self) -> frozenset[Provider]:
        return self.snapshot().missing_credentials()

    def is_configured(self, provider: Provider) -> bool:
        return self.snapshot().is_configured(provider)

    def credentials_for(self, provider: Provider) -> Credentials:
        return self.snapshot().credentials_for(provider)
