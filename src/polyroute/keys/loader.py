"""Unified API key loading interface."""

from typing import Required, TypedDict, cast

KEY_TYPES = ("env", "keychain", "credential", "json", "direct")


class KeyConfig(TypedDict, total=False):
    """Typed configuration for API key loading.

    Discriminated by ``type`` field. Additional fields depend on the type:
      env                      → key
      keychain / credential    → service, account  (aliases; both use keyring)
      json                     → path, key
      direct                   → value (testing only)
    """

    type: Required[str]
    key: str
    value: str
    service: str
    account: str
    path: str


_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "env": ("key",),
    "keychain": ("service", "account"),
    "credential": ("service", "account"),
    "json": ("path", "key"),
    "direct": ("value",),
}


def validate_key_config(provider: str, config: object) -> KeyConfig:
    """Check a key config's shape without loading the secret.

    Raises:
        ValueError: If the type is unknown or a required field is missing
    """
    if not isinstance(config, dict):
        raise ValueError(f"API key config for '{provider}' must be a dictionary")
    key_type = config.get("type")
    if key_type not in _REQUIRED_FIELDS:
        raise ValueError(
            f"Unknown key type '{key_type}' for provider '{provider}'. "
            f"Valid types: {', '.join(KEY_TYPES)}"
        )
    missing = [name for name in _REQUIRED_FIELDS[key_type] if not isinstance(config.get(name), str)]
    if missing:
        raise ValueError(
            f"API key config for '{provider}' ({key_type}) missing: {', '.join(missing)}"
        )
    return cast(KeyConfig, config)


def load_api_key(provider: str, config: KeyConfig) -> str:
    """Load API key based on configuration.

    Args:
        provider: AI provider name (openai, anthropic, google)
        config: Key configuration from settings

    Returns:
        API key string

    Raises:
        ValueError: If key cannot be loaded

    Example configs:
        {"type": "env", "key": "OPENAI_API_KEY"}
        {"type": "keychain", "service": "polyroute", "account": "anthropic"}
        {"type": "json", "path": "~/.secrets/keys.json", "key": "google"}
        {"type": "direct", "value": "sk-..."} (testing only)
    """
    key_type = config.get("type")

    if key_type == "direct":
        return cast(str, config["value"])

    elif key_type == "env":
        from .backends import load_from_env

        return load_from_env(provider, cast(str, config["key"]))

    elif key_type in ("keychain", "credential"):
        from .backends import load_from_keyring

        return load_from_keyring(
            provider,
            cast(str, config["service"]),
            cast(str, config["account"]),
        )

    elif key_type == "json":
        from .backends import load_from_json

        return load_from_json(provider, cast(str, config["path"]), cast(str, config["key"]))

    else:
        raise ValueError(f"Unknown key type '{key_type}' for provider '{provider}'")
