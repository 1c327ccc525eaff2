"""Credential loading for provider API keys."""
