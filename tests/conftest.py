"""Pytest configuration and fixtures for polyroute tests."""

import pytest

from polyroute.ai.types import Provider
from polyroute.config import ConfigStore
from test_helpers import FakeClock, StubAdapter, make_router, make_settings


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def adapters():
    """One stub adapter per provider."""
    return {provider: StubAdapter() for provider in Provider}


@pytest.fixture
def store():
    return ConfigStore.from_mapping(make_settings())


@pytest.fixture
def router(store, adapters, clock):
    return make_router(store, adapters, clock)
