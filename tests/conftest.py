"""Shared test configuration and fixtures."""

from collections.abc import Iterator

import pytest

import domain_watch.core.config as config_module


@pytest.fixture(autouse=True)
def _reset_config_singleton() -> Iterator[None]:  # pyright: ignore[reportUnusedFunction]
    """Drop the cached ``ConfigLoader`` around every test.

    Tests that patch environment variables must see a freshly loaded
    configuration, and must not leak their overrides into later tests.
    """
    config_module._config = None
    yield
    config_module._config = None
