"""Shared fixtures for domain monitor tests."""

from collections.abc import AsyncIterator

import pytest_asyncio

from domain_watch.apps.domain_monitor.repository import MonitorRepository


@pytest_asyncio.fixture
async def repo() -> AsyncIterator[MonitorRepository]:
    """Create an in-memory SQLite repository for testing.

    Yields:
        Initialised MonitorRepository with an in-memory database.

    """
    repository = MonitorRepository("sqlite+aiosqlite:///:memory:")
    await repository.init_db()
    yield repository
    await repository.close()
