"""
Shared test fixtures for cross-component tests.

This file provides fixtures that span multiple components,
unlike component-specific fixtures in src/pumpwatch/{component}/tests/conftest.py
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio

from pumpwatch.storage import Database, DatabaseConfig
from pumpwatch.storage.models import AppSettings


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def db(tmp_path) -> AsyncGenerator[Database, None]:
    """
    Fresh SQLite database for each test.

    The file lives in the test's tmp_path, so nothing leaks between tests.
    """
    database = Database(DatabaseConfig(path=str(tmp_path / "pumpwatch.sqlite3")))
    await database.initialize()

    yield database

    await database.close()


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings()
