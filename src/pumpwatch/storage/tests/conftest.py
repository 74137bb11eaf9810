"""
Test fixtures for async SQLite storage tests.

Each test gets its own database file under pytest's tmp_path, so tests
never share state and need no cleanup.
"""
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from pumpwatch.storage.database import Database, DatabaseConfig
from pumpwatch.storage.models import TokenRecord, TradeRecord
from pumpwatch.storage.repositories import (
    SettingsRepository,
    SubscriptionRepository,
    TokenRepository,
    TradeRepository,
    WatchMetricsRepository,
)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture
def db_config(tmp_path) -> DatabaseConfig:
    """Config pointing at a throwaway database file."""
    return DatabaseConfig(path=str(tmp_path / "pumpwatch-test.sqlite3"))


@pytest_asyncio.fixture
async def db(db_config: DatabaseConfig) -> AsyncGenerator[Database, None]:
    """Fresh initialized database for each test."""
    database = Database(db_config)
    await database.initialize()
    yield database
    await database.close()


# =============================================================================
# REPOSITORY FIXTURES
# =============================================================================


@pytest.fixture
def token_repo(db: Database) -> TokenRepository:
    return TokenRepository(db)


@pytest.fixture
def trade_repo(db: Database) -> TradeRepository:
    return TradeRepository(db)


@pytest.fixture
def subscription_repo(db: Database) -> SubscriptionRepository:
    return SubscriptionRepository(db)


@pytest.fixture
def settings_repo(db: Database) -> SettingsRepository:
    return SettingsRepository(db)


@pytest.fixture
def watch_metrics_repo(db: Database) -> WatchMetricsRepository:
    return WatchMetricsRepository(db)


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================


@pytest.fixture
def sample_token() -> TokenRecord:
    """A freshly created token with last_update = 100."""
    return TokenRecord(
        mint="MintAAA111",
        symbol="AAA",
        name="Alpha Token",
        uri="https://example.invalid/aaa.json",
        create_time=100,
        last_update=100,
        bonding_curve_key="CurveAAA",
        sol_reserve=30.0,
        token_reserve=1_000_000.0,
        last_price=0.00003,
        market_cap_sol=30.0,
    )


@pytest.fixture
def sample_trade() -> TradeRecord:
    """A buy trade for sample_token."""
    return TradeRecord(
        token_mint="MintAAA111",
        timestamp=1_000,
        side="buy",
        price=0.00003,
        volume=0.3,
        token_amount=10_000.0,
        signature="sig-001",
        trader="TraderOne",
        bonding_curve_key="CurveAAA",
        market_cap_sol=31.0,
        new_token_balance=10_000.0,
        sol_reserve=30.3,
        token_reserve=990_000.0,
    )
