"""
Core layer test fixtures.

Core tests run against a real temporary SQLite file; the subscription
manager is mocked where a component only forwards intents to it.
"""
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from pumpwatch.core import TriggerEvaluator, WatchlistService
from pumpwatch.ingestion.models import BondingCurveState, CreatedEvent, TradeEvent, TradeSide
from pumpwatch.storage.database import Database, DatabaseConfig
from pumpwatch.storage.models import AppSettings, TokenRecord, TradeRecord
from pumpwatch.storage.repositories import TokenRepository, TradeRepository


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Settable epoch-ms clock."""

    def __init__(self, now: int = 10 * 60_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def db(tmp_path) -> AsyncGenerator[Database, None]:
    database = Database(DatabaseConfig(path=str(tmp_path / "core.sqlite3")))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings()


@pytest.fixture
def add_token(db: Database):
    """Insert a token row: await add_token("MintA", name="Alpha", last_update=...)."""

    async def _add(
        mint: str,
        name: Optional[str] = "Alpha",
        last_update: int = 1_000,
        sol_reserve: float = 30.0,
        market_cap_sol: float = 30.0,
    ) -> TokenRecord:
        token = TokenRecord(
            mint=mint,
            symbol=mint[:4].upper(),
            name=name,
            create_time=last_update,
            last_update=last_update,
            sol_reserve=sol_reserve,
            market_cap_sol=market_cap_sol,
        )
        await TokenRepository(db).insert_if_absent(token)
        return token

    return _add


@pytest.fixture
def add_trade(db: Database):
    """Insert a stored trade row."""

    async def _add(
        mint: str,
        timestamp: int,
        side: str = "buy",
        price: float = 0.001,
        volume: float = 1.0,
        trader: str = "Trader1",
    ) -> TradeRecord:
        trade = TradeRecord(
            token_mint=mint,
            timestamp=timestamp,
            side=side,
            price=price,
            volume=volume,
            token_amount=volume / price if price else 0.0,
            signature=f"sig-{mint}-{timestamp}-{trader}",
            trader=trader,
        )
        await TradeRepository(db).add(trade)
        return trade

    return _add


# =============================================================================
# Event Factories
# =============================================================================


def make_trade_event(
    mint: str = "MintA",
    received_at: int = 10 * 60_000,
    side: TradeSide = TradeSide.BUY,
    price: float = 0.001,
    volume: float = 1.0,
    token_amount: Optional[float] = None,
) -> TradeEvent:
    return TradeEvent(
        mint=mint,
        side=side,
        price=price,
        volume=volume,
        token_amount=token_amount if token_amount is not None else volume / price,
        new_token_balance=None,
        trader_id="Trader1",
        signature=f"sig-{mint}-{received_at}",
        bonding_curve=BondingCurveState(key="Curve", sol_reserve=30.0, token_reserve=30_000.0),
        market_cap_sol=None,
        received_at=received_at,
    )


def make_created_event(mint: str = "MintA", name: str = "Alpha", received_at: int = 1_000):
    return CreatedEvent(
        mint=mint,
        symbol="AAA",
        name=name,
        uri=None,
        bonding_curve=BondingCurveState(key="Curve", sol_reserve=30.0, token_reserve=30_000.0),
        trader_id="Creator1",
        signature=f"create-{mint}",
        initial_buy=0.0,
        market_cap_sol=30.0,
        received_at=received_at,
    )


@pytest.fixture
def trade_event():
    return make_trade_event


@pytest.fixture
def created_event():
    return make_created_event


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def watchlist(db: Database, settings: AppSettings) -> WatchlistService:
    return WatchlistService(db, settings)


@pytest.fixture
def evaluator(db: Database, watchlist: WatchlistService, clock: FakeClock) -> TriggerEvaluator:
    return TriggerEvaluator(db, watchlist, clock=clock, tick_interval=1.0)


@pytest.fixture
def mock_subscriptions() -> MagicMock:
    """SubscriptionManager stand-in that records intents."""
    subscriptions = MagicMock()
    subscriptions.request_unsubscribe = AsyncMock()
    subscriptions.request_subscribe = AsyncMock()
    return subscriptions
