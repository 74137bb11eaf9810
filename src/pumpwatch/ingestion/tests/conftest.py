"""
Test fixtures for ingestion layer.

IMPORTANT: Nothing here touches the network. The websocket transport is a
FakeWebSocket handed out by an injected connector, and the price oracle's
HTTP call is patched.
"""

import asyncio
import json
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from websockets.exceptions import ConnectionClosedOK

from pumpwatch.ingestion.models import (
    BondingCurveState,
    CreatedEvent,
    TradeEvent,
    TradeSide,
)
from pumpwatch.ingestion.processor import FeedProcessor
from pumpwatch.ingestion.subscriptions import SubscriptionManager
from pumpwatch.ingestion.websocket import FeedConnection
from pumpwatch.storage.database import Database, DatabaseConfig
from pumpwatch.storage.models import AppSettings


# =============================================================================
# Transport Fakes
# =============================================================================


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, frames: tuple = ()) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self.fail_sends = False
        self._frames: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self.feed(frame)

    def feed(self, frame) -> None:
        """Queue an inbound frame (dicts/lists are JSON-encoded)."""
        if isinstance(frame, (dict, list)):
            frame = json.dumps(frame)
        self._frames.put_nowait(frame)

    def end(self, exc: Optional[Exception] = None) -> None:
        """Make the next recv() raise, closing the stream."""
        self._frames.put_nowait(exc or ConnectionClosedOK(None, None))

    async def recv(self):
        item = await self._frames.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, data: str) -> None:
        if self.fail_sends:
            raise ConnectionError("transport gone")
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True

    def methods(self) -> list[str]:
        return [m["method"] for m in self.sent]


async def wait_for_reconnects(connection: FeedConnection) -> None:
    """Await the chain of reconnect tasks until none is pending."""
    while connection._reconnect_task is not None and not connection._reconnect_task.done():
        await connection._reconnect_task


@pytest.fixture
def fake_ws() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings()


@pytest.fixture
def sleep() -> AsyncMock:
    """Backoff sleep that returns immediately and records delays."""
    return AsyncMock()


@pytest.fixture
def connection(fake_ws: FakeWebSocket, settings: AppSettings, sleep: AsyncMock) -> FeedConnection:
    return FeedConnection(
        settings=settings,
        url="wss://feed.test/api/data",
        connector=AsyncMock(return_value=fake_ws),
        sleep=sleep,
    )


@pytest_asyncio.fixture
async def open_connection(connection: FeedConnection) -> AsyncGenerator[FeedConnection, None]:
    """A connection in OPEN state over fake_ws."""
    await connection.connect()
    yield connection
    await connection.disconnect()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def db(tmp_path) -> AsyncGenerator[Database, None]:
    database = Database(DatabaseConfig(path=str(tmp_path / "ingestion.sqlite3")))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def manager(db: Database, connection: FeedConnection, settings: AppSettings) -> SubscriptionManager:
    return SubscriptionManager(db, connection, settings, drain_interval=0.01)


@pytest.fixture
def processor(db: Database, manager: SubscriptionManager) -> FeedProcessor:
    return FeedProcessor(db, subscriptions=manager)


# =============================================================================
# Feed Frame & Event Fixtures
# =============================================================================


@pytest.fixture
def create_frame() -> dict:
    """A token-creation frame as sent by the feed."""
    return {
        "signature": "sigCreate1",
        "mint": "MintAAA111",
        "traderPublicKey": "Creator1",
        "txType": "create",
        "initialBuy": 50_000_000,
        "bondingCurveKey": "CurveAAA",
        "vTokensInBondingCurve": 1_000_000_000,
        "vSolInBondingCurve": 30,
        "marketCapSol": 30,
        "name": "Alpha Token",
        "symbol": "AAA",
        "uri": "https://example.invalid/aaa.json",
    }


@pytest.fixture
def buy_frame() -> dict:
    """A buy frame for MintAAA111."""
    return {
        "signature": "sigBuy1",
        "mint": "MintAAA111",
        "traderPublicKey": "Trader1",
        "txType": "buy",
        "tokenAmount": 1_000_000,
        "newTokenBalance": 1_000_000,
        "bondingCurveKey": "CurveAAA",
        "vTokensInBondingCurve": 999_000_000,
        "vSolInBondingCurve": 30.03,
        "marketCapSol": 30.06,
    }


def make_created(mint: str = "MintAAA111", received_at: int = 1_000, name: str = "Alpha Token"):
    return CreatedEvent(
        mint=mint,
        symbol="AAA",
        name=name,
        uri=None,
        bonding_curve=BondingCurveState(key="Curve", sol_reserve=30.0, token_reserve=1_000_000.0),
        trader_id="Creator1",
        signature=f"create-{mint}",
        initial_buy=0.0,
        market_cap_sol=30.0,
        received_at=received_at,
    )


def make_trade(
    mint: str = "MintAAA111",
    received_at: int = 2_000,
    side: TradeSide = TradeSide.BUY,
    sol_reserve: float = 40.0,
    token_reserve: float = 1_000_000.0,
    token_amount: float = 10_000.0,
    signature: Optional[str] = None,
    market_cap_sol: Optional[float] = 40.0,
):
    curve = BondingCurveState(key="Curve", sol_reserve=sol_reserve, token_reserve=token_reserve)
    return TradeEvent(
        mint=mint,
        side=side,
        price=curve.price,
        volume=token_amount * curve.price,
        token_amount=token_amount,
        new_token_balance=token_amount,
        trader_id="Trader1",
        signature=signature or f"sig-{received_at}",
        bonding_curve=curve,
        market_cap_sol=market_cap_sol,
        received_at=received_at,
    )


@pytest.fixture
def created_event_factory():
    return make_created


@pytest.fixture
def trade_event_factory():
    return make_trade


@pytest.fixture
def settle_reconnects():
    return wait_for_reconnects
