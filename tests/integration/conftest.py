"""
Integration test fixtures.

These fixtures wire the real storage, ingestion and core components
together. Only the websocket transport is faked.
"""

import asyncio
import json
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from pumpwatch.core import StaleTokenPruner, TriggerEvaluator, TriggerGroupStore, WatchlistService
from pumpwatch.ingestion.models import ReceiptClock
from pumpwatch.ingestion.processor import FeedProcessor
from pumpwatch.ingestion.subscriptions import SubscriptionManager
from pumpwatch.ingestion.websocket import FeedConnection

# Mark all tests in this directory as integration tests
pytestmark = pytest.mark.integration

# Feed receipt times start here (epoch ms)
FEED_START_MS = 600_000


class ScriptedWebSocket:
    """Transport that records outbound messages and never yields frames."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self._never: asyncio.Event = asyncio.Event()

    async def recv(self):
        await self._never.wait()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True

    def methods(self) -> list[str]:
        return [m["method"] for m in self.sent]


class Pipeline:
    """All components of a running client, wired as main.py wires them."""

    def __init__(self, db, settings, triggers_path) -> None:
        self.ws = ScriptedWebSocket()
        self.connection = FeedConnection(
            settings=settings,
            url="wss://feed.test/api/data",
            connector=AsyncMock(return_value=self.ws),
            sleep=AsyncMock(),
            clock=ReceiptClock(lambda: FEED_START_MS / 1000),
        )
        self.subscriptions = SubscriptionManager(db, self.connection, settings)
        self.processor = FeedProcessor(db, subscriptions=self.subscriptions)
        self.connection.set_handler(self.processor.process)

        self.watchlist = WatchlistService(db, settings)
        self.triggers = TriggerGroupStore(triggers_path)
        self.evaluator = TriggerEvaluator(
            db, self.watchlist, tick_interval=1.0, clock=lambda: FEED_START_MS + 1_000
        )
        self._unsubscribe = self.connection.subscribe(
            lambda event: self.evaluator.submit(event, self.triggers.enabled_groups())
        )
        self.pruner: Optional[StaleTokenPruner] = None

    def make_pruner(self, db, settings, now: int) -> StaleTokenPruner:
        self.pruner = StaleTokenPruner(
            db, self.subscriptions, self.watchlist, settings, clock=lambda: now
        )
        return self.pruner

    async def feed(self, *frames: dict) -> None:
        """Deliver frames as one inbound websocket message."""
        payload = frames[0] if len(frames) == 1 else list(frames)
        await self.connection._handle_message(json.dumps(payload))

    async def close(self) -> None:
        self._unsubscribe()
        await self.connection.disconnect()


@pytest_asyncio.fixture
async def pipeline(db, settings, tmp_path) -> AsyncGenerator[Pipeline, None]:
    pipeline = Pipeline(db, settings, tmp_path / "triggers.json")
    await pipeline.connection.connect()
    yield pipeline
    await pipeline.close()


def create_frame(mint: str = "MintAAA111", name: str = "Alpha Token") -> dict:
    return {
        "signature": f"create-{mint}",
        "mint": mint,
        "traderPublicKey": "Creator1",
        "txType": "create",
        "initialBuy": 50_000_000,
        "bondingCurveKey": f"Curve-{mint}",
        "vTokensInBondingCurve": 1_000_000_000,
        "vSolInBondingCurve": 30,
        "marketCapSol": 30,
        "name": name,
        "symbol": "AAA",
    }


def trade_frame(
    signature: str,
    mint: str = "MintAAA111",
    tx_type: str = "buy",
    sol_reserve: float = 30.03,
) -> dict:
    return {
        "signature": signature,
        "mint": mint,
        "traderPublicKey": f"Trader-{signature}",
        "txType": tx_type,
        "tokenAmount": 1_000_000,
        "newTokenBalance": 1_000_000,
        "bondingCurveKey": f"Curve-{mint}",
        "vTokensInBondingCurve": 999_000_000,
        "vSolInBondingCurve": sol_reserve,
        "marketCapSol": 30.06,
    }


@pytest.fixture
def create_frame_factory():
    return create_frame


@pytest.fixture
def trade_frame_factory():
    return trade_frame
