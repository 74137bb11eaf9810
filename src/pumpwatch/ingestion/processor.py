"""
Feed processor for the ingestion pipeline.

Persists parsed feed events:
    - Created: write-if-absent token + active subscription record, one transaction
    - Trade: append trade + refresh the token's metrics snapshot, one transaction

Trades for mints that were never created are dropped. Token rows are only
updated when the trade's receipt time is newer than the stored last_update.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from pumpwatch.core.metrics import compute_metrics
from pumpwatch.storage.database import Database
from pumpwatch.storage.models import (
    SubscriptionStatus,
    TokenMetrics,
    TokenRecord,
    TradeRecord,
    WatchStatus,
)
from pumpwatch.storage.repositories import (
    SubscriptionRepository,
    TokenRepository,
    TradeRepository,
)

from .models import CreatedEvent, DomainEvent, TradeEvent, UnrecognizedEvent

if TYPE_CHECKING:
    from .subscriptions import SubscriptionManager

logger = logging.getLogger(__name__)

SNAPSHOT_WINDOW_MS = 24 * 60 * 60 * 1000
RATE_WINDOW_MS = 60 * 1000


@dataclass
class ProcessorStats:
    """Statistics from event processing."""
    tokens_created: int = 0
    duplicate_creates: int = 0
    trades_stored: int = 0
    duplicate_trades: int = 0
    trades_dropped: int = 0
    stale_updates_skipped: int = 0


class FeedProcessor:
    """
    Writes feed events to the database.

    Usage:
        processor = FeedProcessor(db, subscriptions=manager)
        connection.set_handler(processor.process)

    process() returns True when the event was accepted (and should be
    fanned out to subscribers). Database errors propagate; the caller
    decides how to report them.
    """

    def __init__(
        self,
        db: Database,
        subscriptions: Optional["SubscriptionManager"] = None,
        max_recent_drops: int = 100,
    ) -> None:
        self._db = db
        self._subscriptions = subscriptions
        self._token_repo = TokenRepository(db)
        self._trade_repo = TradeRepository(db)
        self._subscription_repo = SubscriptionRepository(db)

        self._stats = ProcessorStats()
        # Mints of recently dropped trades (for diagnostics)
        self._recent_drops: deque[str] = deque(maxlen=max_recent_drops)

    @property
    def stats(self) -> ProcessorStats:
        return self._stats

    @property
    def recent_drops(self) -> list[str]:
        return list(self._recent_drops)

    def set_subscriptions(self, subscriptions: "SubscriptionManager") -> None:
        self._subscriptions = subscriptions

    async def process(self, event: DomainEvent) -> bool:
        """Persist one event. Returns True if it was accepted."""
        if isinstance(event, CreatedEvent):
            return await self.process_created(event)
        if isinstance(event, TradeEvent):
            return await self.process_trade(event)
        if isinstance(event, UnrecognizedEvent):
            return False
        raise TypeError(f"Unhandled event type: {type(event).__name__}")

    async def process_created(self, event: CreatedEvent) -> bool:
        """
        Insert a newly launched token unless it already exists.

        The token row and its active subscription record are written in the
        same transaction. The subscribe intent is queued after commit.
        """
        curve = event.bonding_curve
        token = TokenRecord(
            mint=event.mint,
            symbol=event.symbol,
            name=event.name,
            uri=event.uri,
            watch_status=WatchStatus.UNWATCHED,
            create_time=event.received_at,
            last_update=event.received_at,
            bonding_curve_key=curve.key,
            sol_reserve=curve.sol_reserve,
            token_reserve=curve.token_reserve,
            last_price=curve.price,
            market_cap_sol=event.market_cap_sol,
        )

        async with self._db.transaction() as conn:
            if await self._token_repo.exists(event.mint, conn=conn):
                inserted = False
            else:
                inserted = await self._token_repo.insert_if_absent(token, conn=conn)
                if inserted:
                    await self._subscription_repo.put(
                        event.mint,
                        SubscriptionStatus.ACTIVE,
                        subscribe_time=event.received_at,
                        conn=conn,
                    )

        if not inserted:
            self._stats.duplicate_creates += 1
            logger.debug(f"Token {event.mint} already known, ignoring create")
            return False

        self._stats.tokens_created += 1
        logger.info(f"New token {event.symbol or '?'} ({event.mint})")

        if self._subscriptions is not None:
            self._subscriptions.queue_subscribe(event.mint)
        return True

    async def process_trade(self, event: TradeEvent) -> bool:
        """
        Record a trade and refresh the token it belongs to.

        Returns False (and stores nothing) if the token is unknown.
        """
        curve = event.bonding_curve
        trade = TradeRecord(
            token_mint=event.mint,
            timestamp=event.received_at,
            side=event.side.value,
            price=event.price,
            volume=event.volume,
            token_amount=event.token_amount,
            signature=event.signature,
            trader=event.trader_id,
            bonding_curve_key=curve.key,
            market_cap_sol=event.market_cap_sol,
            new_token_balance=event.new_token_balance,
            sol_reserve=curve.sol_reserve,
            token_reserve=curve.token_reserve,
        )

        async with self._db.transaction() as conn:
            token = await self._token_repo.get(event.mint, conn=conn)
            if token is None:
                self._stats.trades_dropped += 1
                self._recent_drops.append(event.mint)
                logger.warning(f"Dropping {event.kind} for unknown token {event.mint}")
                return False

            trade_id = await self._trade_repo.add(trade, conn=conn)
            if trade_id is None:
                self._stats.duplicate_trades += 1
                logger.debug(f"Duplicate trade {event.signature} for {event.mint}")
                return False

            recent = await self._trade_repo.get_since(
                event.mint, event.received_at - SNAPSHOT_WINDOW_MS, conn=conn
            )
            market_cap = event.market_cap_sol
            if market_cap is None:
                market_cap = curve.sol_reserve
            metrics = build_token_metrics(recent, event, market_cap)

            updated = token.model_copy(update={
                "last_update": event.received_at,
                "last_trade_time": event.received_at,
                "sol_reserve": curve.sol_reserve,
                "token_reserve": curve.token_reserve,
                "last_price": event.price,
                "market_cap_sol": market_cap,
                "metrics": metrics,
            })
            if not await self._token_repo.update_if_newer(updated, conn=conn):
                self._stats.stale_updates_skipped += 1
                logger.debug(f"Skipped stale update for {event.mint}")

        self._stats.trades_stored += 1
        return True


def build_token_metrics(
    trades_desc: list[TradeRecord], event: TradeEvent, market_cap: float
) -> TokenMetrics:
    """Snapshot for the token row from its last 24h of trades (newest first)."""
    price_change = 0.0
    if len(trades_desc) >= 2:
        oldest = trades_desc[-1].price
        newest = trades_desc[0].price
        if oldest:
            price_change = (newest - oldest) / oldest * 100

    rates = compute_metrics(trades_desc, RATE_WINDOW_MS, now=event.received_at)
    return TokenMetrics(
        last_price=event.price,
        price_change_24h=price_change,
        volume_24h=sum(t.volume for t in trades_desc),
        trades_24h=len(trades_desc),
        last_trade_time=event.received_at,
        market_cap=market_cap,
        lp_balance=event.bonding_curve.sol_reserve,
        token_supply=event.bonding_curve.token_reserve,
        volume_rate=rates.volume_rate,
        trade_frequency=rates.trade_frequency,
        buy_ratio=rates.buy_ratio,
    )
