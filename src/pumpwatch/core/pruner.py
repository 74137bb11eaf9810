"""
Stale-token pruner.

Deletes tokens that have not been updated for longer than the user's
prune threshold, together with their trades.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from pumpwatch.storage.models import AppSettings
from pumpwatch.storage.repositories import (
    TokenRepository,
    TradeRepository,
    WatchMetricsRepository,
)

from .background_tasks import IntervalTask
from .metrics import MS_PER_MINUTE, now_ms

if TYPE_CHECKING:
    from pumpwatch.ingestion.subscriptions import SubscriptionManager
    from pumpwatch.storage import Database

    from .auto_watch import AutoWatchManager
    from .trigger_evaluator import TriggerEvaluator
    from .watchlist_service import WatchlistService

logger = logging.getLogger(__name__)


@dataclass
class PruneStats:
    """Totals across all prune runs."""
    tokens: int = 0
    orphaned_trades: int = 0
    last_run: Optional[int] = None


class StaleTokenPruner:
    """
    Periodic removal of stale tokens.

    A token is stale when its last_update is older than
    ``settings.prune_threshold_minutes``. Pruning is off while the
    threshold is 0. Token rows and their trades go in one transaction;
    each pruned mint is then unsubscribed, dropped from the watch-set and
    forgotten by the trigger evaluator and auto-watch caches.

    Usage:
        pruner = StaleTokenPruner(db, subscriptions, watchlist, settings)
        await pruner.start()
    """

    def __init__(
        self,
        db: "Database",
        subscriptions: Optional["SubscriptionManager"] = None,
        watchlist: Optional["WatchlistService"] = None,
        settings: Optional[AppSettings] = None,
        interval: float = 60.0,
        evaluator: Optional["TriggerEvaluator"] = None,
        auto_watch: Optional["AutoWatchManager"] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._db = db
        self._token_repo = TokenRepository(db)
        self._trade_repo = TradeRepository(db)
        self._watch_metrics_repo = WatchMetricsRepository(db)
        self._subscriptions = subscriptions
        self._watchlist = watchlist
        self._evaluator = evaluator
        self._auto_watch = auto_watch
        self.settings = settings or AppSettings()
        self._clock = clock

        self.stats = PruneStats()
        self._task = IntervalTask("stale_token_pruner", interval, self.prune_once)

    @property
    def is_running(self) -> bool:
        return self._task.is_running

    async def prune_once(self) -> list[str]:
        """
        Run one prune pass.

        Returns:
            Mints that were deleted
        """
        minutes = self.settings.prune_threshold_minutes
        if minutes <= 0:
            return []

        now = self._clock()
        cutoff = now - minutes * MS_PER_MINUTE

        async with self._db.transaction() as conn:
            stale = await self._token_repo.get_stale(cutoff, conn=conn)
            mints = [t.mint for t in stale]
            trades_deleted = await self._trade_repo.delete_for_mints(mints, conn=conn)
            tokens_deleted = await self._token_repo.delete_many(mints, conn=conn)
            await self._watch_metrics_repo.delete_for_mints(mints, conn=conn)

        self.stats.tokens += tokens_deleted
        self.stats.orphaned_trades += trades_deleted
        self.stats.last_run = now

        for mint in mints:
            if self._subscriptions is not None:
                await self._subscriptions.request_unsubscribe(mint)
            if self._watchlist is not None:
                self._watchlist.forget(mint)
            if self._evaluator is not None:
                self._evaluator.forget(mint)
            if self._auto_watch is not None:
                self._auto_watch.forget(mint)

        if mints:
            logger.info(
                f"Pruned {tokens_deleted} stale tokens and {trades_deleted} trades "
                f"(threshold {minutes} min)"
            )
        return mints

    async def start(self) -> None:
        await self._task.start()

    async def stop(self) -> None:
        await self._task.stop()
