"""
Tests for StaleTokenPruner.

A prune removes stale tokens and their trades together, then unsubscribes
and forgets each pruned mint.
"""
import pytest

from pumpwatch.core import AutoWatchManager, StaleTokenPruner
from pumpwatch.storage.repositories import TokenRepository, TradeRepository, WatchMetricsRepository


@pytest.fixture
def pruner(db, mock_subscriptions, watchlist, settings, clock):
    return StaleTokenPruner(db, mock_subscriptions, watchlist, settings, clock=clock)


@pytest.mark.asyncio
class TestPruneOnce:
    """Tests for a single prune pass."""

    async def test_disabled_when_threshold_zero(self, pruner, add_token, clock):
        await add_token("MintA", last_update=0)

        assert await pruner.prune_once() == []
        assert pruner.stats.last_run is None

    async def test_deletes_stale_tokens_with_trades(
        self, db, pruner, settings, add_token, add_trade, clock, mock_subscriptions
    ):
        settings.prune_threshold_minutes = 5
        clock.now = 10 * 60_000
        await add_token("Stale", last_update=2 * 60_000)
        await add_token("Fresh", last_update=9 * 60_000)
        await add_trade("Stale", 1 * 60_000, trader="T1")
        await add_trade("Stale", 2 * 60_000, trader="T2")
        await add_trade("Fresh", 9 * 60_000, trader="T3")

        assert await pruner.prune_once() == ["Stale"]

        tokens = TokenRepository(db)
        trades = TradeRepository(db)
        assert await tokens.get("Stale") is None
        assert await tokens.get("Fresh") is not None
        assert await trades.count_for_mints(["Stale"]) == 0
        assert await trades.count_for_mints(["Fresh"]) == 1

        assert pruner.stats.tokens == 1
        assert pruner.stats.orphaned_trades == 2
        assert pruner.stats.last_run == clock.now
        mock_subscriptions.request_unsubscribe.assert_awaited_once_with("Stale")

    async def test_pruned_mint_leaves_watch_set(
        self, pruner, settings, watchlist, add_token, clock
    ):
        settings.prune_threshold_minutes = 1
        clock.now = 10 * 60_000
        await add_token("Stale", last_update=0)
        await watchlist.watch("Stale")

        await pruner.prune_once()

        assert not watchlist.is_watched("Stale")

    async def test_nothing_stale(self, pruner, settings, add_token, clock, mock_subscriptions):
        settings.prune_threshold_minutes = 60
        await add_token("MintA", last_update=clock.now)

        assert await pruner.prune_once() == []
        assert pruner.stats.last_run == clock.now
        mock_subscriptions.request_unsubscribe.assert_not_awaited()

    async def test_pruned_mint_leaves_evaluator_and_auto_watch(
        self, db, mock_subscriptions, watchlist, evaluator, settings, clock,
        add_token, add_trade, trade_event
    ):
        auto_watch = AutoWatchManager(db, clock=clock)
        pruner = StaleTokenPruner(
            db, mock_subscriptions, watchlist, settings,
            evaluator=evaluator, auto_watch=auto_watch, clock=clock,
        )
        settings.prune_threshold_minutes = 1
        await add_token("Stale", last_update=0)
        await add_trade("Stale", clock.now - 1_000)
        await auto_watch.refresh("Stale")
        evaluator.record_trade(trade_event(mint="Stale"))

        assert await pruner.prune_once() == ["Stale"]

        assert "Stale" not in evaluator.window
        assert "Stale" not in auto_watch._metrics
        assert await WatchMetricsRepository(db).get("Stale") is None
