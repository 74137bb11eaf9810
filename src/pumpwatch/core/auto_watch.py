"""
Auto-watch heuristics.

Scores a token from its first minutes of trading and decides whether it
deserves a place in the watch-set, and later whether a watched token has
gone cold. Per-mint state is cached in memory and persisted in the
watch_metrics table.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from pumpwatch.storage.models import TradeRecord, WatchMetrics
from pumpwatch.storage.repositories import (
    TokenRepository,
    TradeRepository,
    WatchMetricsRepository,
)

from .metrics import MS_PER_MINUTE, _finite, now_ms

if TYPE_CHECKING:
    from pumpwatch.storage import Database

logger = logging.getLogger(__name__)

LOOKBACK_MS = 5 * MS_PER_MINUTE


@dataclass
class AutoWatchConfig:
    """Thresholds for auto-watch decisions."""
    min_initial_lp_sol: float = 10.0
    max_mcap_lp_ratio: float = 3.0
    min_trades_first_2min: int = 3
    min_volume_per_min: float = 0.5
    min_buy_sell_ratio: float = 0.6
    volume_drop_threshold: float = 20.0      # % below peak minute
    max_inactive_seconds: float = 120.0
    price_drop_threshold: float = 30.0       # % below peak price
    wallet_concentration_limit: float = 50.0  # % of volume from one wallet


@dataclass(frozen=True)
class Decision:
    should_act: bool
    reason: str


def build_watch_metrics(
    mint: str,
    trades: Sequence[TradeRecord],
    now: int,
    previous: Optional[WatchMetrics] = None,
) -> WatchMetrics:
    """
    Derive auto-watch state from trades (any order).

    ``volume_velocity`` and ``trade_frequency`` are per-minute series
    starting at the first trade's minute. Peaks never fall below the
    previous state's peaks.
    """
    ordered = sorted(trades, key=lambda t: t.timestamp)
    base = previous or WatchMetrics(mint=mint, create_time=now)

    if not ordered:
        return base.model_copy(update={"last_update": now})

    first_minute = ordered[0].timestamp // MS_PER_MINUTE
    last_minute = ordered[-1].timestamp // MS_PER_MINUTE
    volumes = [0.0] * (last_minute - first_minute + 1)
    counts = [0] * (last_minute - first_minute + 1)

    by_wallet: dict[str, float] = {}
    total_volume = 0.0
    buy_volume = 0.0
    for trade in ordered:
        index = trade.timestamp // MS_PER_MINUTE - first_minute
        volumes[index] += trade.volume
        counts[index] += 1
        total_volume += trade.volume
        if trade.is_buy:
            buy_volume += trade.volume
        if trade.trader:
            by_wallet[trade.trader] = by_wallet.get(trade.trader, 0.0) + trade.volume

    if total_volume > 0:
        concentration = {w: _finite(v / total_volume * 100) for w, v in by_wallet.items()}
        buy_wall = _finite(buy_volume / total_volume * 100)
    else:
        concentration = {}
        buy_wall = 0.0

    return base.model_copy(
        update={
            "peak_volume": max(base.peak_volume, max(volumes)),
            "peak_price": max(base.peak_price, max(t.price for t in ordered)),
            "last_price": ordered[-1].price,
            "volume_velocity": volumes,
            "trade_frequency": counts,
            "buy_wall_strength": buy_wall,
            "last_trade_time": ordered[-1].timestamp,
            "manipulation_score": max(concentration.values(), default=0.0),
            "wallet_concentration": concentration,
            "last_update": now,
        }
    )


class AutoWatchManager:
    """
    Watch/unwatch recommendations from early trading behaviour.

    Usage:
        manager = AutoWatchManager(db)
        decision = await manager.evaluate_token(mint)
        if decision.should_act:
            await watchlist.watch(mint)

        await manager.refresh(mint)  # after new trades
        if (await manager.evaluate_unwatch(mint)).should_act:
            await watchlist.unwatch(mint)
    """

    def __init__(
        self,
        db: "Database",
        config: Optional[AutoWatchConfig] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config or AutoWatchConfig()
        self._token_repo = TokenRepository(db)
        self._trade_repo = TradeRepository(db)
        self._repo = WatchMetricsRepository(db)
        self._clock = clock
        self._metrics: dict[str, WatchMetrics] = {}

    async def get_metrics(self, mint: str) -> WatchMetrics:
        """Cached metrics, then stored metrics, then computed from recent trades."""
        cached = self._metrics.get(mint)
        if cached is not None:
            return cached

        stored = await self._repo.get(mint)
        if stored is not None:
            self._metrics[mint] = stored
            return stored

        return await self.refresh(mint)

    async def refresh(self, mint: str) -> WatchMetrics:
        """Recompute metrics from the last five minutes of trades and persist them."""
        now = self._clock()
        trades = await self._trade_repo.get_since(mint, now - LOOKBACK_MS)
        metrics = build_watch_metrics(mint, trades, now, previous=self._metrics.get(mint))
        await self._repo.put(metrics)
        self._metrics[mint] = metrics
        return metrics

    def forget(self, mint: str) -> None:
        self._metrics.pop(mint, None)

    def clear(self) -> None:
        self._metrics.clear()

    async def evaluate_token(self, mint: str) -> Decision:
        """Should this token be watched?"""
        cfg = self.config
        metrics = await self.get_metrics(mint)

        if metrics.peak_volume < cfg.min_volume_per_min:
            return Decision(False, "Insufficient volume")

        early_trades = sum(metrics.trade_frequency[:2])
        if early_trades < cfg.min_trades_first_2min:
            return Decision(False, "Low trade frequency")

        if max(metrics.wallet_concentration.values(), default=0.0) > cfg.wallet_concentration_limit:
            return Decision(False, "High wallet concentration")

        if metrics.buy_wall_strength < cfg.min_buy_sell_ratio * 100:
            return Decision(False, "Weak buy pressure")

        token = await self._token_repo.get(mint)
        if token is not None:
            if token.sol_reserve < cfg.min_initial_lp_sol:
                return Decision(False, "Insufficient liquidity")
            if token.market_cap_sol > token.sol_reserve * cfg.max_mcap_lp_ratio:
                return Decision(False, "Market cap too high for liquidity")

        return Decision(True, "Meets watch criteria")

    async def evaluate_unwatch(self, mint: str) -> Decision:
        """Has this watched token gone cold?"""
        cfg = self.config
        metrics = await self.get_metrics(mint)

        if metrics.peak_volume > 0:
            current = metrics.volume_velocity[-1] if metrics.volume_velocity else 0.0
            volume_drop = (metrics.peak_volume - current) / metrics.peak_volume * 100
            if volume_drop > cfg.volume_drop_threshold:
                return Decision(True, f"Volume dropped {volume_drop:.1f}%")

        inactive = (self._clock() - metrics.last_trade_time) / 1000
        if inactive > cfg.max_inactive_seconds:
            return Decision(True, f"Inactive for {inactive:.0f}s")

        if metrics.peak_price > 0 and metrics.last_price is not None:
            price_drop = (metrics.peak_price - metrics.last_price) / metrics.peak_price * 100
            if price_drop > cfg.price_drop_threshold:
                return Decision(True, f"Price dropped {price_drop:.1f}%")

        return Decision(False, "Maintaining watch criteria")
