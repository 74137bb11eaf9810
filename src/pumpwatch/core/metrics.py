"""
Rolling-window trade metrics.

compute_metrics() is a pure function over a newest-first trade list. It
accepts anything with ``timestamp``, ``price``, ``volume`` and ``is_buy``
(stored TradeRecords and live TradeEvents both qualify).

All rates are per minute. Every value leaving this module is finite.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from pumpwatch.storage.database import Database
from pumpwatch.storage.repositories import TradeRepository

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60_000


class TradeLike(Protocol):
    timestamp: int
    price: float
    volume: float

    @property
    def is_buy(self) -> bool: ...


@dataclass(frozen=True)
class WindowMetrics:
    """Aggregates over one time window."""
    volume_rate: float = 0.0       # SOL / minute
    trade_frequency: float = 0.0   # trades / minute
    price_change_pct: float = 0.0  # newest vs oldest price in window
    buy_ratio: float = 0.0         # % of trades that were buys


ZERO_METRICS = WindowMetrics()


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def now_ms() -> int:
    return int(time.time() * 1000)


def compute_metrics(
    trades: Sequence[TradeLike],
    window_ms: int,
    now: Optional[int] = None,
) -> WindowMetrics:
    """
    Aggregate the trades that fall inside ``[now - window_ms, now]``.

    Args:
        trades: Trades ordered newest first
        window_ms: Window length in milliseconds
        now: Window end in epoch ms (defaults to the current time)

    Returns all zeros when fewer than two trades fall in the window.
    """
    if window_ms <= 0:
        return ZERO_METRICS
    if now is None:
        now = now_ms()

    start = now - window_ms
    in_window = [t for t in trades if t.timestamp >= start]
    count = len(in_window)
    if count < 2:
        return ZERO_METRICS

    total_volume = sum(t.volume for t in in_window)
    buys = sum(1 for t in in_window if t.is_buy)

    newest_price = in_window[0].price
    oldest_price = in_window[-1].price
    if oldest_price:
        price_change = (newest_price - oldest_price) / oldest_price * 100
    else:
        price_change = 0.0

    return WindowMetrics(
        volume_rate=_finite(total_volume / window_ms * MS_PER_MINUTE),
        trade_frequency=_finite(count / window_ms * MS_PER_MINUTE),
        price_change_pct=_finite(price_change),
        buy_ratio=_finite(buys / count * 100),
    )


class MetricsCache:
    """
    Time-boxed cache for computed figures, keyed by (metric, mint, window).

    Entries expire purely by TTL; nothing invalidates them early. Expired
    entries are swept on write, at most once per TTL.
    """

    def __init__(self, ttl_seconds: float = 1.0, clock: Optional[Callable[[], float]] = None):
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: dict[tuple[str, str, int], tuple[float, float]] = {}
        self._last_sweep = self._clock()

    def get(self, metric: str, mint: str, window_ms: int) -> Optional[float]:
        key = (metric, mint, window_ms)
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return value

    def put(self, metric: str, mint: str, window_ms: int, value: float) -> None:
        now = self._clock()
        if now - self._last_sweep >= self.ttl_seconds:
            self._evict_expired(now)
        self._entries[(metric, mint, window_ms)] = (now, value)

    def _evict_expired(self, now: float) -> None:
        self._last_sweep = now
        expired = [
            key for key, (stored_at, _) in self._entries.items()
            if now - stored_at >= self.ttl_seconds
        ]
        for key in expired:
            del self._entries[key]

    async def get_or_compute(
        self,
        metric: str,
        mint: str,
        window_ms: int,
        compute: Callable[[], Awaitable[float]],
    ) -> float:
        cached = self.get(metric, mint, window_ms)
        if cached is not None:
            return cached
        value = _finite(await compute())
        self.put(metric, mint, window_ms, value)
        return value

    def __len__(self) -> int:
        return len(self._entries)


class MetricsCalculator:
    """
    Database-backed per-mint figures, served through a MetricsCache.

    Usage:
        calc = MetricsCalculator(db)
        rate = await calc.volume_rate(mint, window_ms=60_000)
    """

    def __init__(self, db: Database, cache: Optional[MetricsCache] = None) -> None:
        self._trade_repo = TradeRepository(db)
        self.cache = cache or MetricsCache()

    async def _window(self, mint: str, window_ms: int) -> WindowMetrics:
        now = now_ms()
        trades = await self._trade_repo.get_since(mint, now - window_ms)
        return compute_metrics(trades, window_ms, now=now)

    async def volume_rate(self, mint: str, window_ms: int) -> float:
        async def compute() -> float:
            return (await self._window(mint, window_ms)).volume_rate
        return await self.cache.get_or_compute("volumeRate", mint, window_ms, compute)

    async def trade_frequency(self, mint: str, window_ms: int) -> float:
        async def compute() -> float:
            return (await self._window(mint, window_ms)).trade_frequency
        return await self.cache.get_or_compute("tradeFrequency", mint, window_ms, compute)

    async def price_change(self, mint: str, window_ms: int) -> float:
        async def compute() -> float:
            return (await self._window(mint, window_ms)).price_change_pct
        return await self.cache.get_or_compute("priceChange", mint, window_ms, compute)

    async def buy_count(self, mint: str, window_ms: int) -> float:
        async def compute() -> float:
            trades = await self._trade_repo.get_since(mint, now_ms() - window_ms)
            return float(sum(1 for t in trades if t.is_buy))
        return await self.cache.get_or_compute("buyCount", mint, window_ms, compute)
