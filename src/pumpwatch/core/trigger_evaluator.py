"""
Trigger evaluation.

Accepted feed events are paired with every enabled trigger group and
queued. A periodic drain evaluates the queue in FIFO order, resolving
metrics from a rolling window of recent trades the evaluator keeps
itself, and applies matching groups to the watch-set.

Flow:
    FeedConnection -> FeedProcessor -> app callback
        -> TriggerEvaluator.submit(event, groups)
        -> drain() (every 100 ms)
        -> WatchlistService.watch / unwatch
"""
from __future__ import annotations

import fnmatch
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Iterable,
    Optional,
    Protocol,
    Sequence,
    Union,
)

from pumpwatch.ingestion.models import CreatedEvent, TradeEvent
from pumpwatch.storage.models import WatchStatus
from pumpwatch.storage.repositories import TokenRepository

from .background_tasks import IntervalTask
from .metrics import MS_PER_MINUTE, _finite, compute_metrics, now_ms
from .trigger_models import (
    TriggerCondition,
    TriggerGroup,
    TriggerMetric,
    TriggerOperator,
    TriggerType,
)

if TYPE_CHECKING:
    from pumpwatch.ingestion.models import DomainEvent
    from pumpwatch.storage import Database

    from .watchlist_service import WatchlistService

logger = logging.getLogger(__name__)

TRADE_WINDOW_MS = 60 * 60 * 1000
RATE_WINDOW_MS = 60 * 1000


class Classifier(Protocol):
    """Answers free-text trigger prompts about a token."""

    def classify(
        self, prompt: str, context: dict[str, Any]
    ) -> Union[bool, Awaitable[bool]]: ...


class RollingTradeWindow:
    """
    Recent trades per mint, oldest first.

    Each insert drops that mint's trades older than ``horizon_ms`` before
    the inserted trade's timestamp.
    """

    def __init__(self, horizon_ms: int = TRADE_WINDOW_MS) -> None:
        self.horizon_ms = horizon_ms
        self._trades: dict[str, deque[TradeEvent]] = {}

    def add(self, trade: TradeEvent) -> None:
        trades = self._trades.setdefault(trade.mint, deque())
        trades.append(trade)
        cutoff = trade.timestamp - self.horizon_ms
        while trades and trades[0].timestamp < cutoff:
            trades.popleft()

    def trades(self, mint: str) -> list[TradeEvent]:
        """Trades for a mint, oldest first."""
        return list(self._trades.get(mint, ()))

    def discard(self, mint: str) -> None:
        self._trades.pop(mint, None)

    def expire(self, now: int) -> int:
        """Drop mints whose newest trade is older than the horizon. Returns count dropped."""
        cutoff = now - self.horizon_ms
        idle = [
            mint for mint, trades in self._trades.items()
            if not trades or trades[-1].timestamp < cutoff
        ]
        for mint in idle:
            del self._trades[mint]
        return len(idle)

    def clear(self) -> None:
        self._trades.clear()

    def __contains__(self, mint: str) -> bool:
        return mint in self._trades

    def __len__(self) -> int:
        return len(self._trades)


def _consecutive_buys(trades: Sequence[TradeEvent]) -> int:
    count = 0
    for trade in reversed(trades):
        if not trade.is_buy:
            break
        count += 1
    return count


def _volume_decline(trades: Sequence[TradeEvent], now: int) -> float:
    buckets: dict[int, float] = {}
    for trade in trades:
        minute = trade.timestamp // MS_PER_MINUTE
        buckets[minute] = buckets.get(minute, 0.0) + trade.volume
    if not buckets:
        return 0.0
    peak = max(buckets.values())
    if peak <= 0:
        return 0.0
    latest = buckets.get(now // MS_PER_MINUTE, 0.0)
    return (peak - latest) / peak * 100


def resolve_metric(
    metric: str,
    trades: Sequence[TradeEvent],
    now: int,
    rate_window_ms: int = RATE_WINDOW_MS,
) -> float:
    """
    Value of a named metric over a mint's trades (oldest first) at ``now``.

    Unknown metric names resolve to 0.
    """
    if metric in (
        TriggerMetric.VOLUME_RATE,
        TriggerMetric.TRADE_FREQUENCY,
        TriggerMetric.PRICE_CHANGE,
        TriggerMetric.BUY_PERCENTAGE,
        TriggerMetric.BUY_RATIO,
    ):
        window = compute_metrics(list(reversed(trades)), rate_window_ms, now=now)
        if metric == TriggerMetric.VOLUME_RATE:
            return window.volume_rate
        if metric == TriggerMetric.TRADE_FREQUENCY:
            return window.trade_frequency
        if metric == TriggerMetric.PRICE_CHANGE:
            return window.price_change_pct
        return window.buy_ratio

    if metric == TriggerMetric.TOTAL_VOLUME:
        return _finite(sum(t.volume for t in trades))
    if metric == TriggerMetric.BUY_COUNT:
        return float(sum(1 for t in trades if t.is_buy))
    if metric == TriggerMetric.CONSECUTIVE_BUYS:
        return float(_consecutive_buys(trades))
    if metric == TriggerMetric.AVG_TRADE_SIZE:
        if not trades:
            return 0.0
        return _finite(sum(t.token_amount for t in trades) / len(trades))
    if metric == TriggerMetric.INACTIVE_TIME:
        if not trades:
            return 0.0
        return max(0.0, (now - trades[-1].timestamp) / 1000)
    if metric == TriggerMetric.PRICE_DROP:
        if not trades:
            return 0.0
        peak = max(t.price for t in trades)
        if peak <= 0:
            return 0.0
        return _finite((peak - trades[-1].price) / peak * 100)
    if metric == TriggerMetric.VOLUME_DECLINE:
        return _finite(_volume_decline(trades, now))
    return 0.0


@dataclass(frozen=True)
class EvaluationItem:
    group: TriggerGroup
    event: Union[CreatedEvent, TradeEvent]


class TriggerEvaluator:
    """
    FIFO evaluation of (trigger group, event) pairs.

    Only one drain runs at a time. An item leaves the queue after its
    evaluation finished, so stopping the loop never loses the item being
    evaluated. A failing evaluation is logged and counted as processed.

    Usage:
        evaluator = TriggerEvaluator(db, watchlist)
        await evaluator.start()

        evaluator.submit(event, store.enabled_groups())

        evaluator.queue_length       # pending evaluations
        evaluator.processed_count    # evaluations finished
    """

    def __init__(
        self,
        db: "Database",
        watchlist: "WatchlistService",
        classifier: Optional[Classifier] = None,
        tick_interval: float = 0.1,
        trade_window_ms: int = TRADE_WINDOW_MS,
        rate_window_ms: int = RATE_WINDOW_MS,
        clock: Callable[[], int] = now_ms,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._token_repo = TokenRepository(db)
        self._watchlist = watchlist
        self.classifier = classifier
        self.tick_interval = tick_interval
        self.rate_window_ms = rate_window_ms
        self._clock = clock
        self._monotonic = monotonic

        self.window = RollingTradeWindow(trade_window_ms)
        self._last_expiry = 0
        self._queue: deque[EvaluationItem] = deque()
        self._draining = False

        self.processed_count = 0
        self.matched_count = 0
        self.dropped_count = 0
        self.last_processed_at: Optional[int] = None

        self._task = IntervalTask("trigger_evaluation", tick_interval, self.drain)

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        return self._draining

    @property
    def is_running(self) -> bool:
        return self._task.is_running

    def diagnostics(self) -> dict[str, Any]:
        return {
            "queue_length": self.queue_length,
            "processed_count": self.processed_count,
            "last_processed_at": self.last_processed_at,
            "matched_count": self.matched_count,
            "dropped_count": self.dropped_count,
        }

    # -------------------------------------------------------------------------
    # Input
    # -------------------------------------------------------------------------

    def queue_evaluation(
        self, group: TriggerGroup, event: Union[CreatedEvent, TradeEvent]
    ) -> None:
        self._queue.append(EvaluationItem(group, event))

    def record_trade(self, event: TradeEvent) -> None:
        self.window.add(event)
        # Sweep idle mints at most once per minute of feed time
        if event.timestamp - self._last_expiry >= MS_PER_MINUTE:
            self._last_expiry = event.timestamp
            self.window.expire(event.timestamp)

    def forget(self, mint: str) -> None:
        """Drop a mint's trade history (token deleted)."""
        self.window.discard(mint)

    def clear_trades(self) -> None:
        self.window.clear()

    def submit(self, event: "DomainEvent", groups: Iterable[TriggerGroup]) -> int:
        """
        Record a trade (if it is one) and queue it against every enabled group.

        Returns the number of evaluations queued.
        """
        if not isinstance(event, (CreatedEvent, TradeEvent)):
            return 0
        if isinstance(event, TradeEvent):
            self.record_trade(event)

        queued = 0
        for group in groups:
            if group.enabled:
                self.queue_evaluation(group, event)
                queued += 1
        return queued

    def clear_queue(self) -> None:
        self._queue.clear()

    # -------------------------------------------------------------------------
    # Drain
    # -------------------------------------------------------------------------

    async def drain(self) -> int:
        """
        Evaluate queued items until the queue is empty or one tick elapsed.

        Returns the number of items processed (0 if a drain is in flight).
        """
        if self._draining or not self._queue:
            return 0

        self._draining = True
        started = self._monotonic()
        processed = 0
        try:
            while self._queue:
                item = self._queue[0]
                try:
                    await self.evaluate(item.group, item.event)
                except Exception as e:
                    logger.error(
                        f"Trigger evaluation failed for group '{item.group.name}' "
                        f"on {item.event.mint}: {e}"
                    )
                self._queue.popleft()
                processed += 1
                self.processed_count += 1
                self.last_processed_at = self._clock()

                if self._monotonic() - started > self.tick_interval:
                    break
        finally:
            self._draining = False

        return processed

    async def evaluate(
        self, group: TriggerGroup, event: Union[CreatedEvent, TradeEvent]
    ) -> bool:
        """
        Evaluate one group against one event and apply it if it matches.

        Returns True if the group matched.
        """
        token = await self._token_repo.get(event.mint)
        if token is None:
            self.dropped_count += 1
            logger.warning(f"Dropping trigger evaluation for unknown token {event.mint}")
            return False

        name = event.name if isinstance(event, CreatedEvent) else token.name
        context = {
            "mint": event.mint,
            "name": name,
            "symbol": token.symbol,
            "uri": token.uri,
            "event": event.kind,
        }

        if not await self.group_matches(group, event.mint, context):
            return False

        self.matched_count += 1
        logger.debug(f"Trigger group '{group.name}' matched {event.mint}")
        if group.type == TriggerType.WATCH:
            await self._watchlist.watch(event.mint, WatchStatus.TRIGGERED)
        else:
            await self._watchlist.unwatch(event.mint)
        return True

    async def group_matches(
        self, group: TriggerGroup, mint: str, context: dict[str, Any]
    ) -> bool:
        if not group.conditions:
            return False

        results = []
        for condition in group.conditions:
            results.append(await self.condition_holds(condition, mint, context))

        if group.operator == TriggerOperator.AND:
            return all(results)
        return any(results)

    async def condition_holds(
        self, condition: TriggerCondition, mint: str, context: dict[str, Any]
    ) -> bool:
        if condition.metric == TriggerMetric.WILDCARD_SEARCH:
            name = context.get("name")
            if not condition.pattern or not name:
                return False
            return fnmatch.fnmatchcase(name.lower(), condition.pattern.lower())

        if condition.metric == TriggerMetric.LLM_PROMPT:
            return await self._classify(condition, context)

        if condition.comparison is None or condition.threshold is None:
            logger.debug(f"Skipping condition {condition.id}: missing comparison or value")
            return False

        value = resolve_metric(
            condition.metric,
            self.window.trades(mint),
            self._clock(),
            self.rate_window_ms,
        )
        return condition.comparison.apply(value, condition.threshold)

    async def _classify(self, condition: TriggerCondition, context: dict[str, Any]) -> bool:
        if self.classifier is None or not condition.prompt:
            return False
        try:
            result = self.classifier.classify(condition.prompt, context)
            if inspect.isawaitable(result):
                result = await result
            return bool(result)
        except Exception as e:
            logger.error(f"Classifier failed for {context.get('mint')}: {e}")
            return False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        await self._task.start()

    async def stop(self) -> None:
        """Stop the drain loop. Queued items stay queued."""
        await self._task.stop()
