"""
Subscription manager for per-mint trade subscriptions.

Intents are queued and drained on a fixed interval. Each drain collapses
the queued intents to the last action per mint, so a mint subscribed,
unsubscribed and subscribed again within one tick costs a single message.
At most one subscribe and one unsubscribe message are sent per drain.

The durable record of what the user wants lives in the ``subscriptions``
table; the set of mints the feed is believed to be sending lives on the
FeedConnection. The manager reconciles the two.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pumpwatch.core.background_tasks import IntervalTask
from pumpwatch.storage.database import Database
from pumpwatch.storage.models import AppSettings, SubscriptionStatus
from pumpwatch.storage.repositories import SettingsRepository, SubscriptionRepository

from .models import SubscriptionMethod, build_message
from .websocket import FeedConnection

logger = logging.getLogger(__name__)


class SubscriptionAction(str, Enum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"


@dataclass(frozen=True)
class SubscriptionIntent:
    """A queued request to change one mint's trade subscription."""
    mint: str
    action: SubscriptionAction
    enqueued_at: int


@dataclass
class DrainResult:
    """Outcome of a single drain."""
    subscribed: list[str] = field(default_factory=list)
    unsubscribed: list[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None
    failed: bool = False
    drained: int = 0

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class SubscriptionManager:
    """
    Batches subscribe/unsubscribe intents into feed messages.

    Usage:
        manager = SubscriptionManager(db, connection, settings)
        await manager.request_subscribe(mint)
        await manager.start()     # drains every 2 seconds
        ...
        await manager.stop()
    """

    def __init__(
        self,
        db: Database,
        connection: FeedConnection,
        settings: AppSettings,
        drain_interval: float = 2.0,
    ) -> None:
        self._connection = connection
        self._settings = settings
        self._subscription_repo = SubscriptionRepository(db)
        self._settings_repo = SettingsRepository(db)

        self._queue: list[SubscriptionIntent] = []
        self._queue_generation = 0
        self._draining = False
        self.last_result: Optional[DrainResult] = None

        self._task = IntervalTask("subscription_drain", drain_interval, self.drain)
        connection.set_restore_hook(self.restore_subscriptions)

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        return self._draining

    @property
    def is_running(self) -> bool:
        return self._task.is_running

    # -------------------------------------------------------------------------
    # Intents
    # -------------------------------------------------------------------------

    def _enqueue(self, mint: str, action: SubscriptionAction) -> None:
        self._queue.append(
            SubscriptionIntent(mint=mint, action=action, enqueued_at=int(time.time() * 1000))
        )
        logger.debug(f"Queued {action.value} for {mint}")

    def queue_subscribe(self, mint: str) -> None:
        """Queue a subscribe without touching the database."""
        self._enqueue(mint, SubscriptionAction.SUBSCRIBE)

    def queue_unsubscribe(self, mint: str) -> None:
        """Queue an unsubscribe without touching the database."""
        self._enqueue(mint, SubscriptionAction.UNSUBSCRIBE)

    async def request_subscribe(self, mint: str) -> None:
        """Record the mint as active, then queue the subscribe."""
        await self._subscription_repo.put(mint, SubscriptionStatus.ACTIVE)
        self.queue_subscribe(mint)

    async def request_unsubscribe(self, mint: str) -> None:
        """Record the mint as inactive, then queue the unsubscribe."""
        await self._subscription_repo.put(mint, SubscriptionStatus.INACTIVE)
        self.queue_unsubscribe(mint)

    def clear_queue(self) -> None:
        self._queue.clear()
        self._queue_generation += 1

    # -------------------------------------------------------------------------
    # Drain
    # -------------------------------------------------------------------------

    async def drain(self) -> DrainResult:
        """
        Send the queued intents as batched messages.

        Skipped (queue untouched) when another drain is in flight or the
        connection is not open. Only the intents present when the drain
        started are removed, and only after every send succeeded.
        """
        if self._draining:
            return DrainResult(skipped_reason="in_flight")
        if not self._connection.is_open:
            return DrainResult(skipped_reason="not_open")
        if not self._queue:
            return DrainResult()

        self._draining = True
        try:
            result = await self._drain_snapshot()
        finally:
            self._draining = False

        self.last_result = result
        return result

    async def _drain_snapshot(self) -> DrainResult:
        snapshot = list(self._queue)
        generation = self._queue_generation

        latest: dict[str, SubscriptionAction] = {}
        for intent in snapshot:
            latest.pop(intent.mint, None)
            latest[intent.mint] = intent.action

        connection = self._connection
        to_subscribe = [
            mint for mint, action in latest.items()
            if action == SubscriptionAction.SUBSCRIBE and not connection.is_active(mint)
        ]
        to_unsubscribe = [
            mint for mint, action in latest.items()
            if action == SubscriptionAction.UNSUBSCRIBE and connection.is_active(mint)
        ]

        result = DrainResult(drained=len(snapshot))

        if to_subscribe:
            message = build_message(SubscriptionMethod.SUBSCRIBE_TOKEN_TRADE, to_subscribe)
            if not await connection.send(message):
                logger.warning(f"Subscribe for {len(to_subscribe)} mints failed, keeping queue")
                result.failed = True
                return result
            connection.mark_active(to_subscribe)
            result.subscribed = to_subscribe

        if to_unsubscribe:
            message = build_message(SubscriptionMethod.UNSUBSCRIBE_TOKEN_TRADE, to_unsubscribe)
            if not await connection.send(message):
                logger.warning(
                    f"Unsubscribe for {len(to_unsubscribe)} mints failed, keeping queue"
                )
                result.failed = True
                return result
            connection.mark_inactive(to_unsubscribe)
            result.unsubscribed = to_unsubscribe

        # Intents queued during the sends stay for the next tick
        if generation == self._queue_generation:
            del self._queue[:len(snapshot)]

        if to_subscribe or to_unsubscribe:
            logger.info(
                f"Subscriptions: +{len(to_subscribe)} -{len(to_unsubscribe)} "
                f"({len(connection.active_subscriptions)} active)"
            )
        return result

    # -------------------------------------------------------------------------
    # Auto-resubscribe
    # -------------------------------------------------------------------------

    async def restore_subscriptions(self) -> int:
        """Queue subscribes for every mint recorded active. Returns count queued."""
        if not self._settings.auto_resubscribe:
            return 0

        records = await self._subscription_repo.get_by_status(SubscriptionStatus.ACTIVE)
        for record in records:
            self.queue_subscribe(record.mint)

        if records:
            logger.info(f"Restoring {len(records)} trade subscriptions")
        return len(records)

    async def set_auto_resubscribe(self, enabled: bool) -> None:
        """
        Persist the auto-resubscribe setting and apply it.

        Turning it off forgets the active set and queued intents; turning it
        on queues every recorded active subscription.
        """
        self._settings.auto_resubscribe = enabled
        await self._settings_repo.save(self._settings)

        if enabled:
            await self.restore_subscriptions()
        else:
            self._connection.clear_active()
            self.clear_queue()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        await self._task.start()

    async def stop(self) -> None:
        """Stop draining. Queued intents are kept for the next start."""
        await self._task.stop()
