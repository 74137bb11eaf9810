"""
Tests for SubscriptionManager.

These tests verify:
- Intents collapse to the last action per mint within one drain
- At most one subscribe and one unsubscribe message per drain
- Drains are skipped (queue kept) while in flight or while disconnected
- Failed sends keep the queue and leave the active set alone
- Auto-resubscribe restore and toggling
"""

import pytest

from pumpwatch.storage.models import SubscriptionStatus
from pumpwatch.storage.repositories import SettingsRepository, SubscriptionRepository


def trade_messages(ws):
    return [m for m in ws.sent if m["method"] != "subscribeNewToken"]


@pytest.mark.asyncio
class TestDrainBatching:
    """Tests for drain() batching and dedup."""

    async def test_sub_unsub_sub_sends_single_subscribe(self, manager, open_connection, fake_ws):
        manager.queue_subscribe("A")
        manager.queue_unsubscribe("A")
        manager.queue_subscribe("A")

        result = await manager.drain()

        assert trade_messages(fake_ws) == [{"method": "subscribeTokenTrade", "keys": ["A"]}]
        assert result.subscribed == ["A"]
        assert result.unsubscribed == []
        assert open_connection.is_active("A")
        assert manager.queue_length == 0

    async def test_one_message_per_direction(self, manager, open_connection, fake_ws):
        open_connection.mark_active(["C", "D"])
        for mint in ("A", "B"):
            manager.queue_subscribe(mint)
        for mint in ("C", "D"):
            manager.queue_unsubscribe(mint)

        await manager.drain()

        assert trade_messages(fake_ws) == [
            {"method": "subscribeTokenTrade", "keys": ["A", "B"]},
            {"method": "unsubscribeTokenTrade", "keys": ["C", "D"]},
        ]
        assert open_connection.active_subscriptions == frozenset({"A", "B"})

    async def test_redundant_intents_send_nothing(self, manager, open_connection, fake_ws):
        open_connection.mark_active(["A"])
        manager.queue_subscribe("A")
        manager.queue_unsubscribe("Z")

        result = await manager.drain()

        assert trade_messages(fake_ws) == []
        assert result.drained == 2
        assert manager.queue_length == 0

    async def test_empty_queue(self, manager, open_connection, fake_ws):
        result = await manager.drain()
        assert not result.skipped
        assert trade_messages(fake_ws) == []


@pytest.mark.asyncio
class TestDrainGuards:
    """Tests for skip conditions."""

    async def test_skipped_while_in_flight(self, manager, open_connection, fake_ws):
        manager.queue_subscribe("A")
        manager._draining = True

        result = await manager.drain()

        assert result.skipped_reason == "in_flight"
        assert manager.queue_length == 1
        assert trade_messages(fake_ws) == []

    async def test_queue_kept_while_disconnected(self, manager, connection):
        manager.queue_subscribe("A")

        result = await manager.drain()

        assert result.skipped_reason == "not_open"
        assert manager.queue_length == 1
        assert not connection.is_active("A")

    async def test_failed_send_keeps_queue(self, manager, open_connection, fake_ws):
        manager.queue_subscribe("A")
        fake_ws.fail_sends = True

        result = await manager.drain()

        assert result.failed
        assert manager.queue_length == 1
        assert not open_connection.is_active("A")

        fake_ws.fail_sends = False
        await manager.drain()
        assert open_connection.is_active("A")
        assert manager.queue_length == 0

    async def test_stop_keeps_remaining_intents(self, manager, connection):
        await manager.start()
        manager.queue_subscribe("A")
        await manager.stop()

        # Never open, so nothing could be drained
        assert manager.queue_length == 1
        assert not manager.is_running


@pytest.mark.asyncio
class TestDurableIntents:
    """Tests for request_* and auto-resubscribe."""

    async def test_request_subscribe_persists_then_queues(self, manager, db):
        await manager.request_subscribe("A")
        await manager.request_unsubscribe("B")

        repo = SubscriptionRepository(db)
        assert (await repo.get_by_id("A")).status == SubscriptionStatus.ACTIVE
        assert (await repo.get_by_id("B")).status == SubscriptionStatus.INACTIVE
        assert manager.queue_length == 2

    async def test_restore_is_noop_when_disabled(self, manager, db):
        await SubscriptionRepository(db).put("A", SubscriptionStatus.ACTIVE)

        assert await manager.restore_subscriptions() == 0
        assert manager.queue_length == 0

    async def test_restore_queues_active_records(self, manager, db, settings):
        repo = SubscriptionRepository(db)
        await repo.put("A", SubscriptionStatus.ACTIVE, subscribe_time=1)
        await repo.put("B", SubscriptionStatus.INACTIVE, subscribe_time=2)
        settings.auto_resubscribe = True

        assert await manager.restore_subscriptions() == 1
        assert [i.mint for i in manager._queue] == ["A"]

    async def test_disable_auto_resubscribe_clears_state(
        self, manager, open_connection, db, settings
    ):
        settings.auto_resubscribe = True
        open_connection.mark_active(["A"])
        manager.queue_subscribe("B")

        await manager.set_auto_resubscribe(False)

        assert open_connection.active_subscriptions == frozenset()
        assert manager.queue_length == 0
        assert (await SettingsRepository(db).load()).auto_resubscribe is False

    async def test_enable_auto_resubscribe_restores(self, manager, db, settings):
        await SubscriptionRepository(db).put("A", SubscriptionStatus.ACTIVE)

        await manager.set_auto_resubscribe(True)

        assert settings.auto_resubscribe is True
        assert manager.queue_length == 1
        assert (await SettingsRepository(db).load()).auto_resubscribe is True

    async def test_restore_runs_on_open(self, manager, connection, db, settings, fake_ws):
        await SubscriptionRepository(db).put("A", SubscriptionStatus.ACTIVE)
        settings.auto_resubscribe = True

        await connection.connect()
        await manager.drain()

        assert {"method": "subscribeTokenTrade", "keys": ["A"]} in fake_ws.sent
        await connection.disconnect()

    async def test_resubscribes_after_remote_drop(
        self, manager, connection, settings, fake_ws, settle_reconnects
    ):
        settings.auto_resubscribe = True
        await connection.connect()
        await manager.request_subscribe("MintA")
        await manager.drain()

        receive_task = connection._receive_task
        fake_ws.end()
        await receive_task
        assert connection.active_subscriptions == frozenset()

        await settle_reconnects(connection)
        assert connection.is_open
        await manager.drain()

        subscribes = [m for m in fake_ws.sent if m["method"] == "subscribeTokenTrade"]
        assert len(subscribes) == 2
        assert subscribes[-1]["keys"] == ["MintA"]
        assert connection.is_active("MintA")
        await connection.disconnect()
