"""
Subscription and settings repositories.

Handles:
- subscriptions: durable record of the last requested state per mint
- settings: the singleton 'app' settings row
"""
from __future__ import annotations

import time
from typing import Optional

from pumpwatch.storage.database import Connection
from pumpwatch.storage.models import AppSettings, SubscriptionRecord, SubscriptionStatus
from pumpwatch.storage.repositories.base import BaseRepository


class SubscriptionRepository(BaseRepository[SubscriptionRecord]):
    """Repository for subscription intents."""

    table_name = "subscriptions"
    id_column = "mint"
    model_class = SubscriptionRecord

    async def put(
        self,
        mint: str,
        status: SubscriptionStatus,
        subscribe_time: Optional[int] = None,
        conn: Optional[Connection] = None,
    ) -> None:
        """Insert or replace the subscription record for a mint."""
        query = """
            INSERT INTO subscriptions (mint, subscribe_time, status)
            VALUES (?, ?, ?)
            ON CONFLICT (mint) DO UPDATE
            SET subscribe_time = excluded.subscribe_time,
                status = excluded.status
        """
        if subscribe_time is None:
            subscribe_time = int(time.time() * 1000)
        await self._executor(conn).execute(query, mint, subscribe_time, status.value)

    async def get_by_status(
        self, status: SubscriptionStatus, conn: Optional[Connection] = None
    ) -> list[SubscriptionRecord]:
        """Get subscriptions in a given state, oldest first."""
        query = """
            SELECT * FROM subscriptions
            WHERE status = ?
            ORDER BY subscribe_time
        """
        records = await self._executor(conn).fetch(query, status.value)
        return self._records_to_models(records)


class SettingsRepository(BaseRepository[AppSettings]):
    """Repository for the singleton settings row."""

    table_name = "settings"
    model_class = AppSettings

    SETTINGS_ID = "app"

    async def load(self, conn: Optional[Connection] = None) -> AppSettings:
        """Load settings, falling back to defaults if never saved."""
        settings = await self.get_by_id(self.SETTINGS_ID, conn=conn)
        return settings or AppSettings(id=self.SETTINGS_ID)

    async def save(self, settings: AppSettings, conn: Optional[Connection] = None) -> None:
        """Persist the settings row."""
        query = """
            INSERT INTO settings
            (id, auto_resubscribe, detailed_logging, prune_threshold_minutes,
             watch_similar_names)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE
            SET auto_resubscribe = excluded.auto_resubscribe,
                detailed_logging = excluded.detailed_logging,
                prune_threshold_minutes = excluded.prune_threshold_minutes,
                watch_similar_names = excluded.watch_similar_names
        """
        await self._executor(conn).execute(
            query,
            self.SETTINGS_ID,
            int(settings.auto_resubscribe),
            int(settings.detailed_logging),
            settings.prune_threshold_minutes,
            int(settings.watch_similar_names),
        )
