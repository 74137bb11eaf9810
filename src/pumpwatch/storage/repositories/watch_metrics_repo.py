"""
Watch metrics repository.

Handles:
- watch_metrics: per-mint auto-watch heuristics state

The series and wallet-concentration columns are JSON text in SQLite. They
are decoded to real lists/dicts here and nowhere else.
"""
from __future__ import annotations

import json
from typing import Iterable, Optional

from pumpwatch.storage.database import Connection
from pumpwatch.storage.models import WatchMetrics
from pumpwatch.storage.repositories.base import BaseRepository


def encode_wallet_concentration(concentration: dict[str, float]) -> str:
    """Serialize wallet -> share-of-volume mapping."""
    return json.dumps(concentration, sort_keys=True)


def decode_wallet_concentration(raw: Optional[str]) -> dict[str, float]:
    """Parse the wallet_concentration column."""
    if not raw:
        return {}
    data = json.loads(raw)
    # Older rows stored a list of [wallet, share] pairs
    if isinstance(data, list):
        return {str(k): float(v) for k, v in data}
    return {str(k): float(v) for k, v in data.items()}


class WatchMetricsRepository(BaseRepository[WatchMetrics]):
    """Repository for auto-watch metrics."""

    table_name = "watch_metrics"
    id_column = "mint"
    model_class = WatchMetrics

    def _record_to_model(self, record) -> Optional[WatchMetrics]:
        if record is None:
            return None
        data = dict(record)
        data["volume_velocity"] = json.loads(data.get("volume_velocity") or "[]")
        data["trade_frequency"] = json.loads(data.get("trade_frequency") or "[]")
        data["wallet_concentration"] = decode_wallet_concentration(
            data.get("wallet_concentration")
        )
        return WatchMetrics(**data)

    async def get(self, mint: str, conn: Optional[Connection] = None) -> Optional[WatchMetrics]:
        """Get stored metrics for a mint."""
        return await self.get_by_id(mint, conn=conn)

    async def put(self, metrics: WatchMetrics, conn: Optional[Connection] = None) -> None:
        """Insert or replace metrics for a mint."""
        query = """
            INSERT OR REPLACE INTO watch_metrics
            (mint, create_time, watch_start_time, peak_volume, peak_price,
             last_price, volume_velocity, trade_frequency, buy_wall_strength,
             last_trade_time, manipulation_score, wallet_concentration, last_update)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        await self._executor(conn).execute(
            query,
            metrics.mint,
            metrics.create_time,
            metrics.watch_start_time,
            metrics.peak_volume,
            metrics.peak_price,
            metrics.last_price,
            json.dumps(metrics.volume_velocity),
            json.dumps(metrics.trade_frequency),
            metrics.buy_wall_strength,
            metrics.last_trade_time,
            metrics.manipulation_score,
            encode_wallet_concentration(metrics.wallet_concentration),
            metrics.last_update,
        )

    async def delete_for_mints(
        self, mints: Iterable[str], conn: Optional[Connection] = None
    ) -> int:
        """Delete metrics for the mints. Returns rows deleted."""
        return await self._delete_where_in("mint", mints, conn=conn)
