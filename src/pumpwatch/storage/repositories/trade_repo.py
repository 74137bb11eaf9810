"""
Trade repository.

Handles:
- trades: append-only trade records, one per (token_mint, timestamp, signature)
"""
from __future__ import annotations

from typing import Iterable, Optional

from pumpwatch.storage.database import Connection
from pumpwatch.storage.models import TradeRecord
from pumpwatch.storage.repositories.base import MAX_BOUND_PARAMS, BaseRepository


class TradeRepository(BaseRepository[TradeRecord]):
    """Repository for trade records."""

    table_name = "trades"
    model_class = TradeRecord

    async def add(self, trade: TradeRecord, conn: Optional[Connection] = None) -> Optional[int]:
        """
        Append a trade.

        Returns the new row id, or None if a trade with the same identity
        was already stored.
        """
        query = """
            INSERT OR IGNORE INTO trades
            (token_mint, timestamp, side, price, volume, token_amount, signature,
             trader, bonding_curve_key, market_cap_sol, new_token_balance,
             sol_reserve, token_reserve)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        return await self._executor(conn).insert(
            query,
            trade.token_mint,
            trade.timestamp,
            trade.side,
            trade.price,
            trade.volume,
            trade.token_amount,
            trade.signature,
            trade.trader,
            trade.bonding_curve_key,
            trade.market_cap_sol,
            trade.new_token_balance,
            trade.sol_reserve,
            trade.token_reserve,
        )

    async def get_since(
        self, mint: str, since: int, conn: Optional[Connection] = None
    ) -> list[TradeRecord]:
        """Trades for a mint at or after ``since`` (epoch ms), newest first."""
        query = """
            SELECT * FROM trades
            WHERE token_mint = ? AND timestamp >= ?
            ORDER BY timestamp DESC, id DESC
        """
        records = await self._executor(conn).fetch(query, mint, since)
        return self._records_to_models(records)

    async def get_for_mint(
        self, mint: str, limit: int = 500, conn: Optional[Connection] = None
    ) -> list[TradeRecord]:
        """Most recent trades for a mint, newest first."""
        query = """
            SELECT * FROM trades
            WHERE token_mint = ?
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
        """
        records = await self._executor(conn).fetch(query, mint, limit)
        return self._records_to_models(records)

    async def count_for_mints(
        self, mints: Iterable[str], conn: Optional[Connection] = None
    ) -> int:
        """Count stored trades belonging to any of the mints."""
        values = list(mints)
        total = 0
        for start in range(0, len(values), MAX_BOUND_PARAMS):
            chunk = values[start:start + MAX_BOUND_PARAMS]
            placeholders = ", ".join("?" for _ in chunk)
            query = f"SELECT COUNT(*) FROM trades WHERE token_mint IN ({placeholders})"
            total += await self._executor(conn).fetchval(query, *chunk)
        return total

    async def delete_for_mints(
        self, mints: Iterable[str], conn: Optional[Connection] = None
    ) -> int:
        """Delete all trades belonging to the mints. Returns rows deleted."""
        return await self._delete_where_in("token_mint", mints, conn=conn)
