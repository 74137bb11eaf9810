"""
Token repository.

Handles:
- tokens: one row per launched mint, with an embedded metrics snapshot
"""
from __future__ import annotations

from typing import Iterable, Optional

from pumpwatch.storage.database import Connection
from pumpwatch.storage.models import TokenMetrics, TokenRecord, WatchStatus
from pumpwatch.storage.repositories.base import BaseRepository


def encode_metrics(metrics: Optional[TokenMetrics]) -> Optional[str]:
    """Serialize a metrics snapshot for the ``tokens.metrics`` column."""
    if metrics is None:
        return None
    return metrics.model_dump_json()


def decode_metrics(raw: Optional[str]) -> Optional[TokenMetrics]:
    """Parse the ``tokens.metrics`` column."""
    if not raw:
        return None
    return TokenMetrics.model_validate_json(raw)


class TokenRepository(BaseRepository[TokenRecord]):
    """Repository for tokens."""

    table_name = "tokens"
    id_column = "mint"
    model_class = TokenRecord

    def _record_to_model(self, record) -> Optional[TokenRecord]:
        if record is None:
            return None
        data = dict(record)
        data["metrics"] = decode_metrics(data.get("metrics"))
        return TokenRecord(**data)

    async def get(self, mint: str, conn: Optional[Connection] = None) -> Optional[TokenRecord]:
        """Get a token by mint."""
        return await self.get_by_id(mint, conn=conn)

    async def insert_if_absent(
        self, token: TokenRecord, conn: Optional[Connection] = None
    ) -> bool:
        """
        Insert a token unless its mint already exists.

        Returns True if the row was inserted.
        """
        query = """
            INSERT OR IGNORE INTO tokens
            (mint, symbol, name, uri, watch_status, create_time, last_update,
             last_trade_time, bonding_curve_key, sol_reserve, token_reserve,
             last_price, market_cap_sol, metrics)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        inserted = await self._executor(conn).execute(
            query,
            token.mint,
            token.symbol,
            token.name,
            token.uri,
            token.watch_status.value,
            token.create_time,
            token.last_update,
            token.last_trade_time,
            token.bonding_curve_key,
            token.sol_reserve,
            token.token_reserve,
            token.last_price,
            token.market_cap_sol,
            encode_metrics(token.metrics),
        )
        return inserted > 0

    async def update_if_newer(
        self, token: TokenRecord, conn: Optional[Connection] = None
    ) -> bool:
        """
        Write trade-derived fields only if ``token.last_update`` is newer.

        The stored row is left untouched unless the incoming last_update is
        strictly greater, so same-mint updates arriving out of order cannot
        roll a token back. Returns True if the row changed.
        """
        query = """
            UPDATE tokens
            SET last_update = ?,
                last_trade_time = ?,
                sol_reserve = ?,
                token_reserve = ?,
                last_price = ?,
                market_cap_sol = ?,
                metrics = ?
            WHERE mint = ? AND last_update < ?
        """
        updated = await self._executor(conn).execute(
            query,
            token.last_update,
            token.last_trade_time,
            token.sol_reserve,
            token.token_reserve,
            token.last_price,
            token.market_cap_sol,
            encode_metrics(token.metrics),
            token.mint,
            token.last_update,
        )
        return updated > 0

    async def set_watch_status(
        self, mint: str, status: WatchStatus, conn: Optional[Connection] = None
    ) -> bool:
        """Set a token's watch status. Returns False if the mint is unknown."""
        query = "UPDATE tokens SET watch_status = ? WHERE mint = ?"
        return await self._executor(conn).execute(query, status.value, mint) > 0

    async def get_by_watch_status(
        self, statuses: Iterable[WatchStatus], conn: Optional[Connection] = None
    ) -> list[TokenRecord]:
        """Get tokens in any of the given watch states."""
        values = [s.value for s in statuses]
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        query = f"""
            SELECT * FROM tokens
            WHERE watch_status IN ({placeholders})
            ORDER BY create_time DESC
        """
        records = await self._executor(conn).fetch(query, *values)
        return self._records_to_models(records)

    async def get_by_name(
        self, name: str, conn: Optional[Connection] = None
    ) -> list[TokenRecord]:
        """Get tokens whose name matches, ignoring case."""
        query = "SELECT * FROM tokens WHERE lower(name) = lower(?)"
        records = await self._executor(conn).fetch(query, name)
        return self._records_to_models(records)

    async def get_stale(
        self, cutoff: int, conn: Optional[Connection] = None
    ) -> list[TokenRecord]:
        """Get tokens with no update since ``cutoff`` (epoch ms)."""
        query = "SELECT * FROM tokens WHERE last_update < ? ORDER BY last_update"
        records = await self._executor(conn).fetch(query, cutoff)
        return self._records_to_models(records)

    async def delete_many(
        self, mints: Iterable[str], conn: Optional[Connection] = None
    ) -> int:
        """Delete tokens by mint. Returns the number deleted."""
        return await self._delete_where_in("mint", mints, conn=conn)
