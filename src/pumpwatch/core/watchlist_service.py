"""
Watchlist service for the watch-set.

The watch-set is the set of mints the user (or a trigger) has flagged.
Membership is mirrored in the tokens table's watch_status column so it
survives restarts; this service is the only writer of that column.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from pumpwatch.storage.models import AppSettings, WatchStatus
from pumpwatch.storage.repositories import TokenRepository

if TYPE_CHECKING:
    from pumpwatch.storage import Database

logger = logging.getLogger(__name__)


class WatchlistService:
    """
    Service owning the watch-set.

    watch() and unwatch() are idempotent: watching a watched mint or
    unwatching an absent one does nothing. The in-memory set is only
    changed after the status write succeeded.

    Usage:
        service = WatchlistService(db, settings)
        await service.load()

        await service.watch(mint)                         # manual star
        await service.watch(mint, WatchStatus.TRIGGERED)  # trigger match
        await service.unwatch(mint)
    """

    def __init__(self, db: "Database", settings: Optional[AppSettings] = None) -> None:
        """
        Initialize the watchlist service.

        Args:
            db: Database connection
            settings: Shared user settings (read for watch_similar_names)
        """
        self._db = db
        self._token_repo = TokenRepository(db)
        self.settings = settings or AppSettings()
        self._watched: set[str] = set()

    @property
    def watched(self) -> frozenset[str]:
        return frozenset(self._watched)

    def is_watched(self, mint: str) -> bool:
        return mint in self._watched

    def __len__(self) -> int:
        return len(self._watched)

    async def load(self) -> int:
        """Fill the watch-set from persisted token statuses. Returns its size."""
        tokens = await self._token_repo.get_by_watch_status(
            [WatchStatus.WATCHED, WatchStatus.TRIGGERED]
        )
        self._watched = {t.mint for t in tokens}
        logger.info(f"Loaded watch-set with {len(self._watched)} tokens")
        return len(self._watched)

    async def watch(self, mint: str, status: WatchStatus = WatchStatus.WATCHED) -> bool:
        """
        Add a token to the watch-set.

        Returns:
            True if the token is in the watch-set afterwards, False if the
            token is unknown
        """
        token = await self._token_repo.get(mint)
        if token is None:
            logger.warning(f"Cannot watch unknown token {mint}")
            return False

        if mint not in self._watched:
            await self._token_repo.set_watch_status(mint, status)
            self._watched.add(mint)
            logger.info(f"Watching {mint} ({status.value})")

        if self.settings.watch_similar_names and token.name:
            await self._watch_similar(mint, token.name, status)

        return True

    async def _watch_similar(self, mint: str, name: str, status: WatchStatus) -> None:
        similar = await self._token_repo.get_by_name(name)
        for token in similar:
            if token.mint == mint or token.mint in self._watched:
                continue
            await self._token_repo.set_watch_status(token.mint, status)
            self._watched.add(token.mint)
            logger.debug(f"Watching {token.mint} (same name as {mint})")

    async def unwatch(self, mint: str) -> bool:
        """
        Remove a token from the watch-set.

        Returns:
            True if the token was removed, False if it was not watched
        """
        if mint not in self._watched:
            return False

        await self._token_repo.set_watch_status(mint, WatchStatus.UNWATCHED)
        self._watched.discard(mint)
        logger.info(f"Unwatched {mint}")
        return True

    def forget(self, mint: str) -> None:
        """Drop a mint from memory only (its row is already gone)."""
        self._watched.discard(mint)
