"""
SOL/USD price oracle.

Fetches the SOL price from CoinGecko's simple-price endpoint and caches it.
Refreshes are limited to one per cooldown window (30 s by default): get_price()
serves the cached value inside the window, force_update() refuses with a
RateLimitError that says how long to wait.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional

import aiohttp

logger = logging.getLogger(__name__)


class PriceOracleError(Exception):
    """Base exception for price fetch errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(PriceOracleError):
    """Refresh requested inside the cooldown window."""

    def __init__(self, retry_after: float):
        super().__init__(f"Rate limited. Please wait {retry_after:.1f} seconds", status_code=429)
        self.retry_after = retry_after


class SolPriceOracle:
    """
    Cached SOL -> USD price.

    Usage:
        async with SolPriceOracle() as oracle:
            usd = await oracle.get_price()
    """

    API_URL = "https://api.coingecko.com/api/v3/simple/price?ids=solana&vs_currencies=usd"

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        cooldown_seconds: float = 30.0,
        timeout: float = 10.0,
        url: Optional[str] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._session = session
        self._owns_session = session is None
        self._cooldown = cooldown_seconds
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._url = url or self.API_URL
        self._clock = clock or time.monotonic

        self._price = 0.0
        self._last_update: Optional[float] = None
        self._lock = asyncio.Lock()
        self.last_error: Optional[str] = None

    async def __aenter__(self) -> "SolPriceOracle":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    @property
    def price(self) -> float:
        """Last fetched price (0 before the first fetch)."""
        return self._price

    def _seconds_until_refresh(self) -> float:
        if self._last_update is None:
            return 0.0
        return max(0.0, self._cooldown - (self._clock() - self._last_update))

    async def get_price(self) -> float:
        """Return the cached price, refreshing it once the cooldown has passed."""
        if self._seconds_until_refresh() > 0:
            return self._price
        await self.force_update()
        return self._price

    async def force_update(self) -> float:
        """
        Fetch a fresh price now.

        Raises:
            RateLimitError: Inside the cooldown window (carries retry_after)
            PriceOracleError: On HTTP or payload errors
        """
        async with self._lock:
            wait = self._seconds_until_refresh()
            if wait > 0:
                raise RateLimitError(wait)

            try:
                price = await self._fetch_price()
            except PriceOracleError as e:
                self.last_error = str(e)
                raise

            self._price = price
            self._last_update = self._clock()
            self.last_error = None
            logger.debug(f"SOL price updated: ${price:.2f}")
            return price

    async def _request(self) -> Any:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        try:
            async with self._session.get(self._url) as response:
                if response.status == 429:
                    raise PriceOracleError("Price API rate limit exceeded", status_code=429)
                if response.status >= 400:
                    text = await response.text()
                    raise PriceOracleError(
                        f"Price API error: {response.status} - {text}",
                        status_code=response.status,
                    )
                return await response.json()
        except aiohttp.ClientError as e:
            raise PriceOracleError(f"Price request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise PriceOracleError("Price request timed out") from e

    async def _fetch_price(self) -> float:
        data = await self._request()
        try:
            return float(data["solana"]["usd"])
        except (KeyError, TypeError, ValueError) as e:
            raise PriceOracleError(f"Unexpected price payload: {data!r}") from e
