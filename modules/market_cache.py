"""
market_cache.py
---------------
Memoised market metadata fetched from ``GET {api_base}/market/{ticker}``.

Successful responses are cached (overwriting older entries). A 404 or any
other failure is *not* cached, so the very next request retries. Prices for
open positions are mid prices derived from the best bid/ask.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Deque, Dict, Optional

import aiohttp
from pydantic import ValidationError

from models.market import Market, Quote


# ---------------------------- rate limiter -------------------------------- #
class RateLimiter:
    """Simple sliding-window limiter (max N requests per window)."""

    def __init__(self, max_requests: int, window_seconds: float = 10) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.timestamps: Deque[float] = deque()

    async def acquire(self) -> None:
        now = time.time()
        while self.timestamps and now - self.timestamps[0] > self.window_seconds:
            self.timestamps.popleft()
        if len(self.timestamps) >= self.max_requests:
            await asyncio.sleep(self.window_seconds - (now - self.timestamps[0]))
        self.timestamps.append(time.time())


# ---------------------------- metadata cache ------------------------------ #
class MarketMetadataCache:
    """Asynchronous cache of per-ticker market metadata."""

    def __init__(
        self,
        api_base_url: str,
        logger: Optional[logging.Logger] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limiter: Optional[RateLimiter] = None,
        headers: Optional[Dict[str, str]] = None,
        request_timeout: float = 10,
    ) -> None:
        self.api_base_url = api_base_url.rstrip("/")
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.rate_limiter = rate_limiter or RateLimiter(max_requests=200)
        self.headers = headers or {}
        self.timeout = aiohttp.ClientTimeout(total=request_timeout)

        self._session = session
        self._owns_session = session is None
        self._cache: Dict[str, Market] = {}

        self.metrics = {
            "requests_sent": 0,
            "errors": 0,
            "not_found": 0,
        }

    # -------------------------------------------------------------------- #
    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or (self._owns_session and self._session.closed):
            self._session = aiohttp.ClientSession(headers=self.headers, timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def cached(self, ticker: str) -> Optional[Market]:
        return self._cache.get(ticker)

    def invalidate(self, ticker: str) -> None:
        self._cache.pop(ticker, None)

    # -------------------------------------------------------------------- #
    async def fetch(
        self, ticker: str, skip_cache: bool = False, log_not_found: Optional[bool] = None
    ) -> Optional[Market]:
        """Return market metadata, or None when it cannot be had right now.

        404s are logged for first-time lookups only; ``log_not_found``
        overrides that (retries pass False).
        """
        if log_not_found is None:
            log_not_found = not skip_cache
        if not skip_cache:
            market = self._cache.get(ticker)
            if market is not None:
                return market

        await self.rate_limiter.acquire()
        url = f"{self.api_base_url}/market/{ticker}"
        session = self._get_session()
        try:
            async with session.get(url) as resp:
                self.metrics["requests_sent"] += 1
                if resp.status == 404:
                    self.metrics["not_found"] += 1
                    if log_not_found:
                        self.logger.warning("Market not found (404): %s", ticker)
                    return None
                if resp.status != 200:
                    self.metrics["errors"] += 1
                    self.logger.warning("Failed to fetch market %s: HTTP %s", ticker, resp.status)
                    return None
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            self.metrics["errors"] += 1
            self.logger.warning("Error fetching market %s: %s", ticker, exc)
            return None

        try:
            market = Market.model_validate(data)
        except ValidationError as exc:
            self.metrics["errors"] += 1
            self.logger.warning("Malformed market payload for %s: %s", ticker, exc)
            return None

        self._cache[ticker] = market
        return market

    async def meets_min_volume(self, ticker: str, min_volume: float) -> bool:
        """Liquidity pre-filter: unknown markets never pass."""
        market = await self.fetch(ticker)
        if market is None:
            return False
        return market.volume >= min_volume

    async def get_mid_price(self, ticker: str, fresh: bool = True) -> Optional[Quote]:
        """
        Current YES/NO mid prices in cents.

        ``fresh`` bypasses the cache on the first attempt (quotes move, the
        cached entry may be old). A miss is retried once, always bypassing
        the cache.
        """
        market = await self.fetch(ticker, skip_cache=fresh, log_not_found=True)
        quote = market.quote() if market is not None else None
        if quote is None:
            market = await self.fetch(ticker, skip_cache=True, log_not_found=False)
            quote = market.quote() if market is not None else None
        return quote
