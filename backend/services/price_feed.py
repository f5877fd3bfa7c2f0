"""SOL/USD spot price, fetched out-of-band from the batch pipeline.

The price is decoration on a batch result, so this feed never raises:
failures log a warning and fall back to the last good price (or 0.0).
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

import httpx

from config import settings
from utils.logger import get_logger

logger = get_logger("price_feed")


class SolPriceFeed:
    def __init__(
        self,
        url: Optional[str] = None,
        ttl_seconds: Optional[float] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url or settings.SOL_PRICE_URL
        self.ttl_seconds = settings.SOL_PRICE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.timeout = settings.SOL_PRICE_TIMEOUT_SECONDS if timeout is None else timeout
        self._client = http_client
        self._owns_client = http_client is None
        self._price: Optional[float] = None
        self._fetched_at: float = 0.0
        self._lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self):
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    @property
    def cached_price(self) -> Optional[float]:
        return self._price

    def _is_fresh(self) -> bool:
        return self._price is not None and (time.monotonic() - self._fetched_at) < self.ttl_seconds

    async def get_price(self) -> float:
        """Current SOL price in USD, 0.0 when no price has ever been available."""
        if self._is_fresh():
            return self._price

        async with self._lock:
            if self._is_fresh():
                return self._price
            try:
                price = await self._fetch()
            except Exception as e:
                logger.warning("SOL price unavailable", url=self.url, error=str(e) or type(e).__name__)
                return self._price if self._price is not None else 0.0

            self._price = price
            self._fetched_at = time.monotonic()
            return price

    async def _fetch(self) -> float:
        client = await self._get_client()
        response = await asyncio.wait_for(
            client.get(self.url, timeout=self.timeout),
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        price = float(data["solana"]["usd"])
        if price < 0:
            raise ValueError(f"negative price {price}")
        return price


sol_price_feed = SolPriceFeed()
