"""Endpoint pool and per-call rotation.

A pool is owned by one pipeline run, never by the process, so concurrent
batches cannot steer each other's endpoint choice. Within a run the
current index is shared by every in-flight call; calls that rotate at the
same time may race on it and the last write wins. The index is only a
hint about which endpoint is healthy; each call tracks the endpoints it
has tried on its own cursor.
"""

from __future__ import annotations

from typing import Iterable, Optional

from config import settings
from utils.logger import get_logger

logger = get_logger("endpoint_pool")


class EndpointPool:
    def __init__(self, urls: Iterable[str], rotatable: bool = True):
        unique: list[str] = []
        for url in urls:
            if url and url not in unique:
                unique.append(url)
        if not unique:
            raise ValueError("EndpointPool needs at least one endpoint")
        self._urls = tuple(unique)
        self._rotatable = rotatable
        self._index = 0

    @classmethod
    def public(cls, primary: Optional[str] = None, fallbacks: Optional[Iterable[str]] = None) -> "EndpointPool":
        """Shared pool of known public endpoints, rotated on endpoint failures."""
        primary = primary or settings.SOLANA_RPC_URL
        fallbacks = settings.RPC_FALLBACK_URLS if fallbacks is None else fallbacks
        return cls([primary, *fallbacks], rotatable=True)

    @classmethod
    def custom(cls, url: str) -> "EndpointPool":
        """Single caller-supplied endpoint. Never rotated away from."""
        return cls([url], rotatable=False)

    @classmethod
    def from_settings(cls, override: Optional[str] = None) -> "EndpointPool":
        if override:
            return cls.custom(override)
        return cls.public()

    @property
    def urls(self) -> tuple[str, ...]:
        return self._urls

    @property
    def rotatable(self) -> bool:
        return self._rotatable

    @property
    def can_rotate(self) -> bool:
        return self._rotatable and len(self._urls) > 1

    @property
    def current(self) -> str:
        return self._urls[self._index % len(self._urls)]

    def start(self) -> "EndpointRotation":
        """Begin a logical call at the currently preferred endpoint."""
        return EndpointRotation(self)

    def _prefer(self, position: int) -> None:
        # Plain assignment; concurrent rotations race and the last one wins.
        self._index = position % len(self._urls)

    def __len__(self) -> int:
        return len(self._urls)

    def __repr__(self) -> str:
        return f"EndpointPool(urls={list(self._urls)!r}, rotatable={self._rotatable})"


class EndpointRotation:
    """Rotation cursor for a single logical call.

    ``next()`` hands out each pool endpoint at most once for this call and
    returns None when there is nothing left to try.
    """

    def __init__(self, pool: EndpointPool):
        self._pool = pool
        self._position = pool._index % len(pool)
        self._tried: list[str] = [pool.urls[self._position]]

    @property
    def current(self) -> str:
        return self._pool.urls[self._position]

    @property
    def tried(self) -> tuple[str, ...]:
        return tuple(self._tried)

    @property
    def has_alternates(self) -> bool:
        return self._pool.can_rotate

    @property
    def exhausted(self) -> bool:
        return self.has_alternates and len(self._tried) >= len(self._pool)

    @property
    def can_rotate(self) -> bool:
        return self.has_alternates and not self.exhausted

    def next(self) -> Optional[str]:
        if not self.can_rotate:
            return None
        size = len(self._pool)
        for step in range(1, size):
            position = (self._position + step) % size
            endpoint = self._pool.urls[position]
            if endpoint not in self._tried:
                break
        self._position = position
        self._pool._prefer(position)
        self._tried.append(endpoint)
        logger.info(
            "Rotating RPC endpoint",
            endpoint=endpoint,
            tried=len(self._tried),
            pool_size=len(self._pool),
        )
        return endpoint
