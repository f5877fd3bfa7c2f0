import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import urlsplit

from utils.logger import get_logger

logger = get_logger("rate_limiter")


@dataclass
class RateLimitConfig:
    """Rate limit configuration for an RPC endpoint host"""

    requests_per_window: int
    window_seconds: float = 10.0
    burst_limit: Optional[int] = None  # Max burst if different from rate


@dataclass
class TokenBucket:
    """Token bucket for rate limiting"""

    capacity: float
    tokens: float
    refill_rate: float  # tokens per second
    last_refill: float = field(default_factory=time.monotonic)

    def refill(self):
        """Refill tokens based on elapsed time"""
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def consume(self, tokens: int = 1) -> bool:
        """Try to consume tokens, returns True if successful"""
        self.refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def wait_time(self, tokens: int = 1) -> float:
        """Calculate how long to wait for tokens to be available"""
        self.refill()
        if self.tokens >= tokens:
            return 0.0
        needed = tokens - self.tokens
        return needed / self.refill_rate


class RateLimiter:
    """Client-side token bucket per RPC host.

    Keeps a batch under the provider's published limits so that most calls
    never see a 429 in the first place; the retry policy handles the rest.
    """

    # Published public-endpoint limits (per IP). The mainnet-beta figure is
    # the per-method limit, which is what detail resolution hammers.
    LIMITS = {
        "api.mainnet-beta.solana.com": RateLimitConfig(requests_per_window=40, window_seconds=10),
        "api.devnet.solana.com": RateLimitConfig(requests_per_window=40, window_seconds=10),
        "api.testnet.solana.com": RateLimitConfig(requests_per_window=40, window_seconds=10),
    }

    # Hosts come from caller-supplied RPC URLs.
    MAX_TRACKED_HOSTS = 256

    def __init__(
        self,
        default: Optional[RateLimitConfig] = None,
        limits: Optional[Dict[str, RateLimitConfig]] = None,
        max_hosts: Optional[int] = None,
    ):
        self._default = default or RateLimitConfig(requests_per_window=100, window_seconds=10)
        self._limits = dict(self.LIMITS)
        if limits:
            self._limits.update(limits)
        self._buckets: Dict[str, TokenBucket] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._max_hosts = max_hosts or self.MAX_TRACKED_HOSTS

    @classmethod
    def from_settings(cls, settings) -> "RateLimiter":
        return cls(
            default=RateLimitConfig(
                requests_per_window=settings.RPC_RATE_LIMIT_REQUESTS,
                window_seconds=settings.RPC_RATE_LIMIT_WINDOW_SECONDS,
            )
        )

    def _get_bucket(self, endpoint: str) -> TokenBucket:
        """Get or create a token bucket for an endpoint"""
        if endpoint not in self._buckets:
            config = self._limits.get(endpoint, self._default)
            capacity = config.burst_limit or config.requests_per_window
            refill_rate = config.requests_per_window / config.window_seconds
            self._buckets[endpoint] = TokenBucket(
                capacity=capacity, tokens=capacity, refill_rate=refill_rate
            )
        return self._buckets[endpoint]

    def _get_lock(self, endpoint: str) -> asyncio.Lock:
        """Get or create a lock for an endpoint"""
        if endpoint not in self._locks:
            if len(self._locks) >= self._max_hosts:
                self._evict_idle()
            self._locks[endpoint] = asyncio.Lock()
        return self._locks[endpoint]

    def _evict_idle(self):
        """Forget hosts whose bucket has refilled and nobody is waiting on."""
        for endpoint in list(self._locks):
            if self._locks[endpoint].locked():
                continue
            bucket = self._buckets.get(endpoint)
            if bucket is not None:
                bucket.refill()
                if bucket.tokens < bucket.capacity:
                    continue
                del self._buckets[endpoint]
            del self._locks[endpoint]
        if len(self._locks) >= self._max_hosts:
            logger.warning("Rate limiter tracking many active hosts", hosts=len(self._locks))

    async def acquire(self, endpoint: str, tokens: int = 1) -> float:
        """
        Acquire rate limit permission. Returns wait time (0 if immediate).
        Blocks until permission is granted.
        """
        lock = self._get_lock(endpoint)
        async with lock:
            bucket = self._get_bucket(endpoint)
            wait_time = bucket.wait_time(tokens)

            if wait_time > 0:
                logger.debug(
                    "Rate limit wait", endpoint=endpoint, wait_seconds=wait_time
                )
                await asyncio.sleep(wait_time)
                bucket.refill()

            bucket.consume(tokens)
            return wait_time

    def get_status(self) -> Dict[str, dict]:
        """Get current rate limit status for all endpoints"""
        status = {}
        for endpoint, bucket in self._buckets.items():
            bucket.refill()
            config = self._limits.get(endpoint, self._default)
            status[endpoint] = {
                "available_tokens": bucket.tokens,
                "capacity": bucket.capacity,
                "refill_rate": bucket.refill_rate,
                "limit": f"{config.requests_per_window}/{config.window_seconds}s",
            }
        return status


def endpoint_for_url(url: str) -> str:
    """Rate-limit bucket key for an RPC URL: its host, ignoring path and API keys."""
    host = urlsplit(url).hostname
    return host.lower() if host else url
