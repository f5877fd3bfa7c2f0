"""Backoff and retry policy for JSON-RPC calls.

Everything here is pure: given an attempt number and a failure class the
policy says whether to wait (and how long), switch endpoints, or give up.
The network loop that acts on those decisions lives in
``services.wallet_flow.rpc_client``.
"""

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Type

import httpx


class FailureClass(str, Enum):
    RATE_LIMITED = "rate_limited"  # HTTP 429 or provider rate-limit error code
    NETWORK = "network"  # timeouts, resets, DNS failures
    SERVER_ERROR = "server_error"  # HTTP 5xx or garbage response body
    AUTH_ERROR = "auth_error"  # HTTP 401/403
    GENERIC = "generic"  # any other non-2xx; never retried


class RetryAction(str, Enum):
    BACKOFF = "backoff"
    ROTATE = "rotate"
    GIVE_UP = "give_up"


# Endpoint-level failures mean the endpoint itself is unusable right now, so
# another endpoint is more likely to succeed than waiting on this one.
ENDPOINT_FAILURES = frozenset({FailureClass.SERVER_ERROR, FailureClass.AUTH_ERROR})
BACKOFF_FAILURES = frozenset(
    {
        FailureClass.RATE_LIMITED,
        FailureClass.NETWORK,
        FailureClass.SERVER_ERROR,
        FailureClass.AUTH_ERROR,
    }
)

# JSON-RPC error codes some providers use for throttling inside a 200 response.
RATE_LIMIT_RPC_CODES = frozenset({429, -32429})


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(
        self,
        max_retries: int = 5,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = False,
        retryable_exceptions: Tuple[Type[BaseException], ...] = (
            httpx.TimeoutException,
            httpx.NetworkError,
            httpx.RemoteProtocolError,
            ConnectionError,
            asyncio.TimeoutError,
        ),
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        return cls(
            max_retries=settings.RPC_MAX_RETRIES,
            base_delay=settings.RPC_BACKOFF_BASE_SECONDS,
            max_delay=settings.RPC_BACKOFF_MAX_SECONDS,
            jitter=settings.RPC_BACKOFF_JITTER,
        )


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    delay: float = 0.0


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay with exponential backoff and optional jitter"""
    delay = min(config.base_delay * (config.exponential_base**attempt), config.max_delay)
    if config.jitter:
        delay = delay * (0.5 + random.random())
    return delay


def classify_status(status_code: int) -> Optional[FailureClass]:
    """Map an HTTP status to a failure class (None for success)."""
    if 200 <= status_code < 300:
        return None
    if status_code == 429:
        return FailureClass.RATE_LIMITED
    if status_code in (401, 403):
        return FailureClass.AUTH_ERROR
    if status_code >= 500:
        return FailureClass.SERVER_ERROR
    return FailureClass.GENERIC


def classify_exception(error: BaseException, config: RetryConfig) -> Optional[FailureClass]:
    """Map a transport exception to a failure class (None if not a transport failure)."""
    if isinstance(error, config.retryable_exceptions):
        return FailureClass.NETWORK
    return None


def is_endpoint_failure(failure: FailureClass) -> bool:
    return failure in ENDPOINT_FAILURES


def backoff_delay(attempt: int, failure: FailureClass, config: RetryConfig) -> Optional[float]:
    """Return how long to wait before retry ``attempt`` (0-based), or None when exhausted."""
    if failure not in BACKOFF_FAILURES:
        return None
    if attempt >= config.max_retries:
        return None
    return calculate_delay(attempt, config)


def plan_retry(
    attempt: int,
    failure: FailureClass,
    config: RetryConfig,
    *,
    can_rotate: bool = False,
    rotation_exhausted: bool = False,
) -> RetryDecision:
    """Decide what to do after a failed call.

    ``attempt`` counts backoff retries already spent on this logical call.
    ``can_rotate`` is True when an untried alternate endpoint exists;
    ``rotation_exhausted`` is True when alternates exist but every one of
    them has already been tried for this call.

    Endpoint-level failures rotate while they can and give up once the pool
    is exhausted. Only when there is no alternate endpoint at all do they
    fall back to the same exponential schedule as rate limits and network
    errors.
    """
    if is_endpoint_failure(failure):
        if can_rotate:
            return RetryDecision(RetryAction.ROTATE)
        if rotation_exhausted:
            return RetryDecision(RetryAction.GIVE_UP)

    delay = backoff_delay(attempt, failure, config)
    if delay is None:
        return RetryDecision(RetryAction.GIVE_UP)
    return RetryDecision(RetryAction.BACKOFF, delay)
