"""JSON-RPC client with backoff and endpoint rotation.

Every call runs an explicit loop over (attempt count, rotation cursor,
current endpoint). Rate limits and network errors back off on the same
endpoint; server and auth errors move to the next untried endpoint of the
pool, or back off when the pool has no alternates.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any, Optional

import httpx

from config import settings
from utils.logger import rpc_logger as logger
from utils.rate_limiter import RateLimiter, endpoint_for_url
from utils.retry import (
    RATE_LIMIT_RPC_CODES,
    FailureClass,
    RetryAction,
    RetryConfig,
    classify_exception,
    classify_status,
    plan_retry,
)

from .endpoint_pool import EndpointPool
from .errors import RpcExhaustedError, RpcResponseError, RpcTransportError


RATE_LIMIT_EXHAUSTED_MESSAGE = (
    "Rate limit exceeded. Please use a dedicated RPC endpoint "
    "(Helius, QuickNode, etc.) or try again later."
)


class SolanaRpcClient:
    """Client for a pool of Solana JSON-RPC endpoints"""

    def __init__(
        self,
        pool: EndpointPool,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_config: Optional[RetryConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: Optional[float] = None,
    ):
        self.pool = pool
        self.retry_config = retry_config or RetryConfig.from_settings(settings)
        self.rate_limiter = rate_limiter or RateLimiter.from_settings(settings)
        self.timeout = timeout if timeout is not None else settings.RPC_TIMEOUT_SECONDS
        self._client = http_client
        self._owns_client = http_client is None
        self._ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self):
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def call(self, method: str, params: Optional[list] = None) -> Any:
        """Call ``method`` and return its ``result`` payload.

        Raises RpcResponseError for JSON-RPC error objects, RpcTransportError
        for non-retryable HTTP failures and RpcExhaustedError once retries
        and rotation are used up.
        """
        params = params or []
        rotation = self.pool.start()
        endpoint = rotation.current
        attempt = 0
        requests_made = 0

        while True:
            requests_made += 1
            try:
                return await self._send(endpoint, method, params)
            except RpcTransportError as exc:
                if exc.failure is FailureClass.GENERIC:
                    raise

                decision = plan_retry(
                    attempt,
                    exc.failure,
                    self.retry_config,
                    can_rotate=rotation.can_rotate,
                    rotation_exhausted=rotation.exhausted,
                )

                if decision.action is RetryAction.ROTATE:
                    logger.warning(
                        "Endpoint failure, rotating",
                        method=method,
                        endpoint=endpoint,
                        failure=exc.failure.value,
                        status_code=exc.status_code,
                    )
                    endpoint = rotation.next()
                    continue

                if decision.action is RetryAction.GIVE_UP:
                    logger.error(
                        "RPC retries exhausted",
                        method=method,
                        endpoint=endpoint,
                        failure=exc.failure.value,
                        requests=requests_made,
                        endpoints_tried=len(rotation.tried),
                    )
                    raise RpcExhaustedError(
                        self._exhausted_message(method, exc),
                        exc.failure,
                        requests_made,
                    ) from exc

                logger.warning(
                    "Retrying RPC call",
                    method=method,
                    endpoint=endpoint,
                    failure=exc.failure.value,
                    attempt=attempt + 1,
                    max_retries=self.retry_config.max_retries,
                    delay=decision.delay,
                )
                await asyncio.sleep(decision.delay)
                attempt += 1

    async def _send(self, endpoint: str, method: str, params: list) -> Any:
        """One HTTP round trip. Every failure is raised as a classified RpcError."""
        await self.rate_limiter.acquire(endpoint_for_url(endpoint))
        client = await self._get_client()
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            response = await asyncio.wait_for(
                client.post(endpoint, json=payload),
                timeout=self.timeout,
            )
        except self.retry_config.retryable_exceptions as exc:
            failure = classify_exception(exc, self.retry_config) or FailureClass.NETWORK
            reason = str(exc) or type(exc).__name__
            raise RpcTransportError(
                f"Network error calling {method}: {reason}",
                failure,
                endpoint=endpoint,
            ) from exc
        except httpx.HTTPError as exc:
            reason = str(exc) or type(exc).__name__
            raise RpcTransportError(
                f"Unreadable response from {method}: {reason}",
                FailureClass.SERVER_ERROR,
                endpoint=endpoint,
            ) from exc

        failure = classify_status(response.status_code)
        if failure is not None:
            raise RpcTransportError(
                f"RPC request failed: {response.status_code}",
                failure,
                endpoint=endpoint,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except (ValueError, httpx.DecodingError) as exc:
            raise RpcTransportError(
                "RPC endpoint returned a non-JSON body",
                FailureClass.SERVER_ERROR,
                endpoint=endpoint,
                status_code=response.status_code,
            ) from exc

        if not isinstance(body, dict):
            raise RpcTransportError(
                "RPC endpoint returned an unexpected body",
                FailureClass.SERVER_ERROR,
                endpoint=endpoint,
                status_code=response.status_code,
            )

        error = body.get("error")
        if error is not None:
            code = error.get("code") if isinstance(error, dict) else None
            if code in RATE_LIMIT_RPC_CODES:
                raise RpcTransportError(
                    "RPC rate limited",
                    FailureClass.RATE_LIMITED,
                    endpoint=endpoint,
                    status_code=response.status_code,
                )
            raise RpcResponseError(f"RPC Error: {json.dumps(error)}", error)

        return body.get("result")

    @staticmethod
    def _exhausted_message(method: str, last_error: RpcTransportError) -> str:
        if last_error.failure is FailureClass.RATE_LIMITED:
            return RATE_LIMIT_EXHAUSTED_MESSAGE
        return f"{method} failed: {last_error}"
