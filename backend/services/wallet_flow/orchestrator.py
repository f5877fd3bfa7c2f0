"""Batch orchestrator: many wallets in, one BatchResult out.

Each wallet moves through PENDING -> FETCHING_HISTORY -> RESOLVING_DETAILS
-> AGGREGATED, or to ERRORED from any stage. A failing wallet never fails
the batch; it comes back as a zeroed flow carrying the error message, in
its input position.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Optional, Sequence

import httpx

from config import settings
from models.wallet_flow import AggregateTotals, BatchResult, WalletFlow
from services.price_feed import SolPriceFeed, sol_price_feed
from utils.logger import pipeline_logger as logger
from utils.rate_limiter import RateLimiter
from utils.retry import RetryConfig
from utils.validation import (
    validate_rpc_url,
    validate_transaction_cap,
    validate_wallet_batch,
)

from .aggregator import aggregate_wallet_flow
from .endpoint_pool import EndpointPool
from .history import fetch_signature_history
from .resolver import resolve_transfers
from .rpc_client import SolanaRpcClient


class WalletStage(str, Enum):
    PENDING = "pending"
    FETCHING_HISTORY = "fetching_history"
    RESOLVING_DETAILS = "resolving_details"
    AGGREGATED = "aggregated"
    ERRORED = "errored"


ProgressCallback = Callable[[str, WalletStage], None]


class WalletFlowPipeline:
    """Runs wallet batches against a pool of Solana RPC endpoints.

    One pipeline is shared by the API process. It owns the HTTP client and
    the per-host rate limiter; every ``run`` gets its own endpoint pool so
    concurrent batches rotate independently.
    """

    def __init__(
        self,
        endpoints: Optional[Sequence[str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        price_feed: Optional[SolPriceFeed] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_config: Optional[RetryConfig] = None,
        wallet_concurrency: Optional[int] = None,
        detail_concurrency: Optional[int] = None,
        page_size: Optional[int] = None,
        page_delay: Optional[float] = None,
        price_wait: Optional[float] = None,
    ):
        self.endpoints = list(endpoints) if endpoints else None
        self.price_feed = price_feed or sol_price_feed
        self.rate_limiter = rate_limiter or RateLimiter.from_settings(settings)
        self.retry_config = retry_config or RetryConfig.from_settings(settings)
        self.wallet_concurrency = wallet_concurrency or settings.WALLET_CONCURRENCY
        self.detail_concurrency = detail_concurrency or settings.DETAIL_CONCURRENCY
        self.page_size = page_size or settings.SIGNATURE_PAGE_SIZE
        self.page_delay = settings.PAGE_REQUEST_DELAY_SECONDS if page_delay is None else page_delay
        self.price_wait = settings.SOL_PRICE_WAIT_SECONDS if price_wait is None else price_wait
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=settings.RPC_TIMEOUT_SECONDS)
            self._owns_client = True
        return self._client

    async def aclose(self):
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "WalletFlowPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _build_pool(self, rpc_url: Optional[str]) -> EndpointPool:
        if rpc_url:
            return EndpointPool.custom(rpc_url)
        if self.endpoints:
            return EndpointPool(self.endpoints)
        return EndpointPool.public()

    async def run(
        self,
        addresses: Sequence[str],
        max_transactions: Optional[int] = None,
        rpc_url: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """Analyze a batch of wallets.

        Raises BatchValidationError before any network activity when the
        batch or its options are unusable. Otherwise always returns one
        flow per address, in input order.
        """
        wallets = validate_wallet_batch(addresses, settings.MAX_WALLETS_PER_BATCH)
        cap = validate_transaction_cap(
            max_transactions,
            settings.DEFAULT_MAX_TRANSACTIONS,
            settings.MAX_TRANSACTIONS_LIMIT,
        )
        rpc_url = validate_rpc_url(rpc_url)

        pool = self._build_pool(rpc_url)
        client = SolanaRpcClient(
            pool,
            http_client=await self._get_client(),
            retry_config=self.retry_config,
            rate_limiter=self.rate_limiter,
        )

        logger.info(
            "Starting wallet batch",
            wallets=len(wallets),
            max_transactions=cap,
            custom_rpc=rpc_url is not None,
            endpoints=len(pool),
        )

        price_task = asyncio.create_task(self.price_feed.get_price())
        semaphore = asyncio.Semaphore(self.wallet_concurrency)

        async def bounded(wallet: str) -> WalletFlow:
            async with semaphore:
                return await self._analyze_wallet(client, wallet, cap, on_progress)

        try:
            flows = await asyncio.gather(*[bounded(wallet) for wallet in wallets])
        except BaseException:
            price_task.cancel()
            raise

        sol_price = await self._collect_price(price_task)

        aggregate = AggregateTotals.from_flows(flows)
        logger.info(
            "Wallet batch complete",
            wallets=aggregate.total_wallets,
            errors=aggregate.errors,
            transactions=aggregate.total_transactions,
            sol_price=sol_price,
        )
        return BatchResult(results=list(flows), aggregate=aggregate, sol_price=sol_price)

    async def _collect_price(self, price_task: asyncio.Task) -> float:
        """Wait briefly for the price once the wallets are done, never longer."""
        try:
            return await asyncio.wait_for(price_task, self.price_wait)
        except asyncio.TimeoutError:
            logger.warning("SOL price lookup timed out", wait_seconds=self.price_wait)
        except Exception as e:
            logger.warning("SOL price lookup failed", error=str(e) or type(e).__name__)
        return self.price_feed.cached_price or 0.0

    async def _analyze_wallet(
        self,
        client: SolanaRpcClient,
        wallet: str,
        cap: int,
        on_progress: Optional[ProgressCallback],
    ) -> WalletFlow:
        stage = WalletStage.PENDING
        log = logger.with_context(wallet=wallet)

        def advance(next_stage: WalletStage) -> None:
            nonlocal stage
            stage = next_stage
            if on_progress is None:
                return
            try:
                on_progress(wallet, stage)
            except Exception as e:
                log.warning("Progress callback failed", stage=stage.value, error=str(e) or type(e).__name__)

        try:
            advance(WalletStage.PENDING)
            if not wallet:
                raise ValueError("Wallet address is empty")

            advance(WalletStage.FETCHING_HISTORY)
            references = await fetch_signature_history(
                client,
                wallet,
                cap,
                page_size=self.page_size,
                page_delay=self.page_delay,
            )
            if not references:
                advance(WalletStage.AGGREGATED)
                return WalletFlow.empty(wallet)

            advance(WalletStage.RESOLVING_DETAILS)
            resolved = await resolve_transfers(
                client,
                wallet,
                references,
                concurrency=self.detail_concurrency,
            )

            flow = aggregate_wallet_flow(wallet, references, [transfer for _, transfer in resolved])
            log.debug(
                "Wallet aggregated",
                references=len(references),
                transactions=flow.transaction_count,
            )
            advance(WalletStage.AGGREGATED)
            return flow
        except Exception as e:
            message = str(e) or type(e).__name__
            log.warning(
                "Wallet analysis failed",
                stage=stage.value,
                error=message,
            )
            advance(WalletStage.ERRORED)
            return WalletFlow.failed(wallet, message)


wallet_flow_pipeline = WalletFlowPipeline()
