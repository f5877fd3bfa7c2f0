"""
Wallet Flow API Routes

Batch analysis of native SOL inflow/outflow for Solana wallets.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from config import settings
from models.wallet_flow import BatchResult
from services.wallet_flow import wallet_flow_pipeline
from utils.logger import api_logger as logger
from utils.validation import BatchValidationError

router = APIRouter(tags=["Wallet Flow"])


# ==================== REQUEST/RESPONSE MODELS ====================


class AnalyzeRequest(BaseModel):
    """Batch of wallets to analyze"""

    wallets: list[str] = Field(..., description="Wallet addresses, results come back in this order")
    rpc_url: Optional[str] = Field(
        default=None, description="Dedicated RPC endpoint to use instead of the public pool"
    )
    max_transactions: Optional[int] = Field(
        default=None, description="Most recent transactions to inspect per wallet"
    )


class LimitsResponse(BaseModel):
    max_wallets_per_batch: int
    default_max_transactions: int
    max_transactions_limit: int


# ==================== ENDPOINTS ====================


@router.post("/analyze", response_model=BatchResult)
async def analyze_wallets(request: AnalyzeRequest):
    """Analyze native SOL flow for a batch of wallets.

    Per-wallet failures come back inside ``results`` with an ``error``
    field; only an unusable request fails the whole call.
    """
    try:
        return await wallet_flow_pipeline.run(
            request.wallets,
            max_transactions=request.max_transactions,
            rpc_url=request.rpc_url,
        )
    except BatchValidationError as e:
        logger.warning("Rejected analyze request", error=str(e), wallets=len(request.wallets))
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/config/limits", response_model=LimitsResponse)
async def get_limits():
    """Batch bounds so clients can chunk large wallet lists."""
    return LimitsResponse(
        max_wallets_per_batch=settings.MAX_WALLETS_PER_BATCH,
        default_max_transactions=settings.DEFAULT_MAX_TRANSACTIONS,
        max_transactions_limit=settings.MAX_TRANSACTIONS_LIMIT,
    )


@router.get("/rpc/status")
async def get_rpc_status():
    """Client-side rate limit buckets per RPC host."""
    return {
        "primary": settings.SOLANA_RPC_URL,
        "fallbacks": settings.RPC_FALLBACK_URLS,
        "rate_limits": wallet_flow_pipeline.rate_limiter.get_status(),
    }
