from __future__ import annotations

import asyncio
from typing import Optional

from config import settings
from models.wallet_flow import TransactionReference
from utils.logger import get_logger

from .errors import RpcResponseError
from .rpc_client import SolanaRpcClient

logger = get_logger("history")


async def fetch_signature_history(
    client: SolanaRpcClient,
    wallet: str,
    limit: int,
    page_size: Optional[int] = None,
    page_delay: Optional[float] = None,
) -> list[TransactionReference]:
    """Fetch up to ``limit`` signatures for ``wallet``, newest first.

    Pages backward with ``before`` set to the last signature of the previous
    page. Stops once ``limit`` references are collected or a page comes back
    shorter than requested. Pages are strictly sequential since each cursor
    depends on the previous page. Any failure aborts the whole fetch.
    """
    page_size = page_size or settings.SIGNATURE_PAGE_SIZE
    page_delay = settings.PAGE_REQUEST_DELAY_SECONDS if page_delay is None else page_delay

    references: list[TransactionReference] = []
    before: Optional[str] = None
    pages = 0

    while len(references) < limit:
        if pages > 0 and page_delay > 0:
            await asyncio.sleep(page_delay)

        requested = min(page_size, limit - len(references))
        options: dict = {"limit": requested}
        if before:
            options["before"] = before

        result = await client.call("getSignaturesForAddress", [wallet, options])
        pages += 1

        if result is None:
            result = []
        if not isinstance(result, list):
            raise RpcResponseError("getSignaturesForAddress returned an unexpected result", result)

        try:
            page = [TransactionReference.from_rpc(entry) for entry in result]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise RpcResponseError(f"Malformed signature entry: {exc}", result) from exc

        references.extend(page)

        if len(page) < requested:
            break
        before = page[-1].signature

    logger.debug("Fetched signature history", wallet=wallet, references=len(references), pages=pages)
    return references[:limit]
