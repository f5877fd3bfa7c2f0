"""Resolve signature references into native balance changes for one wallet.

Providers return transaction details in different shapes. All of them are
folded into ``ResolvedTransfer`` by ``normalize_transaction`` so callers
never branch on shape:

- raw RPC ``getTransaction`` records with ``meta.preBalances`` /
  ``meta.postBalances`` aligned to the message account keys,
- enhanced records with a pre-parsed ``nativeTransfers`` list,
- enhanced records with per-account ``accountData[].nativeBalanceChange``.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence

from config import settings
from models.wallet_flow import ResolvedTransfer, TransactionReference
from utils.logger import get_logger

from .rpc_client import SolanaRpcClient

logger = get_logger("resolver")

TRANSACTION_OPTIONS = {
    "encoding": "jsonParsed",
    "maxSupportedTransactionVersion": 0,
}


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _account_key(key: Any) -> Optional[str]:
    if isinstance(key, str):
        return key
    if isinstance(key, dict):
        pubkey = key.get("pubkey")
        return pubkey if isinstance(pubkey, str) else None
    return None


def _list_at(container: Any, key: str) -> list:
    value = container.get(key) if isinstance(container, dict) else None
    return value if isinstance(value, list) else []


def _account_keys(payload: dict) -> list[Optional[str]]:
    transaction = payload.get("transaction")
    message = transaction.get("message") if isinstance(transaction, dict) else None
    keys = [_account_key(k) for k in _list_at(message, "accountKeys")]

    # Versioned transactions append lookup-table accounts after the static
    # keys, writable first, matching the balance array order.
    loaded = payload["meta"].get("loadedAddresses")
    keys.extend(_account_key(k) for k in _list_at(loaded, "writable"))
    keys.extend(_account_key(k) for k in _list_at(loaded, "readonly"))
    return keys


def _delta_from_balances(payload: dict, wallet: str) -> Optional[int]:
    meta = payload.get("meta")
    if not isinstance(meta, dict):
        return None
    pre = meta.get("preBalances")
    post = meta.get("postBalances")
    if not isinstance(pre, list) or not isinstance(post, list):
        return None

    keys = _account_keys(payload)
    try:
        index = keys.index(wallet)
    except ValueError:
        return 0
    if index >= len(pre) or index >= len(post):
        return 0

    before = _as_int(pre[index])
    after = _as_int(post[index])
    if before is None or after is None:
        return 0
    return after - before


def _delta_from_native_transfers(transfers: list, wallet: str) -> int:
    delta = 0
    for transfer in transfers:
        if not isinstance(transfer, dict):
            continue
        amount = _as_int(transfer.get("amount")) or 0
        if transfer.get("toUserAccount") == wallet:
            delta += amount
        if transfer.get("fromUserAccount") == wallet:
            delta -= amount
    return delta


def _delta_from_account_data(accounts: list, wallet: str) -> int:
    delta = 0
    for account in accounts:
        if isinstance(account, dict) and account.get("account") == wallet:
            delta += _as_int(account.get("nativeBalanceChange")) or 0
    return delta


def normalize_transaction(
    payload: Any,
    wallet: str,
    fallback_time: Optional[int] = None,
) -> Optional[ResolvedTransfer]:
    """Turn one transaction detail record into the wallet's balance change.

    Returns None when the record carries no usable balance information.
    A wallet that does not appear in a usable record gets a zero delta.
    """
    if not isinstance(payload, dict):
        return None

    timestamp = _as_int(payload.get("blockTime"))
    if timestamp is None:
        timestamp = _as_int(payload.get("timestamp"))
    if timestamp is None:
        timestamp = fallback_time

    if isinstance(payload.get("meta"), dict):
        delta = _delta_from_balances(payload, wallet)
        if delta is not None:
            return ResolvedTransfer(timestamp=timestamp, delta_lamports=delta)

    if isinstance(payload.get("nativeTransfers"), list):
        delta = _delta_from_native_transfers(payload["nativeTransfers"], wallet)
        return ResolvedTransfer(timestamp=timestamp, delta_lamports=delta)

    if isinstance(payload.get("accountData"), list):
        delta = _delta_from_account_data(payload["accountData"], wallet)
        return ResolvedTransfer(timestamp=timestamp, delta_lamports=delta)

    return None


async def resolve_transfers(
    client: SolanaRpcClient,
    wallet: str,
    references: Sequence[TransactionReference],
    concurrency: Optional[int] = None,
) -> list[tuple[TransactionReference, Optional[ResolvedTransfer]]]:
    """Resolve every reference with at most ``concurrency`` detail calls in flight.

    Failed (reverted) references are skipped without a network call. A
    reference whose lookup fails for good contributes None instead of
    failing the batch. Output order matches ``references``.
    """
    concurrency = concurrency or settings.DETAIL_CONCURRENCY
    semaphore = asyncio.Semaphore(concurrency)

    async def resolve_one(reference: TransactionReference) -> Optional[ResolvedTransfer]:
        if reference.failed:
            return None
        async with semaphore:
            try:
                payload = await client.call(
                    "getTransaction",
                    [reference.signature, dict(TRANSACTION_OPTIONS)],
                )
            except Exception as e:
                logger.warning(
                    "Transaction lookup failed",
                    wallet=wallet,
                    signature=reference.signature,
                    error=str(e) or type(e).__name__,
                )
                return None

        if payload is None:
            return None
        return normalize_transaction(payload, wallet, fallback_time=reference.block_time)

    resolved = await asyncio.gather(*[resolve_one(ref) for ref in references])
    return list(zip(references, resolved))
