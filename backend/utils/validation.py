from typing import Optional, Sequence
from urllib.parse import urlsplit


class BatchValidationError(ValueError):
    """Request rejected before any network activity."""


def validate_wallet_batch(addresses: Sequence[str], max_wallets: int) -> list[str]:
    """Validate a batch of wallet addresses, preserving order and duplicates.

    Addresses are opaque; only shape is checked here. Blank entries survive
    so that they come back as per-wallet errors in input order.
    """
    if addresses is None or isinstance(addresses, (str, bytes)):
        raise BatchValidationError("Please provide an array of wallet addresses")

    wallets = list(addresses)
    if not wallets:
        raise BatchValidationError("Please provide an array of wallet addresses")

    if len(wallets) > max_wallets:
        raise BatchValidationError(
            f"Maximum {max_wallets} wallets per request to avoid timeout"
        )

    for index, wallet in enumerate(wallets):
        if not isinstance(wallet, str):
            raise BatchValidationError(f"Wallet address at position {index} must be a string")

    return [wallet.strip() for wallet in wallets]


def validate_transaction_cap(value: Optional[int], default: int, max_limit: int) -> int:
    """Validate the per-wallet transaction cap (1..max_limit)."""
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise BatchValidationError("max_transactions must be an integer")
    if value < 1 or value > max_limit:
        raise BatchValidationError(f"max_transactions must be between 1 and {max_limit}")
    return value


def validate_rpc_url(url: Optional[str]) -> Optional[str]:
    """Validate a caller-supplied RPC endpoint override (None means use the pool)."""
    if url is None:
        return None
    url = url.strip()
    if not url:
        return None
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise BatchValidationError("rpc_url must be an http(s) URL")
    return url

