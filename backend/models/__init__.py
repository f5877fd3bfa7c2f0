from .wallet_flow import (
    LAMPORTS_PER_SOL,
    AggregateTotals,
    BatchResult,
    ResolvedTransfer,
    TransactionReference,
    WalletFlow,
    lamports_to_sol,
)

__all__ = [
    "LAMPORTS_PER_SOL",
    "AggregateTotals",
    "BatchResult",
    "ResolvedTransfer",
    "TransactionReference",
    "WalletFlow",
    "lamports_to_sol",
]
