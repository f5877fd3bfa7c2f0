from dataclasses import dataclass
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

LAMPORTS_PER_SOL = 1_000_000_000


def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


# ==================== Pipeline values ====================


@dataclass(frozen=True)
class TransactionReference:
    """One entry of a wallet's signature history, newest first as returned by the RPC."""

    signature: str
    block_time: Optional[int] = None  # unix seconds, None when the node has no estimate
    failed: bool = False  # provider recorded the transaction as errored/reverted

    @classmethod
    def from_rpc(cls, entry: dict) -> "TransactionReference":
        block_time = entry.get("blockTime")
        return cls(
            signature=entry["signature"],
            block_time=int(block_time) if block_time is not None else None,
            failed=entry.get("err") is not None,
        )


@dataclass(frozen=True)
class ResolvedTransfer:
    """Native balance change of one wallet in one transaction, in lamports."""

    timestamp: Optional[int]
    delta_lamports: int


# ==================== Outputs ====================


class WalletFlow(BaseModel):
    """Native SOL flow summary for one wallet.

    A flow carrying ``error`` always has zeroed numeric fields and null
    timestamps; partial numbers are never reported next to an error.
    """

    model_config = ConfigDict(frozen=True)

    address: str
    total_inflow_sol: float = 0.0
    total_outflow_sol: float = 0.0
    net_flow_sol: float = 0.0
    total_inflow_lamports: int = 0
    total_outflow_lamports: int = 0
    transaction_count: int = 0
    first_tx_time: Optional[int] = None
    last_tx_time: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def empty(cls, address: str) -> "WalletFlow":
        """Flow for a wallet with no history (distinct from a failed fetch)."""
        return cls(address=address)

    @classmethod
    def failed(cls, address: str, message: str) -> "WalletFlow":
        return cls(address=address, error=message or "Unknown error")

    @property
    def has_error(self) -> bool:
        return self.error is not None


class AggregateTotals(BaseModel):
    """Cross-wallet sums. Errored wallets contribute zeros but are counted."""

    model_config = ConfigDict(frozen=True)

    total_wallets: int = 0
    total_inflow_sol: float = 0.0
    total_outflow_sol: float = 0.0
    net_flow_sol: float = 0.0
    total_transactions: int = 0
    errors: int = 0

    @classmethod
    def from_flows(cls, flows: Sequence[WalletFlow]) -> "AggregateTotals":
        return cls(
            total_wallets=len(flows),
            total_inflow_sol=sum(f.total_inflow_sol for f in flows),
            total_outflow_sol=sum(f.total_outflow_sol for f in flows),
            net_flow_sol=sum(f.net_flow_sol for f in flows),
            total_transactions=sum(f.transaction_count for f in flows),
            errors=sum(1 for f in flows if f.has_error),
        )


class BatchResult(BaseModel):
    """Result of one batch: one flow per requested wallet, in request order."""

    model_config = ConfigDict(frozen=True)

    results: list[WalletFlow] = Field(default_factory=list)
    aggregate: AggregateTotals = Field(default_factory=AggregateTotals)
    sol_price: float = 0.0  # USD per SOL; 0.0 when the price source was unavailable

    def usd_value(self, amount_sol: float) -> Optional[float]:
        if self.sol_price <= 0:
            return None
        return amount_sol * self.sol_price
