"""Resilient batch fetch of native SOL flow for Solana wallets."""

from .aggregator import aggregate_wallet_flow
from .endpoint_pool import EndpointPool, EndpointRotation
from .errors import RpcError, RpcExhaustedError, RpcResponseError, RpcTransportError
from .history import fetch_signature_history
from .orchestrator import WalletFlowPipeline, WalletStage, wallet_flow_pipeline
from .resolver import normalize_transaction, resolve_transfers
from .rpc_client import RATE_LIMIT_EXHAUSTED_MESSAGE, SolanaRpcClient

__all__ = [
    "aggregate_wallet_flow",
    "EndpointPool",
    "EndpointRotation",
    "RpcError",
    "RpcExhaustedError",
    "RpcResponseError",
    "RpcTransportError",
    "fetch_signature_history",
    "WalletFlowPipeline",
    "WalletStage",
    "wallet_flow_pipeline",
    "normalize_transaction",
    "resolve_transfers",
    "RATE_LIMIT_EXHAUSTED_MESSAGE",
    "SolanaRpcClient",
]
