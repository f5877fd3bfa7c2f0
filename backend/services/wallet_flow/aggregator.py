from typing import Optional, Sequence

from models.wallet_flow import (
    ResolvedTransfer,
    TransactionReference,
    WalletFlow,
    lamports_to_sol,
)


def aggregate_wallet_flow(
    address: str,
    references: Sequence[TransactionReference],
    resolved: Sequence[Optional[ResolvedTransfer]],
) -> WalletFlow:
    """Fold resolved balance changes into one WalletFlow.

    Pure and deterministic: the same inputs always give the same flow.
    Unresolved entries (None) are not counted. The time window spans the
    whole reference sequence, whether or not each entry resolved.
    """
    inflow = 0
    outflow = 0
    count = 0

    for transfer in resolved:
        if transfer is None:
            continue
        count += 1
        if transfer.delta_lamports > 0:
            inflow += transfer.delta_lamports
        elif transfer.delta_lamports < 0:
            outflow += -transfer.delta_lamports

    times = [ref.block_time for ref in references if ref.block_time is not None]

    inflow_sol = lamports_to_sol(inflow)
    outflow_sol = lamports_to_sol(outflow)

    return WalletFlow(
        address=address,
        total_inflow_sol=inflow_sol,
        total_outflow_sol=outflow_sol,
        net_flow_sol=inflow_sol - outflow_sol,
        total_inflow_lamports=inflow,
        total_outflow_lamports=outflow,
        transaction_count=count,
        first_tx_time=min(times) if times else None,
        last_tx_time=max(times) if times else None,
    )
