import asyncio
import sys
from pathlib import Path

import httpx
import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from conftest import RPC_URL
from config import settings
from services.price_feed import SolPriceFeed
from services.wallet_flow.orchestrator import WalletFlowPipeline, WalletStage
from utils.validation import BatchValidationError

PRICE_URL = "https://price.test/simple/price"
SOL = 1_000_000_000


def _price_feed(status=200, price=150.0):
    def handler(request):
        if status != 200:
            return httpx.Response(status)
        return httpx.Response(200, json={"solana": {"usd": price}})

    return SolPriceFeed(
        url=PRICE_URL,
        ttl_seconds=60,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.fixture
def make_pipeline(fake_rpc, fast_retry, unlimited_rate_limiter):
    def _make(price_feed=None, **kwargs):
        kwargs.setdefault("wallet_concurrency", 3)
        kwargs.setdefault("detail_concurrency", 5)
        return WalletFlowPipeline(
            endpoints=[RPC_URL],
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_rpc.handler)),
            price_feed=price_feed or _price_feed(),
            rate_limiter=unlimited_rate_limiter,
            retry_config=fast_retry,
            page_delay=0,
            **kwargs,
        )

    return _make


@pytest.mark.asyncio
async def test_results_follow_input_order(fake_rpc, make_pipeline, recorded_sleeps):
    # Larger histories finish later; order must still match the input.
    fake_rpc.add_wallet("WalletA", [SOL] * 30)
    fake_rpc.add_wallet("WalletB", [SOL])
    fake_rpc.add_wallet("WalletC", [-SOL] * 10)

    result = await make_pipeline().run(["WalletA", "WalletB", "WalletC"])

    assert [flow.address for flow in result.results] == ["WalletA", "WalletB", "WalletC"]
    assert [flow.transaction_count for flow in result.results] == [30, 1, 10]
    assert result.results[0].total_inflow_sol == pytest.approx(30.0)
    assert result.results[2].total_outflow_sol == pytest.approx(10.0)
    assert result.results[2].net_flow_sol == pytest.approx(-10.0)
    assert result.sol_price == 150.0


@pytest.mark.asyncio
async def test_one_erroring_wallet_is_isolated(fake_rpc, make_pipeline, recorded_sleeps):
    wallets = [f"Wallet{i}" for i in range(1, 6)]
    for wallet in wallets:
        fake_rpc.add_wallet(wallet, [SOL, -SOL // 2])
    fake_rpc.broken_wallets.add("Wallet3")

    result = await make_pipeline().run(wallets)

    assert len(result.results) == 5
    assert [flow.address for flow in result.results] == wallets
    errored = [flow for flow in result.results if flow.error]
    assert [flow.address for flow in errored] == ["Wallet3"]
    assert errored[0].error.startswith("RPC Error:")
    assert errored[0].transaction_count == 0
    assert errored[0].net_flow_sol == 0
    assert result.aggregate.errors == 1
    assert result.aggregate.total_wallets == 5
    assert result.aggregate.total_transactions == 8


@pytest.mark.asyncio
async def test_zero_history_wallet_is_not_an_error(fake_rpc, make_pipeline, recorded_sleeps):
    result = await make_pipeline().run(["EmptyWallet"])

    flow = result.results[0]
    assert flow.error is None
    assert flow.transaction_count == 0
    assert flow.total_inflow_sol == 0
    assert flow.first_tx_time is None
    assert fake_rpc.calls("getTransaction") == []


@pytest.mark.asyncio
async def test_cap_bounds_resolved_references(fake_rpc, make_pipeline, recorded_sleeps):
    fake_rpc.add_wallet("BusyWallet", [1_000] * 150)

    result = await make_pipeline().run(["BusyWallet"], max_transactions=100)

    assert len(fake_rpc.calls("getTransaction")) == 100
    assert result.results[0].transaction_count == 100
    assert result.results[0].total_inflow_lamports == 100_000


@pytest.mark.asyncio
async def test_reverted_transactions_are_skipped(fake_rpc, make_pipeline, recorded_sleeps):
    fake_rpc.add_wallet("Wallet1", [SOL, SOL, SOL], failed={0})

    result = await make_pipeline().run(["Wallet1"])

    assert len(fake_rpc.calls("getTransaction")) == 2
    assert result.results[0].transaction_count == 2
    # Time window still spans the reverted entry.
    assert result.results[0].last_tx_time == 1_700_000_000


@pytest.mark.asyncio
async def test_aggregate_matches_per_wallet_sums(fake_rpc, make_pipeline, recorded_sleeps):
    fake_rpc.add_wallet("Wallet1", [3 * SOL, -SOL])
    fake_rpc.add_wallet("Wallet2", [-2 * SOL])
    fake_rpc.broken_wallets.add("Wallet3")

    result = await make_pipeline().run(["Wallet1", "Wallet2", "Wallet3"])
    flows = result.results
    aggregate = result.aggregate

    assert aggregate.total_wallets == len(flows)
    assert aggregate.total_inflow_sol == pytest.approx(sum(f.total_inflow_sol for f in flows))
    assert aggregate.total_outflow_sol == pytest.approx(sum(f.total_outflow_sol for f in flows))
    assert aggregate.net_flow_sol == pytest.approx(sum(f.net_flow_sol for f in flows))
    assert aggregate.total_transactions == sum(f.transaction_count for f in flows)
    for flow in flows:
        assert flow.net_flow_sol == pytest.approx(flow.total_inflow_sol - flow.total_outflow_sol)


@pytest.mark.asyncio
async def test_rerun_is_idempotent(fake_rpc, make_pipeline, recorded_sleeps):
    fake_rpc.add_wallet("Wallet1", [SOL, -SOL // 3, 7])
    fake_rpc.add_wallet("Wallet2", [-5, 11])
    pipeline = make_pipeline()

    first = await pipeline.run(["Wallet1", "Wallet2"])
    second = await pipeline.run(["Wallet1", "Wallet2"])

    assert first.results == second.results
    assert first.aggregate == second.aggregate


@pytest.mark.asyncio
async def test_price_failure_degrades_to_zero(fake_rpc, make_pipeline, recorded_sleeps):
    fake_rpc.add_wallet("Wallet1", [SOL])

    result = await make_pipeline(price_feed=_price_feed(status=503)).run(["Wallet1"])

    assert result.sol_price == 0.0
    assert result.results[0].error is None
    assert result.usd_value(1.0) is None


@pytest.mark.asyncio
async def test_blank_address_errors_without_network(fake_rpc, make_pipeline, recorded_sleeps):
    fake_rpc.add_wallet("Wallet1", [SOL])

    result = await make_pipeline().run(["Wallet1", "   "])

    assert result.results[1].address == ""
    assert result.results[1].error == "Wallet address is empty"
    wallets_queried = [c["params"][0] for c in fake_rpc.calls("getSignaturesForAddress")]
    assert wallets_queried == ["Wallet1"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "addresses,max_transactions",
    [
        ([], None),
        (None, None),
        ("Wallet1", None),
        (["Wallet1"], 0),
        (["Wallet1"], settings.MAX_TRANSACTIONS_LIMIT + 1),
    ],
)
async def test_invalid_batches_fail_before_network(
    fake_rpc, make_pipeline, recorded_sleeps, addresses, max_transactions
):
    with pytest.raises(BatchValidationError):
        await make_pipeline().run(addresses, max_transactions=max_transactions)
    assert fake_rpc.requests == []


@pytest.mark.asyncio
async def test_oversized_batch_is_rejected(fake_rpc, make_pipeline, recorded_sleeps):
    wallets = [f"Wallet{i}" for i in range(settings.MAX_WALLETS_PER_BATCH + 1)]
    with pytest.raises(BatchValidationError):
        await make_pipeline().run(wallets)
    assert fake_rpc.requests == []


@pytest.mark.asyncio
async def test_caller_rpc_url_replaces_public_pool(fake_rpc, make_pipeline, recorded_sleeps):
    fake_rpc.add_wallet("Wallet1", [SOL])

    await make_pipeline().run(["Wallet1"], rpc_url="https://dedicated.rpc.test/?api-key=abc")

    hosts = {httpx.URL(url).host for url, _ in fake_rpc.requests}
    assert hosts == {"dedicated.rpc.test"}


@pytest.mark.asyncio
async def test_progress_reports_stage_transitions(fake_rpc, make_pipeline, recorded_sleeps):
    fake_rpc.add_wallet("Wallet1", [SOL])
    fake_rpc.broken_wallets.add("Wallet2")
    seen = {}

    def on_progress(wallet, stage):
        seen.setdefault(wallet, []).append(stage)

    await make_pipeline().run(["Wallet1", "Wallet2", "Empty"], on_progress=on_progress)

    assert seen["Wallet1"] == [
        WalletStage.PENDING,
        WalletStage.FETCHING_HISTORY,
        WalletStage.RESOLVING_DETAILS,
        WalletStage.AGGREGATED,
    ]
    assert seen["Wallet2"] == [
        WalletStage.PENDING,
        WalletStage.FETCHING_HISTORY,
        WalletStage.ERRORED,
    ]
    assert seen["Empty"] == [
        WalletStage.PENDING,
        WalletStage.FETCHING_HISTORY,
        WalletStage.AGGREGATED,
    ]


@pytest.mark.asyncio
async def test_pipeline_closes_owned_client_on_exit(fake_rpc, recorded_sleeps):
    async with WalletFlowPipeline(endpoints=[RPC_URL], price_feed=_price_feed()) as pipeline:
        client = await pipeline._get_client()
        assert not client.is_closed
    assert client.is_closed


class StalledPriceFeed:
    """Price source that never answers."""

    def __init__(self, cached_price=None):
        self.cached_price = cached_price
        self.cancelled = False

    async def get_price(self):
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


@pytest.mark.asyncio
async def test_slow_price_lookup_does_not_hold_the_batch(fake_rpc, make_pipeline, recorded_sleeps):
    fake_rpc.add_wallet("Wallet1", [SOL])
    feed = StalledPriceFeed()

    result = await make_pipeline(price_feed=feed, price_wait=0.05).run(["Wallet1"])

    assert result.sol_price == 0.0
    assert result.results[0].transaction_count == 1
    assert feed.cancelled


@pytest.mark.asyncio
async def test_slow_price_lookup_falls_back_to_cached_price(fake_rpc, make_pipeline, recorded_sleeps):
    result = await make_pipeline(price_feed=StalledPriceFeed(cached_price=120.0), price_wait=0.05).run(
        ["Wallet1"]
    )

    assert result.sol_price == 120.0


@pytest.mark.asyncio
async def test_wallet_fan_out_is_capped(fake_rpc, fast_retry, unlimited_rate_limiter):
    wallets = [f"Wallet{i}" for i in range(6)]
    for wallet in wallets:
        fake_rpc.add_wallet(wallet, [SOL, SOL])

    async def slow_handler(request):
        await asyncio.sleep(0.01)
        return fake_rpc.handler(request)

    in_flight = {"now": 0, "peak": 0}

    def on_progress(wallet, stage):
        if stage is WalletStage.PENDING:
            in_flight["now"] += 1
            in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
        elif stage in (WalletStage.AGGREGATED, WalletStage.ERRORED):
            in_flight["now"] -= 1

    pipeline = WalletFlowPipeline(
        endpoints=[RPC_URL],
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(slow_handler)),
        price_feed=_price_feed(),
        rate_limiter=unlimited_rate_limiter,
        retry_config=fast_retry,
        wallet_concurrency=2,
        page_delay=0,
    )
    result = await pipeline.run(wallets, on_progress=on_progress)

    assert [flow.transaction_count for flow in result.results] == [2] * 6
    assert in_flight["peak"] == 2
    assert in_flight["now"] == 0


@pytest.mark.asyncio
async def test_failing_progress_callback_does_not_fail_the_batch(fake_rpc, make_pipeline, recorded_sleeps):
    fake_rpc.add_wallet("Wallet1", [SOL])
    fake_rpc.broken_wallets.add("Wallet2")

    def on_progress(wallet, stage):
        raise RuntimeError("listener went away")

    result = await make_pipeline().run(["Wallet1", "Wallet2"], on_progress=on_progress)

    assert result.results[0].error is None
    assert result.results[0].transaction_count == 1
    assert result.results[1].error is not None
