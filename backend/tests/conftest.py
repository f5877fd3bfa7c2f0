"""Shared fixtures for wallet flow tests."""

import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import asyncio
import json

import httpx
import pytest

from utils.rate_limiter import RateLimiter, RateLimitConfig
from utils.retry import RetryConfig

RPC_URL = "https://rpc.test"
LAMPORTS = 1_000_000_000


# ---------------------------------------------------------------------------
# Raw RPC payload builders (mimicking Solana JSON-RPC responses)
# ---------------------------------------------------------------------------


def signature_entry(signature, block_time=None, err=None):
    return {
        "signature": signature,
        "slot": 250_000_000,
        "err": err,
        "memo": None,
        "blockTime": block_time,
        "confirmationStatus": "finalized",
    }


def balance_transaction(wallet, delta, block_time=None, counterparty="Counterparty111"):
    """getTransaction result where ``wallet`` changes by ``delta`` lamports."""
    pre_wallet = 50 * LAMPORTS
    pre_other = 50 * LAMPORTS
    return {
        "slot": 250_000_000,
        "blockTime": block_time,
        "meta": {
            "err": None,
            "fee": 5000,
            "preBalances": [pre_other, pre_wallet],
            "postBalances": [pre_other - delta, pre_wallet + delta],
            "loadedAddresses": {"writable": [], "readonly": []},
        },
        "transaction": {
            "message": {
                "accountKeys": [
                    {"pubkey": counterparty, "signer": True, "writable": True},
                    {"pubkey": wallet, "signer": False, "writable": True},
                ],
            },
            "signatures": ["sig"],
        },
    }


class FakeSolanaRpc:
    """In-memory Solana JSON-RPC node served through httpx.MockTransport."""

    def __init__(self):
        self.histories: dict[str, list[dict]] = {}
        self.transactions: dict[str, dict] = {}
        self.broken_wallets: set[str] = set()
        self.requests: list[tuple[str, dict]] = []

    def add_wallet(self, wallet, deltas, start_time=1_700_000_000, failed=()):
        """Register a newest-first history with one balance change per entry."""
        entries = []
        for i, delta in enumerate(deltas):
            signature = f"{wallet}-sig-{i}"
            block_time = start_time - i * 60
            err = {"InstructionError": [0, "Custom"]} if i in failed else None
            entries.append(signature_entry(signature, block_time, err))
            self.transactions[signature] = balance_transaction(wallet, delta, block_time)
        self.histories[wallet] = entries
        return entries

    def calls(self, method):
        return [body for _, body in self.requests if body["method"] == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append((str(request.url), body))
        method = body["method"]
        params = body.get("params") or []

        if method == "getSignaturesForAddress":
            wallet, options = params[0], params[1] if len(params) > 1 else {}
            if wallet in self.broken_wallets:
                return self._error(body, -32602, "Invalid param: WrongSize")
            entries = self.histories.get(wallet, [])
            start = 0
            before = options.get("before")
            if before:
                start = next(
                    (i + 1 for i, e in enumerate(entries) if e["signature"] == before),
                    len(entries),
                )
            limit = options.get("limit", 1000)
            return self._result(body, entries[start:start + limit])

        if method == "getTransaction":
            return self._result(body, self.transactions.get(params[0]))

        return self._error(body, -32601, "Method not found")

    @staticmethod
    def _result(body, result):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    @staticmethod
    def _error(body, code, message):
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": code, "message": message}},
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_rpc():
    return FakeSolanaRpc()


@pytest.fixture
def unlimited_rate_limiter():
    return RateLimiter(default=RateLimitConfig(requests_per_window=100_000, window_seconds=1))


@pytest.fixture
def fast_retry():
    return RetryConfig(max_retries=5, base_delay=0.5, max_delay=30.0)


@pytest.fixture
def recorded_sleeps(monkeypatch):
    """Replace asyncio.sleep with a recorder so backoff schedules run instantly."""
    delays: list[float] = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return delays
