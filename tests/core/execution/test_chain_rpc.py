"""
Tests for the ChainRpcClient

Endpoint failover, bounded retries and fee parameter derivation.
"""

import json

import httpx
import pytest

from bridgeflow.core.chains.registry import ChainInfo, ChainRegistry
from bridgeflow.core.execution.rpc import DEFAULT_PRIORITY_FEE_WEI, ChainRpcClient
from bridgeflow.core.recovery.errors import RpcError, RpcTimeout
from bridgeflow.core.recovery.strategies import ExponentialBackoffStrategy

from conftest import BRIDGE_CONTRACT, SENDER, USDC_POLYGON


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def registry() -> ChainRegistry:
    return ChainRegistry([
        ChainInfo(
            chain_id=137,
            name="Polygon",
            native_symbol="POL",
            rpc_urls=("https://rpc-a.test", "https://rpc-b.test"),
        ),
    ])


def make_rpc(handler, registry, settings, attempts: int = 2) -> ChainRpcClient:
    return ChainRpcClient(
        registry,
        config=settings,
        transport=httpx.MockTransport(handler),
        retry=ExponentialBackoffStrategy(max_attempts=attempts, initial_delay=0, sleep=no_sleep),
    )


def result(value):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": value})


# =============================================================================
# Transport
# =============================================================================

class TestCall:
    """Tests for endpoint failover and error mapping."""

    @pytest.mark.asyncio
    async def test_fails_over_to_next_endpoint(self, registry, settings):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            if request.url.host == "rpc-a.test":
                return httpx.Response(502, text="bad gateway")
            return result("0x10")

        rpc = make_rpc(handler, registry, settings)
        assert await rpc.block_number(137) == 16
        assert hosts == ["rpc-a.test", "rpc-b.test"]
        await rpc.close()

    @pytest.mark.asyncio
    async def test_exhausted_endpoints_retry_then_time_out(self, registry, settings):
        calls = []

        def handler(request):
            calls.append(request.url.host)
            raise httpx.ReadTimeout("timed out", request=request)

        rpc = make_rpc(handler, registry, settings, attempts=3)
        with pytest.raises(RpcTimeout) as exc_info:
            await rpc.block_number(137)

        assert len(calls) == 6
        assert exc_info.value.context.chain_id == 137
        await rpc.close()

    @pytest.mark.asyncio
    async def test_json_rpc_error_is_not_retried(self, registry, settings):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={
                "jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "execution reverted"},
            })

        rpc = make_rpc(handler, registry, settings, attempts=3)
        with pytest.raises(RpcError) as exc_info:
            await rpc.call(137, "eth_estimateGas", [{}])

        assert exc_info.value.code == -32000
        assert len(calls) == 1
        await rpc.close()

    @pytest.mark.asyncio
    async def test_unconfigured_chain(self, registry, settings):
        rpc = make_rpc(lambda request: result("0x1"), registry, settings)
        with pytest.raises(RpcError):
            await rpc.block_number(10)
        await rpc.close()

    @pytest.mark.asyncio
    async def test_receipt_not_yet_included(self, registry, settings):
        rpc = make_rpc(lambda request: result(None), registry, settings)
        assert await rpc.get_transaction_receipt(137, "0xabc") is None
        await rpc.close()


# =============================================================================
# Reads
# =============================================================================

class TestReads:
    """Balances and allowances."""

    @pytest.mark.asyncio
    async def test_native_balance_uses_get_balance(self, registry, settings):
        methods = []

        def handler(request):
            methods.append(json.loads(request.content)["method"])
            return result(hex(5 * 10**18))

        rpc = make_rpc(handler, registry, settings)
        balance = await rpc.token_balance(137, "0x0000000000000000000000000000000000000000", SENDER)

        assert balance == 5 * 10**18
        assert methods == ["eth_getBalance"]
        await rpc.close()

    @pytest.mark.asyncio
    async def test_erc20_balance_uses_balance_of(self, registry, settings):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return result("0x" + format(1_000_000, "064x"))

        rpc = make_rpc(handler, registry, settings)
        balance = await rpc.token_balance(137, USDC_POLYGON, SENDER)

        assert balance == 1_000_000
        call = bodies[0]["params"][0]
        assert bodies[0]["method"] == "eth_call"
        assert call["to"] == USDC_POLYGON
        assert call["data"].startswith("0x70a08231")
        await rpc.close()


# =============================================================================
# Fees
# =============================================================================

class TestFeeParams:
    """Fresh gas parameters per submission."""

    @pytest.mark.asyncio
    async def test_eip1559_fees(self, registry, settings):
        def handler(request):
            method = json.loads(request.content)["method"]
            if method == "eth_estimateGas":
                return result(hex(100_000))
            if method == "eth_feeHistory":
                return result({"baseFeePerGas": [hex(30 * 10**9), hex(40 * 10**9)], "reward": [[hex(2 * 10**9)]]})
            raise AssertionError(f"unexpected {method}")

        rpc = make_rpc(handler, registry, settings)
        fees = await rpc.fee_params(137, from_address=SENDER, to_address=BRIDGE_CONTRACT, data="0xdeadbeef")

        assert fees.gas_limit == 120_000
        assert fees.max_priority_fee_per_gas == 2 * 10**9
        assert fees.max_fee_per_gas == 2 * 40 * 10**9 + 2 * 10**9
        await rpc.close()

    @pytest.mark.asyncio
    async def test_missing_reward_uses_default_priority(self, registry, settings):
        def handler(request):
            method = json.loads(request.content)["method"]
            if method == "eth_estimateGas":
                return result(hex(50_000))
            return result({"baseFeePerGas": [hex(10**9)], "reward": []})

        rpc = make_rpc(handler, registry, settings)
        fees = await rpc.fee_params(137, from_address=SENDER, to_address=BRIDGE_CONTRACT, data="0x")

        assert fees.max_priority_fee_per_gas == DEFAULT_PRIORITY_FEE_WEI
        await rpc.close()

    @pytest.mark.asyncio
    async def test_falls_back_to_gas_price(self, registry, settings):
        def handler(request):
            method = json.loads(request.content)["method"]
            if method == "eth_estimateGas":
                return result(hex(21_000))
            if method == "eth_feeHistory":
                return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "method not found"}})
            return result(hex(50 * 10**9))

        rpc = make_rpc(handler, registry, settings)
        fees = await rpc.fee_params(137, from_address=SENDER, to_address=BRIDGE_CONTRACT, data="0x", value=10)

        assert fees.gas_limit == 25_200
        assert fees.max_fee_per_gas == fees.max_priority_fee_per_gas == 50 * 10**9
        await rpc.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("history", [None, {}, {"baseFeePerGas": []}, {"baseFeePerGas": ["0x1"], "reward": [["oops"]]}])
    async def test_malformed_fee_history_falls_back_to_gas_price(self, registry, settings, history):
        def handler(request):
            method = json.loads(request.content)["method"]
            if method == "eth_estimateGas":
                return result(hex(21_000))
            if method == "eth_feeHistory":
                return result(history)
            return result(hex(50 * 10**9))

        rpc = make_rpc(handler, registry, settings)
        fees = await rpc.fee_params(137, from_address=SENDER, to_address=BRIDGE_CONTRACT, data="0x")

        assert fees.max_fee_per_gas == fees.max_priority_fee_per_gas == 50 * 10**9
        await rpc.close()
