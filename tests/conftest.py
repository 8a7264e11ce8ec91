"""Shared builders and fakes for the transfer pipeline tests."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from bridgeflow.config import Settings
from bridgeflow.core.chains.abi import encode_approve
from bridgeflow.core.execution.models import GasParams
from bridgeflow.core.recovery.errors import RpcTimeout
from bridgeflow.core.routing.models import Quote, Step, StepKind, TransferRequest

USDC_POLYGON = "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"
USDC_OPTIMISM = "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85"
SENDER = "0x" + "ab" * 20
SPENDER = "0x" + "cd" * 20
BRIDGE_CONTRACT = "0x" + "ef" * 20
ROUTER_CONTRACT = "0x" + "12" * 20

T0 = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Time
# =============================================================================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.advance(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Chain / signer fakes
# =============================================================================

class FakeRpc:
    """In-memory stand-in for ChainRpcClient.

    Transactions are mined (status 1, well past the confirmation depth)
    unless ``receipts`` says otherwise; ``None`` there means not included.
    ``outage`` makes every receipt lookup time out.
    """

    def __init__(self, *, balance: int = 10**12, allowance: int = 0, head: int = 200):
        self.balance = balance
        self.allowance_value = allowance
        self.head = head
        self.receipts: Dict[str, Optional[Dict[str, Any]]] = {}
        self.mine_by_default = True
        self.fee_calls: List[Dict[str, Any]] = []
        self.receipt_calls: List[str] = []
        self.outage = False

    async def token_balance(self, chain_id: int, token_address: str, owner: str) -> int:
        return self.balance

    async def allowance(self, chain_id: int, token_address: str, owner: str, spender: str) -> int:
        return self.allowance_value

    async def fee_params(self, chain_id: int, *, from_address: str, to_address: str, data: str, value: int = 0) -> GasParams:
        self.fee_calls.append({"chain_id": chain_id, "to": to_address, "data": data})
        return GasParams(gas_limit=100_000, max_fee_per_gas=30_000_000_000, max_priority_fee_per_gas=1_000_000_000)

    async def get_transaction_receipt(self, chain_id: int, tx_hash: str) -> Optional[Dict[str, Any]]:
        self.receipt_calls.append(tx_hash)
        if self.outage:
            raise RpcTimeout(f"RPC unreachable for chain {chain_id}", chain_id=chain_id, method="eth_getTransactionReceipt")
        if tx_hash in self.receipts:
            return self.receipts[tx_hash]
        if self.mine_by_default:
            return {"blockNumber": hex(self.head - 10), "status": "0x1"}
        return None

    async def block_number(self, chain_id: int) -> int:
        return self.head

    async def close(self) -> None:
        pass


class FakeSigner:
    """Records submissions and hands back sequential hashes."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []

    async def sign_and_send(self, chain_id: int, to_address: str, data: str, value: int, *, fees: GasParams) -> str:
        self.calls.append({"chain_id": chain_id, "to": to_address, "data": data, "value": value, "fees": fees})
        return "0x" + format(len(self.calls), "064x")

    @staticmethod
    def tx_hash(n: int) -> str:
        return "0x" + format(n, "064x")


@pytest.fixture
def fake_rpc() -> FakeRpc:
    return FakeRpc()


@pytest.fixture
def fake_signer() -> FakeSigner:
    return FakeSigner()


# =============================================================================
# Requests and quotes
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        required_confirmations=2,
        confirmation_timeout_seconds=600,
        poll_interval_seconds=5,
        grace_multiplier=3,
        max_tracking_seconds=3600,
        max_requotes=2,
        quote_ttl_seconds=60,
        signer_url="",
        name_service_url="",
    )


def make_request(**overrides: Any) -> TransferRequest:
    fields: Dict[str, Any] = dict(
        from_chain=137,
        to_chain=10,
        from_token=USDC_POLYGON,
        to_token=USDC_OPTIMISM,
        from_amount=1_000_000,
        from_address=SENDER,
        integrator="bridgeflow-tests",
        slippage=Decimal("0.005"),
    )
    fields.update(overrides)
    return TransferRequest(**fields)


def bridge_steps(request: TransferRequest, *, with_approval: bool = True, tool: str = "across") -> tuple:
    """Approve + bridge deposit, the usual shape of a USDC route."""
    steps = []
    if with_approval:
        steps.append(Step(
            index=0,
            kind=StepKind.APPROVAL,
            chain_id=request.from_chain,
            to_address=request.from_token,
            data=encode_approve(SPENDER, request.from_amount),
            token_address=request.from_token,
            spender=SPENDER,
            amount=request.from_amount,
        ))
    steps.append(Step(
        index=len(steps),
        kind=StepKind.BRIDGE_DEPOSIT,
        chain_id=request.from_chain,
        to_address=BRIDGE_CONTRACT,
        data="0xdeadbeef",
        depends_on=(0,) if with_approval else (),
        tool=tool,
        token_address=request.from_token,
        amount=request.from_amount,
    ))
    return tuple(steps)


def swap_then_bridge_steps(request: TransferRequest) -> tuple:
    """Source-chain swap followed by a bridge deposit; both debit the source."""
    return (
        Step(
            index=0,
            kind=StepKind.CONTRACT_CALL,
            chain_id=request.from_chain,
            to_address=ROUTER_CONTRACT,
            data="0xfeedface",
            tool="uniswap",
            token_address=request.from_token,
            amount=request.from_amount,
        ),
        Step(
            index=1,
            kind=StepKind.BRIDGE_DEPOSIT,
            chain_id=request.from_chain,
            to_address=BRIDGE_CONTRACT,
            data="0xdeadbeef",
            depends_on=(0,),
            tool="stargate",
            token_address=request.from_token,
            amount=request.from_amount,
        ),
    )


def make_quote(
    request: Optional[TransferRequest] = None,
    *,
    id: str = "route-1",
    steps: Optional[tuple] = None,
    to_amount: int = 997_000,
    price_impact: Decimal = Decimal("0.003"),
    duration: int = 120,
    cost: Decimal = Decimal("0.30"),
    bridges: frozenset = frozenset({"across"}),
    exchanges: frozenset = frozenset(),
    received_at: datetime = T0,
    ttl: int = 60,
) -> Quote:
    request = request or make_request()
    return Quote(
        id=id,
        request=request,
        steps=steps if steps is not None else bridge_steps(request),
        to_amount=to_amount,
        to_amount_min=int(to_amount * Decimal("0.995")),
        price_impact=price_impact,
        estimated_duration_seconds=duration,
        estimated_cost_usd=cost,
        expires_at=received_at + timedelta(seconds=ttl),
        bridges=bridges,
        exchanges=exchanges,
        received_at=received_at,
    )


@pytest.fixture
def request_137_to_10() -> TransferRequest:
    return make_request()


@pytest.fixture
def quote(request_137_to_10) -> Quote:
    return make_quote(request_137_to_10)
