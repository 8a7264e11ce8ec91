"""
Route acquisition models.

TransferRequest, Quote and Step are immutable records handed from the
quote client to the selector and on to the execution engine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from ..recovery.errors import InvalidTransferRequest


class RouteOrder(str, Enum):
    """Ranking preference for candidate routes."""
    CHEAPEST = "CHEAPEST"
    FASTEST = "FASTEST"


class StepKind(str, Enum):
    """Kind of on-chain action a step performs."""
    APPROVAL = "approval"              # ERC20 approve, moves no value
    CONTRACT_CALL = "contract_call"    # Same-chain swap / call, debits source
    BRIDGE_DEPOSIT = "bridge_deposit"  # Hands value to a bridge, debits source

    @property
    def debits_source(self) -> bool:
        return self is not StepKind.APPROVAL


class RejectionReason(str, Enum):
    PRICE_IMPACT_EXCEEDED = "PriceImpactExceeded"
    PROTOCOL_NOT_ALLOWED = "ProtocolNotAllowed"
    NO_CANDIDATES = "NoCandidates"


def _normalize_ids(values: Optional[Any]) -> Optional[FrozenSet[str]]:
    if values is None:
        return None
    return frozenset(str(v).strip().lower() for v in values if str(v).strip())


@dataclass(frozen=True)
class TransferRequest:
    """What the user asked for, validated on construction."""

    from_chain: int
    to_chain: int
    from_token: str
    to_token: str
    from_amount: int
    from_address: str
    integrator: str
    to_address: Optional[str] = None
    slippage: Decimal = Decimal("0.005")
    max_price_impact: Optional[Decimal] = None
    order: RouteOrder = RouteOrder.CHEAPEST
    allow_bridges: Optional[FrozenSet[str]] = None
    allow_exchanges: Optional[FrozenSet[str]] = None
    deny_bridges: Optional[FrozenSet[str]] = None
    deny_exchanges: Optional[FrozenSet[str]] = None
    fee: Optional[Decimal] = None

    def __post_init__(self) -> None:
        # Normalize list-like inputs so equality and hashing are stable
        for name in ("allow_bridges", "allow_exchanges", "deny_bridges", "deny_exchanges"):
            object.__setattr__(self, name, _normalize_ids(getattr(self, name)))
        object.__setattr__(self, "slippage", Decimal(str(self.slippage)))
        if self.fee is not None:
            object.__setattr__(self, "fee", Decimal(str(self.fee)))
        if self.max_price_impact is not None:
            object.__setattr__(self, "max_price_impact", Decimal(str(self.max_price_impact)))
        object.__setattr__(self, "order", RouteOrder(self.order))

        if (self.from_chain, self.from_token.lower()) == (self.to_chain, self.to_token.lower()):
            raise InvalidTransferRequest(
                "Source and destination (chain, token) must differ", field_name="to_token"
            )
        if self.from_amount <= 0:
            raise InvalidTransferRequest("Amount must be positive", field_name="from_amount")
        if not Decimal(0) <= self.slippage < Decimal(1):
            raise InvalidTransferRequest("Slippage must be in [0, 1)", field_name="slippage")
        if self.fee is not None and not Decimal(0) <= self.fee < Decimal(1):
            raise InvalidTransferRequest("Fee must be in [0, 1)", field_name="fee")
        if self.max_price_impact is not None and self.max_price_impact < 0:
            raise InvalidTransferRequest("Price impact ceiling must be >= 0", field_name="max_price_impact")
        if not self.integrator:
            raise InvalidTransferRequest("Integrator id is required", field_name="integrator")

    @property
    def recipient(self) -> str:
        return self.to_address or self.from_address

    @property
    def is_cross_chain(self) -> bool:
        return self.from_chain != self.to_chain


@dataclass(frozen=True)
class Step:
    """One atomic on-chain action within a Quote."""

    index: int
    kind: StepKind
    chain_id: int
    to_address: str
    data: str = "0x"
    value: int = 0
    depends_on: Tuple[int, ...] = ()
    tool: Optional[str] = None
    included_tools: Tuple[str, ...] = ()
    provider_step_id: Optional[str] = None
    # Approvals: token + spender + amount (used for allowance checks)
    token_address: Optional[str] = None
    spender: Optional[str] = None
    amount: Optional[int] = None

    @property
    def debits_source(self) -> bool:
        return self.kind.debits_source

    @property
    def tools(self) -> FrozenSet[str]:
        names = {t.lower() for t in self.included_tools}
        if self.tool:
            names.add(self.tool.lower())
        return frozenset(names)

    @property
    def is_materialized(self) -> bool:
        return self.kind is StepKind.APPROVAL or self.data not in ("", "0x")


@dataclass(frozen=True)
class Quote:
    """A priced candidate route returned by the provider."""

    id: str
    request: TransferRequest
    steps: Tuple[Step, ...]
    to_amount: int
    to_amount_min: int
    price_impact: Decimal
    estimated_duration_seconds: int
    estimated_cost_usd: Decimal
    expires_at: datetime
    bridges: FrozenSet[str] = frozenset()
    exchanges: FrozenSet[str] = frozenset()
    tags: Tuple[str, ...] = ()
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    @property
    def is_materialized(self) -> bool:
        return all(step.is_materialized for step in self.steps)

    def min_acceptable_output(self) -> int:
        """Smallest destination credit that still counts as delivered in full."""
        tolerance = Decimal(1) - self.request.slippage
        return int(Decimal(self.to_amount) * tolerance)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "steps": [
                {
                    "index": s.index,
                    "kind": s.kind.value,
                    "chainId": s.chain_id,
                    "to": s.to_address,
                    "value": str(s.value),
                    "dependsOn": list(s.depends_on),
                    "tool": s.tool,
                }
                for s in self.steps
            ],
            "toAmount": str(self.to_amount),
            "toAmountMin": str(self.to_amount_min),
            "priceImpact": str(self.price_impact),
            "estimatedDurationSeconds": self.estimated_duration_seconds,
            "estimatedCostUsd": str(self.estimated_cost_usd),
            "expiresAt": self.expires_at.isoformat(),
            "bridges": sorted(self.bridges),
            "exchanges": sorted(self.exchanges),
            "tags": list(self.tags),
        }


@dataclass(frozen=True)
class RoutePolicy:
    """Selection policy applied by the RouteSelector."""

    order: RouteOrder = RouteOrder.CHEAPEST
    max_price_impact: Optional[Decimal] = None
    allow_bridges: Optional[FrozenSet[str]] = None
    allow_exchanges: Optional[FrozenSet[str]] = None
    deny_bridges: FrozenSet[str] = frozenset()
    deny_exchanges: FrozenSet[str] = frozenset()

    @classmethod
    def from_request(
        cls,
        request: TransferRequest,
        default_max_price_impact: Optional[Decimal] = None,
    ) -> "RoutePolicy":
        ceiling = request.max_price_impact
        if ceiling is None:
            ceiling = default_max_price_impact
        return cls(
            order=request.order,
            max_price_impact=ceiling,
            allow_bridges=request.allow_bridges,
            allow_exchanges=request.allow_exchanges,
            deny_bridges=request.deny_bridges or frozenset(),
            deny_exchanges=request.deny_exchanges or frozenset(),
        )


@dataclass(frozen=True)
class Rejected:
    """Selector outcome when no candidate survives policy."""

    reason: RejectionReason
    excluded: Tuple[Tuple[str, RejectionReason], ...] = ()

    def __bool__(self) -> bool:
        return False
