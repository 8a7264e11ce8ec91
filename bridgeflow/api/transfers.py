from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..config import settings
from ..core.chains.registry import ChainRegistry
from ..core.orchestrator import TransferOrchestrator, get_orchestrator
from ..core.recovery.errors import InvalidTransferRequest
from ..core.routing.models import TransferRequest
from ..providers.name_service import NameResolver


router = APIRouter(prefix="/transfers")


class TransferRequestBody(BaseModel):
    from_chain: Union[int, str] = Field(description="Source chain id or alias (e.g. 137, 'polygon')")
    to_chain: Union[int, str] = Field(description="Destination chain id or alias")
    from_token: str = Field(description="Source token address")
    to_token: str = Field(description="Destination token address")
    from_amount: int = Field(description="Amount in the source token's smallest unit")
    from_address: str = Field(description="Sender address")
    to_address: Optional[str] = Field(default=None, description="Recipient address (defaults to sender)")
    recipient_name: Optional[str] = Field(default=None, description="Human-readable recipient, resolved before quoting")
    slippage: Optional[Decimal] = Field(default=None, description="Slippage tolerance fraction (0.005 = 0.5%)")
    max_price_impact: Optional[Decimal] = Field(default=None, description="Reject routes above this price impact")
    order: Optional[Literal["CHEAPEST", "FASTEST"]] = None
    allow_bridges: Optional[List[str]] = None
    allow_exchanges: Optional[List[str]] = None
    deny_bridges: Optional[List[str]] = None
    deny_exchanges: Optional[List[str]] = None
    integrator: Optional[str] = None
    fee: Optional[Decimal] = Field(default=None, description="Integrator fee fraction")


class TransferCreated(BaseModel):
    id: str
    state: str
    quote: Dict[str, Any]


def get_name_resolver() -> NameResolver:
    return NameResolver()


def _resolve_chain(value: Union[int, str], registry: ChainRegistry, field_name: str) -> int:
    if isinstance(value, int):
        chain_id: Optional[int] = value
    elif value.strip().isdigit():
        chain_id = int(value.strip())
    else:
        chain_id = registry.get_chain_id(value)
    if chain_id is None or not registry.is_chain_supported(chain_id):
        raise InvalidTransferRequest(f"Unsupported chain {value!r}", field_name=field_name)
    return chain_id


async def build_request(
    body: TransferRequestBody,
    registry: ChainRegistry,
    resolver: NameResolver,
) -> TransferRequest:
    """Turn the HTTP payload into a validated TransferRequest, filling defaults from settings."""
    to_address = body.to_address
    if body.recipient_name and not to_address:
        to_address = await resolver.resolve(body.recipient_name)

    return TransferRequest(
        from_chain=_resolve_chain(body.from_chain, registry, "from_chain"),
        to_chain=_resolve_chain(body.to_chain, registry, "to_chain"),
        from_token=body.from_token,
        to_token=body.to_token,
        from_amount=body.from_amount,
        from_address=body.from_address,
        to_address=to_address,
        integrator=body.integrator or settings.integrator,
        slippage=body.slippage if body.slippage is not None else settings.default_slippage,
        max_price_impact=body.max_price_impact,
        order=body.order or settings.default_order,
        allow_bridges=body.allow_bridges,
        allow_exchanges=body.allow_exchanges,
        deny_bridges=body.deny_bridges,
        deny_exchanges=body.deny_exchanges,
        fee=body.fee if body.fee is not None else settings.integrator_fee,
    )


def _lookup(orchestrator: TransferOrchestrator, transfer_id: str):
    try:
        return orchestrator.get(transfer_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Transfer {transfer_id} not found")


@router.post("", status_code=201)
async def create_transfer(
    body: TransferRequestBody,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
    resolver: NameResolver = Depends(get_name_resolver),
) -> TransferCreated:
    request = await build_request(body, orchestrator.chain_registry, resolver)
    transfer = await orchestrator.start(request)
    return TransferCreated(id=transfer.id, state=transfer.state.value, quote=transfer.quote.to_dict())


@router.get("")
async def list_transfers(
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> List[Dict[str, Any]]:
    return [
        {"id": t.id, "state": t.state.value, "quoteId": t.quote.id, "updatedAt": t.updated_at.isoformat()}
        for t in orchestrator.list_transfers()
    ]


@router.get("/{transfer_id}")
async def get_transfer(
    transfer_id: str,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Current state, step receipts and recovery ticket (if any)."""
    _lookup(orchestrator, transfer_id)
    transfer = await orchestrator.refresh(transfer_id)
    return transfer.to_dict()


@router.post("/{transfer_id}/cancel")
async def cancel_transfer(
    transfer_id: str,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    _lookup(orchestrator, transfer_id)
    transfer = await orchestrator.cancel(transfer_id)
    return {"id": transfer.id, "state": transfer.state.value, "cancelRequested": transfer.cancel_requested}
