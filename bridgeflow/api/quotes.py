from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..core.orchestrator import TransferOrchestrator, get_orchestrator
from ..core.routing.models import Quote
from ..providers.name_service import NameResolver
from .transfers import TransferRequestBody, build_request, get_name_resolver


router = APIRouter(prefix="/quotes")


class QuotePreviewResponse(BaseModel):
    candidates: List[Dict[str, Any]]
    selected: Optional[Dict[str, Any]] = None
    rejection: Optional[Dict[str, Any]] = None


@router.post("")
async def preview_quotes(
    body: TransferRequestBody,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
    resolver: NameResolver = Depends(get_name_resolver),
) -> QuotePreviewResponse:
    """Candidate routes and the selection the policy would make; nothing is executed."""
    request = await build_request(body, orchestrator.chain_registry, resolver)
    quotes, selection = await orchestrator.preview(request)

    if isinstance(selection, Quote):
        return QuotePreviewResponse(candidates=[q.to_dict() for q in quotes], selected=selection.to_dict())

    return QuotePreviewResponse(
        candidates=[q.to_dict() for q in quotes],
        rejection={
            "reason": selection.reason.value,
            "excluded": [{"quoteId": quote_id, "reason": reason.value} for quote_id, reason in selection.excluded],
        },
    )
