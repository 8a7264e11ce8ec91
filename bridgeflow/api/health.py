from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..core.orchestrator import TransferOrchestrator, get_orchestrator

router = APIRouter()


@router.get("/healthz")
async def health_check(
    orchestrator: TransferOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Health check endpoint that verifies route provider status"""
    provider = await orchestrator.quote_client.provider_health()

    return {
        "status": "healthy" if provider.get("status") == "healthy" else "degraded",
        "provider": provider,
        "signer_configured": orchestrator.engine is not None,
        "chains": orchestrator.chain_registry.chain_ids,
        "active_transfers": orchestrator.active_count,
    }
