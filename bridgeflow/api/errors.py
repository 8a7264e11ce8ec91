"""Map the transfer error taxonomy onto HTTP responses."""

from typing import Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.recovery.errors import ErrorCategory, ProviderUnavailable, TransferError

STATUS_BY_CATEGORY: Dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.NO_ROUTE: 404,
    ErrorCategory.ROUTE_REJECTED: 422,
    ErrorCategory.INSUFFICIENT_BALANCE: 422,
    ErrorCategory.QUOTE_EXPIRED: 409,
    ErrorCategory.STEP_REVERTED: 409,
    ErrorCategory.NEEDS_RECOVERY: 409,
    ErrorCategory.STATE: 409,
    ErrorCategory.PROVIDER: 503,
    ErrorCategory.RPC: 502,
    ErrorCategory.RPC_TIMEOUT: 504,
}


def status_for(error: TransferError) -> int:
    if isinstance(error, ProviderUnavailable) and error.context.details.get("status_code"):
        # Upstream answered, but with an error
        return 502
    return STATUS_BY_CATEGORY.get(error.category, 500)


async def transfer_error_handler(request: Request, exc: TransferError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={
            "error": exc.category.value,
            "message": exc.message,
            "context": exc.context.to_dict(),
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TransferError, transfer_error_handler)
