"""
Error Classification

Defines the transfer error taxonomy.
Errors are classified as recoverable (retry or re-quote locally) or
unrecoverable (surface to the caller, possibly with a recovery ticket).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:  # pragma: no cover
    from ..execution.models import RecoveryTicket, Transfer


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    PROVIDER = "provider"                 # Route provider unreachable or erroring
    NO_ROUTE = "no_route"                 # Provider has no viable route
    QUOTE_EXPIRED = "quote_expired"       # Stale quote, re-quote required
    ROUTE_REJECTED = "route_rejected"     # Local policy rejected all routes
    RPC_TIMEOUT = "rpc_timeout"           # Chain RPC unreachable / timed out
    RPC = "rpc"                           # Chain RPC answered with an error object
    STEP_REVERTED = "step_reverted"       # On-chain revert
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NEEDS_RECOVERY = "needs_recovery"     # Funds in flight, manual claim needed
    VALIDATION = "validation"             # Bad input
    STATE = "state"                       # Illegal lifecycle transition
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    provider: Optional[str] = None
    chain_id: Optional[int] = None
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "recoverable": self.recoverable,
            "retryAfterSeconds": self.retry_after_seconds,
            "suggestedAction": self.suggested_action,
            "provider": self.provider,
            "chainId": self.chain_id,
            "txHash": self.tx_hash,
            "details": self.details,
        }


class TransferError(Exception):
    """Base class for every error in the taxonomy."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context or ErrorContext(category=category)

    def attach_transfer(self, transfer: "Transfer") -> "TransferError":
        """Record the last known state and full receipt history on the error."""
        self.context.details["transfer_id"] = transfer.id
        self.context.details["state"] = transfer.state.value
        self.context.details["receipts"] = [r.to_dict() for r in transfer.receipts]
        return self

    @property
    def state(self) -> Optional[str]:
        return self.context.details.get("state")

    @property
    def receipts(self) -> List[Dict[str, Any]]:
        return self.context.details.get("receipts", [])


class RecoverableError(TransferError):
    """
    Errors that can be handled locally.

    - Provider outages (retry)
    - RPC timeouts (retry with backoff)
    - Expired quotes (re-quote)
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        retry_after: Optional[float] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message,
            category=category,
            context=context or ErrorContext(category=category, recoverable=True),
        )
        self.retry_after = retry_after


class UnrecoverableError(TransferError):
    """
    Errors that must be surfaced to the caller.

    - No route / policy rejection
    - Reverts and insufficient balance
    - Anything after value crossed a bridge
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message,
            category=category,
            context=context or ErrorContext(category=category, recoverable=False),
        )


class ProviderUnavailable(RecoverableError):
    """Route provider network error, 5xx or timeout."""

    def __init__(
        self,
        message: str = "Route provider unavailable",
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.PROVIDER,
            retry_after=5.0,
            context=ErrorContext(
                category=ErrorCategory.PROVIDER,
                recoverable=True,
                retry_after_seconds=5.0,
                provider=provider,
                suggested_action="Retry the quote request",
                details={"status_code": status_code} if status_code else {},
            ),
        )


class RpcTimeout(RecoverableError):
    """Chain RPC did not answer within the configured bound."""

    def __init__(
        self,
        message: str = "RPC call timed out",
        chain_id: Optional[int] = None,
        method: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.RPC_TIMEOUT,
            retry_after=1.0,
            context=ErrorContext(
                category=ErrorCategory.RPC_TIMEOUT,
                recoverable=True,
                retry_after_seconds=1.0,
                chain_id=chain_id,
                suggested_action="Check RPC endpoint availability",
                details={"method": method} if method else {},
            ),
        )


class QuoteExpired(RecoverableError):
    """Quote passed its expiry before the first step was submitted."""

    def __init__(self, message: str = "Quote expired", quote_id: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.QUOTE_EXPIRED,
            context=ErrorContext(
                category=ErrorCategory.QUOTE_EXPIRED,
                recoverable=True,
                suggested_action="Re-quote and re-select",
                details={"quote_id": quote_id} if quote_id else {},
            ),
        )


class NoRouteFound(UnrecoverableError):
    """Provider returned zero viable routes."""

    def __init__(self, message: str = "No route found", provider: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.NO_ROUTE,
            context=ErrorContext(
                category=ErrorCategory.NO_ROUTE,
                recoverable=False,
                provider=provider,
                suggested_action="Increase the amount or pick another token pair",
            ),
        )


class RouteRejected(UnrecoverableError):
    """Every candidate route was excluded by policy."""

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(
            message or f"Route rejected: {reason}",
            category=ErrorCategory.ROUTE_REJECTED,
            context=ErrorContext(
                category=ErrorCategory.ROUTE_REJECTED,
                recoverable=False,
                suggested_action="Relax price impact ceiling or protocol allow-lists",
                details={"reason": reason},
            ),
        )
        self.reason = reason


class StepReverted(UnrecoverableError):
    """A step reverted on-chain."""

    def __init__(
        self,
        message: str = "Step reverted",
        step_index: Optional[int] = None,
        tx_hash: Optional[str] = None,
        chain_id: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.STEP_REVERTED,
            context=ErrorContext(
                category=ErrorCategory.STEP_REVERTED,
                recoverable=False,
                tx_hash=tx_hash,
                chain_id=chain_id,
                suggested_action="Review transaction parameters",
                details={"step_index": step_index},
            ),
        )


class InsufficientBalance(UnrecoverableError):
    """Sender cannot cover the source amount."""

    def __init__(
        self,
        message: str = "Insufficient balance",
        required: Optional[int] = None,
        available: Optional[int] = None,
        token: Optional[str] = None,
        chain_id: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.INSUFFICIENT_BALANCE,
            context=ErrorContext(
                category=ErrorCategory.INSUFFICIENT_BALANCE,
                recoverable=False,
                chain_id=chain_id,
                suggested_action="Add funds to wallet or reduce the amount",
                details={
                    "required": str(required) if required is not None else None,
                    "available": str(available) if available is not None else None,
                    "token": token,
                },
            ),
        )


class NeedsRecovery(UnrecoverableError):
    """Funds left the source chain and delivery cannot be confirmed."""

    def __init__(self, ticket: "RecoveryTicket", message: Optional[str] = None):
        super().__init__(
            message or f"Transfer needs recovery: {ticket.reason}",
            category=ErrorCategory.NEEDS_RECOVERY,
            context=ErrorContext(
                category=ErrorCategory.NEEDS_RECOVERY,
                recoverable=False,
                chain_id=ticket.source_chain_id,
                tx_hash=ticket.source_tx_hash,
                suggested_action=ticket.remediation,
                details={"ticket": ticket.to_dict()},
            ),
        )
        self.ticket = ticket


class InvalidTransferRequest(UnrecoverableError):
    """Request violates a TransferRequest invariant."""

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            context=ErrorContext(
                category=ErrorCategory.VALIDATION,
                recoverable=False,
                details={"field": field_name} if field_name else {},
            ),
        )


class InvalidTransitionError(UnrecoverableError):
    """Lifecycle transition not allowed from the current state."""

    def __init__(self, from_state: str, to_state: str, message: Optional[str] = None):
        super().__init__(
            message or f"Invalid transition from {from_state} to {to_state}",
            category=ErrorCategory.STATE,
            context=ErrorContext(
                category=ErrorCategory.STATE,
                recoverable=False,
                details={"from_state": from_state, "to_state": to_state},
            ),
        )
        self.from_state = from_state
        self.to_state = to_state


class RpcError(UnrecoverableError):
    """Chain RPC answered with a JSON-RPC error object (e.g. gas estimation revert)."""

    def __init__(
        self,
        message: str = "RPC error",
        chain_id: Optional[int] = None,
        method: Optional[str] = None,
        code: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.RPC,
            context=ErrorContext(
                category=ErrorCategory.RPC,
                recoverable=False,
                chain_id=chain_id,
                details={"method": method, "code": code},
            ),
        )
        self.code = code
