"""
Route acquisition and selection.

- QuoteClient: candidate routes from the route provider
- RouteSelector: pure policy decision over candidates
"""

from .models import (
    Quote,
    Rejected,
    RejectionReason,
    RouteOrder,
    RoutePolicy,
    Step,
    StepKind,
    TransferRequest,
)
from .quote_client import BridgeStatus, QuoteClient
from .selector import RouteSelector

__all__ = [
    "Quote",
    "Rejected",
    "RejectionReason",
    "RouteOrder",
    "RoutePolicy",
    "Step",
    "StepKind",
    "TransferRequest",
    "BridgeStatus",
    "QuoteClient",
    "RouteSelector",
]
