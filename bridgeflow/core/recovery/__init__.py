"""
Error taxonomy and retry strategies.

RecoveryCoordinator lives in ``.coordinator`` and is imported from there.
"""

from .errors import (
    ErrorCategory,
    ErrorContext,
    InsufficientBalance,
    InvalidTransferRequest,
    InvalidTransitionError,
    NeedsRecovery,
    NoRouteFound,
    ProviderUnavailable,
    QuoteExpired,
    RecoverableError,
    RouteRejected,
    RpcError,
    RpcTimeout,
    StepReverted,
    TransferError,
    UnrecoverableError,
)
from .strategies import ExponentialBackoffStrategy, RetryConfig, RetryStrategy

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "TransferError",
    "RecoverableError",
    "UnrecoverableError",
    "ProviderUnavailable",
    "RpcTimeout",
    "RpcError",
    "QuoteExpired",
    "NoRouteFound",
    "RouteRejected",
    "StepReverted",
    "InsufficientBalance",
    "NeedsRecovery",
    "InvalidTransferRequest",
    "InvalidTransitionError",
    # Strategies
    "RetryConfig",
    "RetryStrategy",
    "ExponentialBackoffStrategy",
]
