"""
Transfer execution.

- models: Transfer, StepReceipt, RecoveryTicket and lifecycle enums
- state_machine: validated lifecycle transitions
- rpc: chain JSON-RPC client
- signer: SigningIdentity protocol and the remote signer
- engine: ordered step submission
"""

from .models import (
    ConfirmationState,
    DestinationObservation,
    GasParams,
    RecoveryTicket,
    StateChange,
    StepReceipt,
    Transfer,
    TransferState,
)
from .state_machine import TransferStateMachine
from .rpc import ChainRpcClient
from .signer import RemoteSigner, SigningIdentity
from .engine import ConfirmationWaiter, ExecutionEngine

__all__ = [
    # Models
    "ConfirmationState",
    "DestinationObservation",
    "GasParams",
    "RecoveryTicket",
    "StateChange",
    "StepReceipt",
    "Transfer",
    "TransferState",
    # Components
    "TransferStateMachine",
    "ChainRpcClient",
    "RemoteSigner",
    "SigningIdentity",
    "ConfirmationWaiter",
    "ExecutionEngine",
]
