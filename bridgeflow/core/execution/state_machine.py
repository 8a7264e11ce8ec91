"""
Transfer State Machine

Validates lifecycle transitions against an explicit transition map and
records them in the transfer's history. Callers hold ``transfer.lock``.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional, Set

from .models import StateChange, Transfer, TransferState, utcnow
from ..recovery.errors import InvalidTransitionError


class TransferStateMachine:
    """
    Owns every change of ``Transfer.state``.

    Beyond the map, FAILED is refused once a source-debiting step has
    confirmed: at that point funds may be in flight and only
    NEEDS_RECOVERY, AWAITING_CONFIRMATION, PARTIALLY_COMPLETE or COMPLETE
    describe the transfer honestly.
    """

    TRANSITIONS: Dict[TransferState, Set[TransferState]] = {
        TransferState.QUOTED: {
            TransferState.EXECUTING,
            TransferState.FAILED,
            TransferState.NEEDS_RECOVERY,
            TransferState.CANCELLED,
        },
        TransferState.EXECUTING: {
            TransferState.AWAITING_CONFIRMATION,
            TransferState.FAILED,
            TransferState.NEEDS_RECOVERY,
            TransferState.ABANDONED,
        },
        TransferState.AWAITING_CONFIRMATION: {
            TransferState.PARTIALLY_COMPLETE,
            TransferState.COMPLETE,
            TransferState.FAILED,
            TransferState.NEEDS_RECOVERY,
            TransferState.ABANDONED,
        },
        TransferState.PARTIALLY_COMPLETE: {
            TransferState.AWAITING_CONFIRMATION,  # Provider confirmed delivery is in flight
            TransferState.COMPLETE,
            TransferState.FAILED,
            TransferState.NEEDS_RECOVERY,
            TransferState.ABANDONED,
        },
        TransferState.COMPLETE: set(),
        TransferState.FAILED: set(),
        TransferState.NEEDS_RECOVERY: set(),
        TransferState.CANCELLED: set(),
        TransferState.ABANDONED: set(),
    }

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock

    def allowed(self, transfer: Transfer) -> Set[TransferState]:
        allowed = set(self.TRANSITIONS.get(transfer.state, set()))
        if transfer.has_confirmed_debit:
            allowed.discard(TransferState.FAILED)
        return allowed

    def can_transition(self, transfer: Transfer, to_state: TransferState) -> bool:
        return to_state in self.allowed(transfer)

    def transition(
        self,
        transfer: Transfer,
        to_state: TransferState,
        reason: Optional[str] = None,
    ) -> StateChange:
        from_state = transfer.state
        if not self.can_transition(transfer, to_state):
            detail = "source debit already confirmed" if (
                to_state is TransferState.FAILED and transfer.has_confirmed_debit
            ) else f"allowed: {sorted(s.value for s in self.allowed(transfer))}"
            raise InvalidTransitionError(
                from_state=from_state.value,
                to_state=to_state.value,
                message=f"Invalid transition from {from_state.value} to {to_state.value} ({detail})",
            ).attach_transfer(transfer)

        change = StateChange(from_state=from_state, to_state=to_state, reason=reason, timestamp=self._clock())
        transfer.state = to_state
        transfer.history.append(change)
        transfer.updated_at = change.timestamp

        self.logger.info(
            f"Transfer {transfer.id}: {from_state.value} -> {to_state.value}"
            f"{f' ({reason})' if reason else ''}"
        )
        return change
