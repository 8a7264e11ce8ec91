"""
Transfer execution models.

A Transfer is the one mutable record in the pipeline. Everything it holds
(receipts, state changes, the recovery ticket) is an immutable value that
is appended or replaced, never edited in place.
"""

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..routing.models import Quote, TransferRequest


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransferState(str, Enum):
    """Transfer lifecycle state."""
    QUOTED = "quoted"                                # Quote selected, nothing submitted
    EXECUTING = "executing"                          # At least one step submitted
    AWAITING_CONFIRMATION = "awaiting_confirmation"  # Source legs confirmed, destination in flight
    PARTIALLY_COMPLETE = "partially_complete"        # Destination overdue, recovery invoked
    COMPLETE = "complete"
    FAILED = "failed"                                # Nothing left the source chain
    NEEDS_RECOVERY = "needs_recovery"                # Funds at risk, ticket attached
    CANCELLED = "cancelled"                          # Cancelled before any submission
    ABANDONED = "abandoned"                          # Cancelled after submission, polling stopped

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    TransferState.COMPLETE,
    TransferState.FAILED,
    TransferState.NEEDS_RECOVERY,
    TransferState.CANCELLED,
    TransferState.ABANDONED,
})


class ConfirmationState(str, Enum):
    """Confirmation state of one step receipt."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"      # Approval already covered by on-chain allowance

    @property
    def is_final(self) -> bool:
        return self is not ConfirmationState.PENDING

    @property
    def satisfies_dependency(self) -> bool:
        return self in (ConfirmationState.CONFIRMED, ConfirmationState.SKIPPED)

    @property
    def is_failure(self) -> bool:
        return self in (ConfirmationState.REVERTED, ConfirmationState.TIMED_OUT)


@dataclass(frozen=True)
class GasParams:
    """Fee parameters fetched for a single submission."""
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    def to_dict(self) -> Dict[str, str]:
        return {
            "gas": hex(self.gas_limit),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
        }


@dataclass(frozen=True)
class StepReceipt:
    """One observation of a submitted (or skipped) step."""
    step_index: int
    chain_id: int
    confirmation: ConfirmationState
    tx_hash: Optional[str] = None
    submitted_at: Optional[datetime] = None
    observed_at: datetime = field(default_factory=utcnow)
    block_number: Optional[int] = None
    confirmations: int = 0
    attempt: int = 1
    error: Optional[str] = None

    def observation_key(self) -> tuple:
        """Fields that make two receipts the same observation."""
        return (self.step_index, self.tx_hash, self.confirmation, self.block_number, self.attempt)

    def evolve(self, **changes: Any) -> "StepReceipt":
        changes.setdefault("observed_at", utcnow())
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepIndex": self.step_index,
            "chainId": self.chain_id,
            "txHash": self.tx_hash,
            "confirmation": self.confirmation.value,
            "submittedAt": self.submitted_at.isoformat() if self.submitted_at else None,
            "observedAt": self.observed_at.isoformat(),
            "blockNumber": self.block_number,
            "confirmations": self.confirmations,
            "attempt": self.attempt,
            "error": self.error,
        }


@dataclass(frozen=True)
class RecoveryTicket:
    """
    Everything needed to claim or refund funds stuck after a bridge hand-off.

    Issued once per transfer; the remediation text is meant for the user or
    a support agent working with the bridge provider.
    """
    transfer_id: str
    reason: str
    source_chain_id: int
    destination_chain_id: int
    token_address: str
    amount: int
    remediation: str
    source_tx_hash: Optional[str] = None
    provider_status: Optional[str] = None
    provider_substatus: Optional[str] = None
    bridge: Optional[str] = None
    explorer_link: Optional[str] = None
    received_amount: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transferId": self.transfer_id,
            "reason": self.reason,
            "sourceChainId": self.source_chain_id,
            "sourceTxHash": self.source_tx_hash,
            "destinationChainId": self.destination_chain_id,
            "token": self.token_address,
            "amount": str(self.amount),
            "receivedAmount": str(self.received_amount) if self.received_amount is not None else None,
            "providerStatus": self.provider_status,
            "providerSubstatus": self.provider_substatus,
            "bridge": self.bridge,
            "remediation": self.remediation,
            "explorerLink": self.explorer_link,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class StateChange:
    """One entry of a transfer's state history."""
    from_state: TransferState
    to_state: TransferState
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class DestinationObservation:
    """Latest provider view of the destination leg."""
    status: Optional[str] = None
    substatus: Optional[str] = None
    tx_hash: Optional[str] = None
    amount: Optional[int] = None
    explorer_link: Optional[str] = None
    observed_at: Optional[datetime] = None


@dataclass
class Transfer:
    """
    Mutable execution record for one user request.

    State changes go through ``TransferStateMachine``; receipts through
    ``append_receipt``. Writers hold ``lock`` while mutating so the engine
    and the tracker can work on the same transfer concurrently.
    """
    request: TransferRequest
    quote: Quote
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: TransferState = TransferState.QUOTED
    receipts: List[StepReceipt] = field(default_factory=list)
    ticket: Optional[RecoveryTicket] = None
    history: List[StateChange] = field(default_factory=list)
    destination: DestinationObservation = field(default_factory=DestinationObservation)
    requotes: int = 0
    cancel_requested: bool = False
    error: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    # ─────────────────────────────────────────────────────────────────────────
    # Receipts
    # ─────────────────────────────────────────────────────────────────────────

    def append_receipt(self, receipt: StepReceipt) -> bool:
        """Append a receipt; returns False when it adds nothing new.

        A repeated observation is ignored, and once a step has a CONFIRMED
        receipt nothing further is recorded for it.
        """
        if not 0 <= receipt.step_index < len(self.quote.steps):
            raise ValueError(f"Step index {receipt.step_index} out of range")

        latest = self.latest_receipt(receipt.step_index)
        if latest is not None:
            if latest.observation_key() == receipt.observation_key():
                return False
            if self.step_state(receipt.step_index) is ConfirmationState.CONFIRMED:
                return False

        self.receipts.append(receipt)
        self.updated_at = receipt.observed_at
        return True

    def replace_quote(self, quote: Quote) -> None:
        """Swap in a fresh quote after the previous one expired unexecuted."""
        if self.state is not TransferState.QUOTED or self.has_submission:
            raise ValueError(f"Transfer {self.id} already submitted steps; its quote is fixed")
        # Only SKIPPED receipts can exist here and they describe the old steps
        self.receipts = []
        self.quote = quote
        self.requotes += 1
        self.updated_at = utcnow()

    def receipts_for(self, step_index: int) -> List[StepReceipt]:
        return [r for r in self.receipts if r.step_index == step_index]

    def latest_receipt(self, step_index: int) -> Optional[StepReceipt]:
        for receipt in reversed(self.receipts):
            if receipt.step_index == step_index:
                return receipt
        return None

    def step_state(self, step_index: int) -> Optional[ConfirmationState]:
        receipts = self.receipts_for(step_index)
        if any(r.confirmation is ConfirmationState.CONFIRMED for r in receipts):
            return ConfirmationState.CONFIRMED
        return receipts[-1].confirmation if receipts else None

    def pending_steps(self) -> List[int]:
        return [
            step.index for step in self.quote.steps
            if self.step_state(step.index) is ConfirmationState.PENDING
        ]

    # ─────────────────────────────────────────────────────────────────────────
    # Derived facts
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def has_submission(self) -> bool:
        """True once any transaction has been handed to the signer."""
        return any(r.tx_hash for r in self.receipts)

    @property
    def has_confirmed_debit(self) -> bool:
        """True once a step that moves value off the source chain is CONFIRMED."""
        return any(
            step.debits_source and self.step_state(step.index) is ConfirmationState.CONFIRMED
            for step in self.quote.steps
        )

    @property
    def has_pending_debit(self) -> bool:
        return any(
            step.debits_source and self.step_state(step.index) is ConfirmationState.PENDING
            for step in self.quote.steps
        )

    @property
    def all_steps_settled(self) -> bool:
        settled = (ConfirmationState.CONFIRMED, ConfirmationState.SKIPPED)
        return all(self.step_state(step.index) in settled for step in self.quote.steps)

    @property
    def source_tx_hash(self) -> Optional[str]:
        """Hash of the last confirmed value-moving step (what the bridge status API keys on)."""
        for step in reversed(self.quote.steps):
            if step.debits_source and self.step_state(step.index) is ConfirmationState.CONFIRMED:
                for receipt in reversed(self.receipts_for(step.index)):
                    if receipt.confirmation is ConfirmationState.CONFIRMED:
                        return receipt.tx_hash
        return None

    def entered_state_at(self, state: TransferState) -> Optional[datetime]:
        """When the transfer most recently entered ``state``."""
        for change in reversed(self.history):
            if change.to_state is state:
                return change.timestamp
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "quote": self.quote.to_dict(),
            "receipts": [r.to_dict() for r in self.receipts],
            "ticket": self.ticket.to_dict() if self.ticket else None,
            "history": [c.to_dict() for c in self.history],
            "destination": {
                "status": self.destination.status,
                "substatus": self.destination.substatus,
                "txHash": self.destination.tx_hash,
                "amount": str(self.destination.amount) if self.destination.amount is not None else None,
                "explorerLink": self.destination.explorer_link,
            },
            "requotes": self.requotes,
            "cancelRequested": self.cancel_requested,
            "error": self.error,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
