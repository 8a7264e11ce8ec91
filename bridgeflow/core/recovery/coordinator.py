"""
Recovery Coordinator

Decides what a transfer becomes after an anomaly: a reverted or timed-out
step, an engine error between submissions, or a destination leg that is
overdue. It never resubmits anything once value has crossed a bridge;
the most it does is re-query the provider's status endpoint once per
invocation and, when funds are at risk, issue a RecoveryTicket.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from ...config import Settings, settings as default_settings
from ..execution.models import (
    ConfirmationState,
    RecoveryTicket,
    StepReceipt,
    Transfer,
    TransferState,
    utcnow,
)
from ..execution.state_machine import TransferStateMachine
from ..routing.models import Quote, Step, StepKind
from ..routing.quote_client import BridgeStatus, QuoteClient
from .errors import ProviderUnavailable, TransferError


class DeliveryOutcome(str, Enum):
    """How a provider status report reads against the quote."""
    COMPLETE = "complete"      # Delivered within slippage tolerance
    IN_FLIGHT = "in_flight"    # Provider sees the bridge leg progressing
    SHORTFALL = "shortfall"    # Done, but partial / refunded / below tolerance
    FAILED = "failed"          # Provider reports failure or an invalid transfer
    UNKNOWN = "unknown"        # Provider has no record (yet)


def classify_delivery(quote: Quote, status: BridgeStatus) -> DeliveryOutcome:
    if status.is_done:
        if status.substatus in ("PARTIAL", "REFUNDED"):
            return DeliveryOutcome.SHORTFALL
        if status.receiving_amount is None:
            # DONE without an amount cannot be checked against tolerance yet
            return DeliveryOutcome.IN_FLIGHT
        if status.receiving_amount >= quote.min_acceptable_output():
            return DeliveryOutcome.COMPLETE
        return DeliveryOutcome.SHORTFALL
    if status.in_flight:
        return DeliveryOutcome.IN_FLIGHT
    if status.status in ("FAILED", "INVALID"):
        return DeliveryOutcome.FAILED
    return DeliveryOutcome.UNKNOWN


def record_destination(transfer: Transfer, status: BridgeStatus, observed_at: Optional[datetime] = None) -> None:
    """Copy the provider's view of the destination leg onto the transfer."""
    destination = transfer.destination
    destination.status = status.status
    destination.substatus = status.substatus
    destination.tx_hash = status.receiving_tx_hash or destination.tx_hash
    if status.receiving_amount is not None:
        destination.amount = status.receiving_amount
    destination.explorer_link = status.explorer_link or destination.explorer_link
    destination.observed_at = observed_at or utcnow()


class RecoveryCoordinator:
    """
    Policy, in order:

    1. A step fails before any source debit confirmed: FAILED, no ticket.
    2. The destination leg is overdue after a confirmed debit: re-query the
       provider once. In flight means back to AWAITING_CONFIRMATION;
       delivered within tolerance means COMPLETE.
    3. Anything else after a confirmed debit (provider reports failure,
       refund, partial or short delivery, no record, or a later step fails):
       NEEDS_RECOVERY with a RecoveryTicket.

    Each public method takes ``transfer.lock`` for its own writes; callers
    must not hold it.
    """

    def __init__(
        self,
        quote_client: QuoteClient,
        *,
        state_machine: Optional[TransferStateMachine] = None,
        config: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._quote_client = quote_client
        self._config = config or default_settings
        self.logger = logger or logging.getLogger(__name__)
        self._state_machine = state_machine or TransferStateMachine(logger=self.logger)

    # ─────────────────────────────────────────────────────────────────────────
    # Step failures
    # ─────────────────────────────────────────────────────────────────────────

    async def handle_step_failure(self, transfer: Transfer, receipt: StepReceipt) -> TransferState:
        """A step receipt came back REVERTED or TIMED_OUT."""
        step = transfer.quote.steps[receipt.step_index]
        async with transfer.lock:
            if transfer.state.is_terminal:
                return transfer.state

            # A timed-out debit may still be mined; treat the value as at risk
            at_risk = transfer.has_confirmed_debit or (
                receipt.confirmation is ConfirmationState.TIMED_OUT and step.debits_source
            )
            if not at_risk:
                self._state_machine.transition(
                    transfer,
                    TransferState.FAILED,
                    reason=f"step {step.index} ({step.kind.value}) {receipt.confirmation.value}; no funds left the source chain",
                )
                return transfer.state

            if receipt.confirmation is ConfirmationState.TIMED_OUT and step.debits_source:
                ticket = self._ticket(
                    transfer,
                    reason=f"step {step.index} not included before timeout",
                    step=step,
                    source_tx_hash=receipt.tx_hash,
                    remediation=(
                        f"Transaction {receipt.tx_hash} on chain {step.chain_id} was not included within "
                        f"{self._config.confirmation_timeout_seconds}s and may still be mined. Check it on the "
                        "explorer before doing anything else; replace it with a same-nonce zero-value "
                        "transaction to abort, or track the bridge once it lands."
                    ),
                )
            else:
                ticket = self._ticket(
                    transfer,
                    reason=f"step {step.index} {receipt.confirmation.value} after a confirmed source debit",
                    step=self._last_confirmed_debit(transfer),
                    remediation=(
                        "An earlier step already moved funds on the source chain. The intermediate tokens "
                        f"remain with {transfer.request.from_address} on chain {transfer.request.from_chain}; "
                        "request a new route starting from that token."
                    ),
                )
            self._needs_recovery(transfer, ticket)
            return transfer.state

    async def handle_execution_error(self, transfer: Transfer, error: TransferError) -> TransferState:
        """The engine raised (signer, RPC, balance) before or between submissions."""
        async with transfer.lock:
            if transfer.state.is_terminal:
                return transfer.state

            if not (transfer.has_confirmed_debit or transfer.has_pending_debit):
                self._state_machine.transition(
                    transfer, TransferState.FAILED, reason=f"{error.category.value}: {error.message}"
                )
                return transfer.state

            step = self._last_confirmed_debit(transfer)
            ticket = self._ticket(
                transfer,
                reason=f"execution stopped after a source debit ({error.category.value})",
                step=step,
                remediation=(
                    f"Execution stopped with: {error.message}. Funds moved by step {step.index} remain "
                    f"with {transfer.request.from_address} on chain {step.chain_id}; request a new route "
                    "from the intermediate token. Nothing will be resubmitted automatically."
                ),
            )
            self._needs_recovery(transfer, ticket)
            return transfer.state

    # ─────────────────────────────────────────────────────────────────────────
    # Destination leg
    # ─────────────────────────────────────────────────────────────────────────

    async def handle_partial(self, transfer: Transfer, *, final: bool = False) -> TransferState:
        """
        Destination leg overdue: one provider status re-query.

        With ``final`` (tracking deadline reached) an in-flight answer no
        longer earns another wait.
        """
        if transfer.state is not TransferState.PARTIALLY_COMPLETE:
            return transfer.state

        source_tx = transfer.source_tx_hash
        status: Optional[BridgeStatus] = None
        if source_tx:
            try:
                status = await self._quote_client.get_status(
                    source_tx,
                    from_chain=transfer.request.from_chain,
                    to_chain=transfer.request.to_chain,
                    bridge=self._bridge_tool(transfer),
                )
            except ProviderUnavailable as e:
                self.logger.warning(f"Transfer {transfer.id}: status re-query failed: {e.message}")
                if not final:
                    return transfer.state

        async with transfer.lock:
            if transfer.state is not TransferState.PARTIALLY_COMPLETE:
                return transfer.state

            if status is None:
                outcome = DeliveryOutcome.UNKNOWN
            else:
                record_destination(transfer, status)
                outcome = classify_delivery(transfer.quote, status)

            self.logger.info(
                f"Transfer {transfer.id}: re-query outcome {outcome.value}"
                f" (status={status.status if status else None}, substatus={status.substatus if status else None})"
            )

            if outcome is DeliveryOutcome.COMPLETE:
                self._state_machine.transition(
                    transfer,
                    TransferState.COMPLETE,
                    reason=f"provider confirmed delivery of {status.receiving_amount}",
                )
            elif outcome is DeliveryOutcome.IN_FLIGHT and not final:
                self._state_machine.transition(
                    transfer,
                    TransferState.AWAITING_CONFIRMATION,
                    reason="provider reports the bridge leg in flight",
                )
            else:
                self._needs_recovery(transfer, self._destination_ticket(transfer, status, outcome, final))
            return transfer.state

    async def handle_deadline(self, transfer: Transfer) -> TransferState:
        """Tracking deadline reached without a terminal state."""
        if transfer.state is TransferState.AWAITING_CONFIRMATION:
            async with transfer.lock:
                if transfer.state is TransferState.AWAITING_CONFIRMATION:
                    self._state_machine.transition(
                        transfer, TransferState.PARTIALLY_COMPLETE, reason="tracking deadline reached"
                    )
        if transfer.state is TransferState.PARTIALLY_COMPLETE:
            return await self.handle_partial(transfer, final=True)

        self.logger.warning(f"Transfer {transfer.id}: tracking deadline reached in {transfer.state.value}")
        return transfer.state

    # ─────────────────────────────────────────────────────────────────────────
    # Tickets
    # ─────────────────────────────────────────────────────────────────────────

    def _destination_ticket(
        self,
        transfer: Transfer,
        status: Optional[BridgeStatus],
        outcome: DeliveryOutcome,
        final: bool,
    ) -> RecoveryTicket:
        bridge = self._bridge_tool(transfer) or "the bridge"
        chain = transfer.request.to_chain
        if outcome is DeliveryOutcome.SHORTFALL and status is not None and status.is_refunded:
            reason = "bridge refunded the transfer"
            remediation = (
                f"{bridge} reports a refund. Check the refunded tokens on the receiving side of the "
                "refund (they may differ from the source token) before requesting a new route."
            )
        elif outcome is DeliveryOutcome.SHORTFALL:
            reason = "delivered amount below tolerance"
            remediation = (
                f"Received {status.receiving_amount if status else 'unknown'} on chain {chain}, below the "
                f"minimum of {transfer.quote.min_acceptable_output()}. Raise a claim with {bridge} "
                "support using the source transaction hash."
            )
        elif outcome is DeliveryOutcome.FAILED:
            reason = "bridge reports the transfer failed"
            remediation = (
                f"{bridge} reports failure for the source transaction. Funds are usually claimable or "
                "refunded by the bridge; follow the explorer link or contact its support with the hash."
            )
        elif outcome is DeliveryOutcome.IN_FLIGHT and final:
            reason = "destination leg still in flight at tracking deadline"
            remediation = (
                f"{bridge} still reports the transfer in flight. Keep watching the explorer link; "
                f"if it does not settle on chain {chain}, open a claim with the bridge."
            )
        else:
            reason = "provider has no record of the bridge leg"
            remediation = (
                "The route provider could not find the transfer. Verify the source transaction on the "
                f"explorer and claim directly with {bridge} using the source transaction hash."
            )

        return self._ticket(
            transfer,
            reason=reason,
            step=self._last_confirmed_debit(transfer),
            remediation=remediation,
            status=status,
        )

    def _ticket(
        self,
        transfer: Transfer,
        *,
        reason: str,
        step: Step,
        remediation: str,
        source_tx_hash: Optional[str] = None,
        status: Optional[BridgeStatus] = None,
    ) -> RecoveryTicket:
        request = transfer.request
        return RecoveryTicket(
            transfer_id=transfer.id,
            reason=reason,
            source_chain_id=request.from_chain,
            destination_chain_id=request.to_chain,
            token_address=step.token_address or request.from_token,
            amount=step.amount if step.amount is not None else request.from_amount,
            remediation=remediation,
            source_tx_hash=source_tx_hash or transfer.source_tx_hash,
            provider_status=status.status if status else transfer.destination.status,
            provider_substatus=status.substatus if status else transfer.destination.substatus,
            bridge=self._bridge_tool(transfer),
            explorer_link=(status.explorer_link if status else None) or transfer.destination.explorer_link,
            received_amount=status.receiving_amount if status else transfer.destination.amount,
        )

    def _needs_recovery(self, transfer: Transfer, ticket: RecoveryTicket) -> None:
        transfer.ticket = ticket
        self._state_machine.transition(transfer, TransferState.NEEDS_RECOVERY, reason=ticket.reason)
        self.logger.warning(
            f"Transfer {transfer.id}: recovery ticket issued ({ticket.reason}); "
            f"source tx {ticket.source_tx_hash} on chain {ticket.source_chain_id}"
        )

    @staticmethod
    def _last_confirmed_debit(transfer: Transfer) -> Step:
        for step in reversed(transfer.quote.steps):
            if step.debits_source and transfer.step_state(step.index) is ConfirmationState.CONFIRMED:
                return step
        # No confirmed debit: the main step is the one at risk
        return next(s for s in reversed(transfer.quote.steps) if s.debits_source)

    @staticmethod
    def _bridge_tool(transfer: Transfer) -> Optional[str]:
        for step in transfer.quote.steps:
            if step.kind is StepKind.BRIDGE_DEPOSIT and step.tool:
                return step.tool
        return None
