"""
Status tracker.

Polls step receipts on their chains and the destination leg through the
route provider, and advances the transfer state machine from what it sees.
Every poll is idempotent: re-observing the same chain state appends
nothing and changes nothing.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from ...config import Settings, settings as default_settings
from ..execution.models import ConfirmationState, StepReceipt, Transfer, TransferState, utcnow
from ..execution.rpc import ChainRpcClient
from ..execution.state_machine import TransferStateMachine
from ..recovery.coordinator import DeliveryOutcome, RecoveryCoordinator, classify_delivery, record_destination
from ..recovery.errors import ProviderUnavailable, RpcError, RpcTimeout
from ..routing.quote_client import BridgeStatus, QuoteClient


class StatusTracker:
    """
    State progression driven by observation:

    - EXECUTING → AWAITING_CONFIRMATION once every step is CONFIRMED/SKIPPED
    - AWAITING_CONFIRMATION → COMPLETE when the provider reports delivery
      of at least ``quote.to_amount × (1 − slippage)``
    - AWAITING_CONFIRMATION → PARTIALLY_COMPLETE when delivery is overdue
      (estimated duration × grace multiplier) or reported bad; the
      RecoveryCoordinator takes it from there
    - any REVERTED / TIMED_OUT step goes to the RecoveryCoordinator
    """

    def __init__(
        self,
        rpc: ChainRpcClient,
        quote_client: QuoteClient,
        recovery: RecoveryCoordinator,
        *,
        state_machine: Optional[TransferStateMachine] = None,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self._rpc = rpc
        self._quote_client = quote_client
        self._recovery = recovery
        self._config = config or default_settings
        self._clock = clock
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)
        self._state_machine = state_machine or TransferStateMachine(logger=self.logger)

    # ─────────────────────────────────────────────────────────────────────────
    # Step receipts
    # ─────────────────────────────────────────────────────────────────────────

    async def observe_step(self, transfer: Transfer, step_index: int) -> Optional[StepReceipt]:
        """Poll one submitted step and append a receipt if its chain state moved."""
        latest = transfer.latest_receipt(step_index)
        if latest is None or latest.tx_hash is None or transfer.step_state(step_index) is not ConfirmationState.PENDING:
            return latest

        now = self._clock()
        try:
            raw = await self._rpc.get_transaction_receipt(latest.chain_id, latest.tx_hash)
            if raw:
                head = await self._rpc.block_number(latest.chain_id)
        except (RpcTimeout, RpcError) as e:
            # Unreachable RPC says nothing about inclusion
            self.logger.warning(f"Transfer {transfer.id}: step {step_index} receipt poll failed: {e.message}")
            return latest

        if not raw:
            waited = now - (latest.submitted_at or latest.observed_at)
            if waited < timedelta(seconds=self._config.confirmation_timeout_seconds):
                return latest
            observed = latest.evolve(
                confirmation=ConfirmationState.TIMED_OUT,
                observed_at=now,
                error=f"Not included after {int(waited.total_seconds())}s",
            )
        else:
            block = int(raw["blockNumber"], 16)
            if int(raw.get("status", "0x1"), 16) == 0:
                observed = latest.evolve(
                    confirmation=ConfirmationState.REVERTED,
                    block_number=block,
                    observed_at=now,
                    error="Transaction reverted",
                )
            else:
                confirmations = max(head - block + 1, 0)
                observed = latest.evolve(
                    confirmation=(
                        ConfirmationState.CONFIRMED
                        if confirmations >= self._config.required_confirmations
                        else ConfirmationState.PENDING
                    ),
                    block_number=block,
                    confirmations=confirmations,
                    observed_at=now,
                )

        async with transfer.lock:
            if transfer.append_receipt(observed):
                self.logger.info(
                    f"Transfer {transfer.id}: step {step_index} {observed.confirmation.value}"
                    f" (block={observed.block_number}, confirmations={observed.confirmations})"
                )
        return transfer.latest_receipt(step_index)

    async def refresh_receipts(self, transfer: Transfer) -> List[StepReceipt]:
        """Poll every pending step once; used for abandoned transfers on query."""
        for index in transfer.pending_steps():
            await self.observe_step(transfer, index)
        return list(transfer.receipts)

    async def await_confirmation(self, transfer: Transfer, step_index: int) -> StepReceipt:
        """Poll a step until its receipt is final."""
        while True:
            receipt = await self.observe_step(transfer, step_index)
            if receipt is None:
                raise ValueError(f"Step {step_index} of transfer {transfer.id} has not been submitted")
            state = transfer.step_state(step_index)
            if state is not None and state.is_final:
                for candidate in reversed(transfer.receipts_for(step_index)):
                    if candidate.confirmation is state:
                        return candidate
            await self._sleep(self._config.poll_interval_seconds)

    # ─────────────────────────────────────────────────────────────────────────
    # Transfer progression
    # ─────────────────────────────────────────────────────────────────────────

    async def poll_once(self, transfer: Transfer) -> TransferState:
        """One observation pass; safe to run while the engine is submitting."""
        if transfer.state is TransferState.CANCELLED:
            return transfer.state

        await self.refresh_receipts(transfer)
        if transfer.state.is_terminal:
            return transfer.state

        for step in transfer.quote.steps:
            state = transfer.step_state(step.index)
            if state is not None and state.is_failure:
                return await self._recovery.handle_step_failure(transfer, transfer.latest_receipt(step.index))

        if transfer.state is TransferState.EXECUTING and transfer.all_steps_settled:
            async with transfer.lock:
                if transfer.state is TransferState.EXECUTING:
                    self._state_machine.transition(
                        transfer,
                        TransferState.AWAITING_CONFIRMATION,
                        reason="all source-chain steps confirmed",
                    )

        if transfer.state is TransferState.AWAITING_CONFIRMATION:
            await self._check_destination(transfer)

        if transfer.state is TransferState.PARTIALLY_COMPLETE:
            await self._recovery.handle_partial(transfer)

        return transfer.state

    async def run(self, transfer: Transfer) -> TransferState:
        """Poll until terminal, cancelled, or the tracking deadline."""
        deadline = self._clock() + timedelta(seconds=self._config.max_tracking_seconds)
        while True:
            if transfer.cancel_requested:
                self.logger.info(f"Transfer {transfer.id}: tracking stopped on cancel")
                return transfer.state

            state = await self.poll_once(transfer)
            if state.is_terminal:
                return state

            if self._clock() >= deadline:
                return await self._recovery.handle_deadline(transfer)

            await self._sleep(self._config.poll_interval_seconds)

    async def _check_destination(self, transfer: Transfer) -> None:
        source_tx = transfer.source_tx_hash
        if source_tx is None:
            return

        status: Optional[BridgeStatus] = None
        try:
            status = await self._quote_client.get_status(
                source_tx,
                from_chain=transfer.request.from_chain,
                to_chain=transfer.request.to_chain,
            )
        except ProviderUnavailable as e:
            self.logger.warning(f"Transfer {transfer.id}: status poll failed: {e.message}")

        async with transfer.lock:
            if transfer.state is not TransferState.AWAITING_CONFIRMATION:
                return

            outcome = DeliveryOutcome.UNKNOWN
            if status is not None:
                record_destination(transfer, status, observed_at=self._clock())
                outcome = classify_delivery(transfer.quote, status)

            if outcome is DeliveryOutcome.COMPLETE:
                self._state_machine.transition(
                    transfer,
                    TransferState.COMPLETE,
                    reason=(
                        f"received {status.receiving_amount} >= "
                        f"{transfer.quote.min_acceptable_output()}"
                    ),
                )
            elif outcome in (DeliveryOutcome.SHORTFALL, DeliveryOutcome.FAILED):
                self._state_machine.transition(
                    transfer,
                    TransferState.PARTIALLY_COMPLETE,
                    reason=f"provider reports {status.status}/{status.substatus}",
                )
            elif self._overdue(transfer):
                self._state_machine.transition(
                    transfer,
                    TransferState.PARTIALLY_COMPLETE,
                    reason="destination credit overdue",
                )

    def _overdue(self, transfer: Transfer) -> bool:
        started = transfer.entered_state_at(TransferState.AWAITING_CONFIRMATION) or transfer.created_at
        window = max(transfer.quote.estimated_duration_seconds, 1) * self._config.grace_multiplier
        return self._clock() - started > timedelta(seconds=window)
