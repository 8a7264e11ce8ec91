"""
Execution engine.

Drives the steps of a selected quote against a signing identity:
- quote freshness and balance preflight
- strict dependency order between steps
- fresh fee parameters per submission
- allowance-covered approvals recorded as SKIPPED
- halt on the first REVERTED / TIMED_OUT step and hand off to recovery
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from ..recovery.errors import (
    ErrorCategory,
    InsufficientBalance,
    InvalidTransitionError,
    NeedsRecovery,
    QuoteExpired,
    StepReverted,
    TransferError,
)
from ..routing.models import Step, StepKind
from .models import ConfirmationState, StepReceipt, Transfer, TransferState, utcnow
from .rpc import ChainRpcClient
from .signer import SigningIdentity
from .state_machine import TransferStateMachine

if TYPE_CHECKING:  # pragma: no cover
    from ..recovery.coordinator import RecoveryCoordinator

# Resolves once the step's latest receipt is final (CONFIRMED/REVERTED/TIMED_OUT)
ConfirmationWaiter = Callable[[Transfer, int], Awaitable[StepReceipt]]


class ExecutionEngine:
    """
    Executes a Transfer's quote in place.

    Confirmation waiting is delegated to ``confirmations`` (normally
    ``StatusTracker.await_confirmation``), so the engine and the tracker
    write through the same receipt path.
    """

    def __init__(
        self,
        signer: SigningIdentity,
        rpc: ChainRpcClient,
        recovery: "RecoveryCoordinator",
        confirmations: ConfirmationWaiter,
        *,
        state_machine: Optional[TransferStateMachine] = None,
        clock: Callable[[], datetime] = utcnow,
        logger: Optional[logging.Logger] = None,
    ):
        self._signer = signer
        self._rpc = rpc
        self._recovery = recovery
        self._confirmations = confirmations
        self.logger = logger or logging.getLogger(__name__)
        self._state_machine = state_machine or TransferStateMachine(logger=self.logger)
        self._clock = clock

    async def execute(self, transfer: Transfer) -> List[StepReceipt]:
        """
        Submit every step of ``transfer.quote`` in dependency order.

        Returns the receipt history once all submitted steps are final.

        Raises:
            QuoteExpired: quote stale before the first submission; the
                transfer stays QUOTED so the caller can re-quote.
            InsufficientBalance / other TransferError: nothing at risk,
                transfer is FAILED.
            StepReverted: a step failed before any source debit (FAILED).
            NeedsRecovery: funds are at risk; the ticket is attached.
        """
        if transfer.state is not TransferState.QUOTED:
            raise InvalidTransitionError(
                from_state=transfer.state.value,
                to_state=TransferState.EXECUTING.value,
                message=f"Transfer {transfer.id} already left QUOTED",
            ).attach_transfer(transfer)

        quote = transfer.quote
        if not quote.is_materialized:
            raise ValueError(f"Quote {quote.id} has no call data; materialize it first")
        for step in quote.steps:
            if any(dep >= step.index for dep in step.depends_on):
                raise ValueError(f"Step {step.index} depends on a later step")

        self._ensure_fresh(transfer)

        try:
            await self._check_balance(transfer)
            failed = await self._drive(transfer)
        except QuoteExpired as e:
            raise e.attach_transfer(transfer)
        except TransferError as e:
            await self._recovery.handle_execution_error(transfer, e)
            surfaced = self._surface(transfer, e)
            if surfaced is e:
                raise
            raise surfaced from e
        except Exception as e:
            self.logger.exception(f"Transfer {transfer.id}: unexpected error during execution")
            unexpected = TransferError(
                f"Unexpected {type(e).__name__} during execution: {e}",
                category=ErrorCategory.UNKNOWN,
            )
            await self._recovery.handle_execution_error(transfer, unexpected)
            raise self._surface(transfer, unexpected) from e

        if failed is not None:
            await self._recovery.handle_step_failure(transfer, failed)
            error = StepReverted(
                f"Step {failed.step_index} {failed.confirmation.value}",
                step_index=failed.step_index,
                tx_hash=failed.tx_hash,
                chain_id=failed.chain_id,
            )
            raise self._surface(transfer, error)

        return list(transfer.receipts)

    # ─────────────────────────────────────────────────────────────────────────
    # Driving steps
    # ─────────────────────────────────────────────────────────────────────────

    async def _drive(self, transfer: Transfer) -> Optional[StepReceipt]:
        """Submit all steps; return the first failed receipt, if any."""
        for step in transfer.quote.steps:
            if transfer.cancel_requested:
                self.logger.info(f"Transfer {transfer.id}: cancelled before step {step.index}")
                return None

            failed = await self._await_dependencies(transfer, step)
            if failed is not None:
                return failed

            receipt = await self._submit(transfer, step)
            if receipt is None:
                return None

        for index in transfer.pending_steps():
            receipt = await self._confirmations(transfer, index)
            if receipt.confirmation.is_failure:
                return receipt
        return None

    async def _await_dependencies(self, transfer: Transfer, step: Step) -> Optional[StepReceipt]:
        for dep in step.depends_on:
            state = transfer.step_state(dep)
            if state is ConfirmationState.PENDING:
                await self._confirmations(transfer, dep)
                state = transfer.step_state(dep)
            if state is None:
                raise ValueError(f"Step {step.index} depends on step {dep}, which was never submitted")
            if not state.satisfies_dependency:
                return transfer.latest_receipt(dep)
        return None

    async def _submit(self, transfer: Transfer, step: Step) -> Optional[StepReceipt]:
        """Submit one step, or record it SKIPPED. None when cancelled first."""
        request = transfer.request

        if step.kind is StepKind.APPROVAL and await self._allowance_covers(transfer, step):
            receipt = StepReceipt(
                step_index=step.index,
                chain_id=step.chain_id,
                confirmation=ConfirmationState.SKIPPED,
                observed_at=self._clock(),
            )
            async with transfer.lock:
                transfer.append_receipt(receipt)
            self.logger.info(f"Transfer {transfer.id}: step {step.index} approval already covered, skipped")
            return receipt

        # Fresh per submission; quote-time gas estimates are never reused
        fees = await self._rpc.fee_params(
            step.chain_id,
            from_address=request.from_address,
            to_address=step.to_address,
            data=step.data,
            value=step.value,
        )

        async with transfer.lock:
            if transfer.cancel_requested:
                return None
            if not transfer.has_submission:
                self._ensure_fresh(transfer)

            tx_hash = await self._signer.sign_and_send(
                step.chain_id, step.to_address, step.data, step.value, fees=fees
            )
            now = self._clock()
            receipt = StepReceipt(
                step_index=step.index,
                chain_id=step.chain_id,
                confirmation=ConfirmationState.PENDING,
                tx_hash=tx_hash,
                submitted_at=now,
                observed_at=now,
                attempt=len(transfer.receipts_for(step.index)) + 1,
            )
            transfer.append_receipt(receipt)
            if transfer.state is TransferState.QUOTED:
                self._state_machine.transition(
                    transfer, TransferState.EXECUTING, reason=f"step {step.index} submitted"
                )

        self.logger.info(
            f"Transfer {transfer.id}: step {step.index} ({step.kind.value}) submitted on chain "
            f"{step.chain_id}: {tx_hash} (maxFee={fees.max_fee_per_gas}, gas={fees.gas_limit})"
        )
        return receipt

    # ─────────────────────────────────────────────────────────────────────────
    # Preflight
    # ─────────────────────────────────────────────────────────────────────────

    def _ensure_fresh(self, transfer: Transfer) -> None:
        if transfer.quote.is_expired(self._clock()):
            self.logger.info(f"Transfer {transfer.id}: quote {transfer.quote.id} expired before submission")
            raise QuoteExpired(
                f"Quote {transfer.quote.id} expired at {transfer.quote.expires_at.isoformat()}",
                quote_id=transfer.quote.id,
            )

    async def _check_balance(self, transfer: Transfer) -> None:
        request = transfer.request
        balance = await self._rpc.token_balance(request.from_chain, request.from_token, request.from_address)
        if balance < request.from_amount:
            raise InsufficientBalance(
                f"Balance {balance} is below the requested {request.from_amount}",
                required=request.from_amount,
                available=balance,
                token=request.from_token,
                chain_id=request.from_chain,
            )

    async def _allowance_covers(self, transfer: Transfer, step: Step) -> bool:
        if not step.token_address or not step.spender or step.amount is None:
            return False
        allowance = await self._rpc.allowance(
            step.chain_id, step.token_address, transfer.request.from_address, step.spender
        )
        return allowance >= step.amount

    @staticmethod
    def _surface(transfer: Transfer, error: TransferError) -> TransferError:
        """Error the caller sees: NeedsRecovery when a ticket was issued."""
        if transfer.state is TransferState.NEEDS_RECOVERY and transfer.ticket is not None:
            return NeedsRecovery(transfer.ticket).attach_transfer(transfer)
        return error.attach_transfer(transfer)
