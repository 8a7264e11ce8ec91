"""
Transfer orchestrator.

Owns the Transfers of this process: quote → select → materialize, then
execute and track each one as its own task. Expired quotes are re-quoted
and re-selected automatically, a bounded number of times.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple, Union

from ..config import Settings, settings as default_settings
from .chains.registry import ChainRegistry
from .execution.engine import ExecutionEngine
from .execution.models import Transfer, TransferState
from .execution.rpc import ChainRpcClient
from .execution.signer import RemoteSigner, SigningIdentity
from .execution.state_machine import TransferStateMachine
from .recovery.coordinator import RecoveryCoordinator
from .recovery.errors import ErrorCategory, ProviderUnavailable, QuoteExpired, RouteRejected, TransferError
from .routing.models import Quote, Rejected, RoutePolicy, TransferRequest
from .routing.quote_client import QuoteClient
from .routing.selector import RouteSelector
from .tracking.tracker import StatusTracker


class TransferOrchestrator:
    """
    In-memory registry of transfers plus the wiring between components.

    Every collaborator can be injected; anything omitted is built from
    ``config``. Without a signing identity, quoting works but starting a
    transfer raises ``ProviderUnavailable``.
    """

    def __init__(
        self,
        *,
        config: Optional[Settings] = None,
        chain_registry: Optional[ChainRegistry] = None,
        quote_client: Optional[QuoteClient] = None,
        selector: Optional[RouteSelector] = None,
        rpc: Optional[ChainRpcClient] = None,
        signer: Optional[SigningIdentity] = None,
        state_machine: Optional[TransferStateMachine] = None,
        recovery: Optional[RecoveryCoordinator] = None,
        tracker: Optional[StatusTracker] = None,
        engine: Optional[ExecutionEngine] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or default_settings
        self.logger = logger or logging.getLogger(__name__)
        self.chain_registry = chain_registry or ChainRegistry.from_settings(self.config)
        self.quote_client = quote_client or QuoteClient(chain_registry=self.chain_registry, config=self.config)
        self.selector = selector or RouteSelector()
        self.rpc = rpc or ChainRpcClient(self.chain_registry, config=self.config)
        self.state_machine = state_machine or TransferStateMachine()
        self.recovery = recovery or RecoveryCoordinator(
            self.quote_client, state_machine=self.state_machine, config=self.config
        )
        self.tracker = tracker or StatusTracker(
            self.rpc,
            self.quote_client,
            self.recovery,
            state_machine=self.state_machine,
            config=self.config,
        )

        if signer is None and engine is None and self.config.has_signer:
            signer = RemoteSigner(self.config.signer_url)
        self.signer = signer
        self.engine = engine
        if self.engine is None and signer is not None:
            self.engine = ExecutionEngine(
                signer,
                self.rpc,
                self.recovery,
                self.tracker.await_confirmation,
                state_machine=self.state_machine,
            )

        self._transfers: Dict[str, Transfer] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Quoting
    # ─────────────────────────────────────────────────────────────────────────

    def policy_for(self, request: TransferRequest) -> RoutePolicy:
        return RoutePolicy.from_request(request, default_max_price_impact=self.config.default_max_price_impact)

    async def preview(self, request: TransferRequest) -> Tuple[List[Quote], Union[Quote, Rejected]]:
        """Candidates and the selector's decision, without executing anything."""
        quotes = await self.quote_client.get_quotes(request)
        return quotes, self.selector.select(quotes, self.policy_for(request))

    async def quote(self, request: TransferRequest) -> Quote:
        """Select a route and fetch its call data."""
        _, selection = await self.preview(request)
        if isinstance(selection, Rejected):
            raise RouteRejected(
                selection.reason.value,
                message=f"All routes rejected by policy: {selection.reason.value}",
            )
        return await self.quote_client.materialize(selection)

    # ─────────────────────────────────────────────────────────────────────────
    # Transfers
    # ─────────────────────────────────────────────────────────────────────────

    async def create_transfer(self, request: TransferRequest) -> Transfer:
        quote = await self.quote(request)
        transfer = Transfer(request=request, quote=quote)
        self._transfers[transfer.id] = transfer
        self.logger.info(
            f"Transfer {transfer.id}: quote {quote.id} selected "
            f"({len(quote.steps)} steps, toAmount={quote.to_amount}, impact={quote.price_impact})"
        )
        return transfer

    async def start(self, request: TransferRequest) -> Transfer:
        """Create a transfer and run it in the background."""
        if self.engine is None:
            raise ProviderUnavailable("No signing identity configured", provider="signer")

        transfer = await self.create_transfer(request)
        self._tasks[transfer.id] = asyncio.create_task(self._drive(transfer), name=f"transfer-{transfer.id}")
        return transfer

    async def run_transfer(self, transfer: Transfer) -> Transfer:
        """Execute (re-quoting expired quotes), then track to a terminal state."""
        if self.engine is None:
            raise ProviderUnavailable("No signing identity configured", provider="signer")

        while True:
            try:
                await self.engine.execute(transfer)
                break
            except QuoteExpired as e:
                await self._requote(transfer, e)

        if not transfer.state.is_terminal and not transfer.cancel_requested:
            await self.tracker.run(transfer)
        return transfer

    async def _requote(self, transfer: Transfer, expired: QuoteExpired) -> None:
        if transfer.requotes >= self.config.max_requotes:
            async with transfer.lock:
                self.state_machine.transition(
                    transfer,
                    TransferState.FAILED,
                    reason=f"quote expired after {transfer.requotes} re-quotes",
                )
            raise expired.attach_transfer(transfer)

        self.logger.info(f"Transfer {transfer.id}: quote {transfer.quote.id} expired, re-quoting")
        try:
            fresh = await self.quote(transfer.request)
        except TransferError as e:
            async with transfer.lock:
                if transfer.state is TransferState.QUOTED:
                    self.state_machine.transition(
                        transfer, TransferState.FAILED, reason=f"re-quote failed: {e.message}"
                    )
            raise e.attach_transfer(transfer)

        async with transfer.lock:
            transfer.replace_quote(fresh)

    async def _drive(self, transfer: Transfer) -> None:
        try:
            await self.run_transfer(transfer)
        except TransferError as e:
            transfer.error = {"message": e.message, **e.context.to_dict()}
            self.logger.warning(f"Transfer {transfer.id} ended in {transfer.state.value}: {e.message}")
        except asyncio.CancelledError:
            self.logger.info(f"Transfer {transfer.id}: task cancelled in {transfer.state.value}")
            raise
        except Exception as e:
            self.logger.exception(f"Transfer {transfer.id}: unexpected error in {transfer.state.value}")
            error = TransferError(f"Unexpected {type(e).__name__}: {e}", category=ErrorCategory.UNKNOWN)
            await self.recovery.handle_execution_error(transfer, error)
            error.attach_transfer(transfer)
            transfer.error = {"message": error.message, **error.context.to_dict()}
        finally:
            self._tasks.pop(transfer.id, None)

    async def cancel(self, transfer_id: str) -> Transfer:
        """
        Cancel a transfer.

        Before any submission this is final (CANCELLED, no on-chain effect).
        Afterwards it is advisory: polling stops and the transfer is
        ABANDONED, but its receipts still refresh on query.
        """
        transfer = self.get(transfer_id)
        async with transfer.lock:
            if transfer.state.is_terminal:
                return transfer
            transfer.cancel_requested = True
            if transfer.has_submission:
                self.state_machine.transition(
                    transfer, TransferState.ABANDONED, reason="cancelled after submission"
                )
            else:
                self.state_machine.transition(
                    transfer, TransferState.CANCELLED, reason="cancelled before submission"
                )

        task = self._tasks.get(transfer_id)
        if task is not None and not task.done():
            task.cancel()
        return transfer

    def get(self, transfer_id: str) -> Transfer:
        try:
            return self._transfers[transfer_id]
        except KeyError:
            raise KeyError(f"Unknown transfer {transfer_id}") from None

    async def refresh(self, transfer_id: str) -> Transfer:
        """Current view of a transfer; abandoned ones get a fresh receipt poll."""
        transfer = self.get(transfer_id)
        if transfer.state is TransferState.ABANDONED:
            await self.tracker.refresh_receipts(transfer)
        return transfer

    def list_transfers(self) -> List[Transfer]:
        return sorted(self._transfers.values(), key=lambda t: t.created_at)

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._transfers.values() if not t.state.is_terminal)

    async def close(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.rpc.close()
        if isinstance(self.signer, RemoteSigner):
            await self.signer.close()


# Singleton instance
_orchestrator: Optional[TransferOrchestrator] = None


def get_orchestrator() -> TransferOrchestrator:
    """Get the process-wide orchestrator instance."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = TransferOrchestrator()
    return _orchestrator
