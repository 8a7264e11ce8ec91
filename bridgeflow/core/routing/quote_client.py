"""QuoteClient: candidate routes from the route provider."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ...config import Settings, settings as default_settings
from ...providers.lifi import LifiProvider
from ..chains.registry import ChainRegistry
from ..chains.abi import encode_approve
from ..recovery.errors import NoRouteFound, ProviderUnavailable
from .models import Quote, Step, StepKind, TransferRequest

NO_ROUTE_STATUS_CODES = {400, 404, 422}


@dataclass(frozen=True)
class BridgeStatus:
    """Provider view of a (possibly cross-chain) transfer."""

    status: str                          # NOT_FOUND | INVALID | PENDING | DONE | FAILED
    substatus: Optional[str] = None      # e.g. COMPLETED | PARTIAL | REFUNDED | WAIT_DESTINATION_TRANSACTION
    message: Optional[str] = None
    receiving_tx_hash: Optional[str] = None
    receiving_amount: Optional[int] = None
    receiving_chain_id: Optional[int] = None
    tool: Optional[str] = None
    explorer_link: Optional[str] = None

    @property
    def is_done(self) -> bool:
        return self.status == "DONE"

    @property
    def in_flight(self) -> bool:
        return self.status == "PENDING"

    @property
    def is_refunded(self) -> bool:
        return self.substatus == "REFUNDED"


def _to_decimal(value: Any, default: str = "0") -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal(default)
    except (InvalidOperation, ValueError):
        return Decimal(default)


def _to_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        text = str(value)
        return int(text, 16) if text.startswith("0x") else int(text)
    except ValueError:
        return None


class QuoteClient:
    """
    Obtains candidate Quotes for a TransferRequest.

    Stateless per request: the registry is only read and no Transfer is
    touched. Every outbound call carries the request's integrator id and fee.
    """

    def __init__(
        self,
        *,
        provider: Optional[LifiProvider] = None,
        chain_registry: Optional[ChainRegistry] = None,
        config: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config or default_settings
        self._provider = provider or LifiProvider()
        self._registry = chain_registry or ChainRegistry.from_settings(self._config)
        self._logger = logger or logging.getLogger(__name__)

    # ─────────────────────────────────────────────────────────────────────────
    # Quotes
    # ─────────────────────────────────────────────────────────────────────────

    def build_payload(self, request: TransferRequest) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "integrator": request.integrator,
            "slippage": float(request.slippage),
            "order": request.order.value,
            "allowSwitchChain": False,
        }
        if request.fee is not None:
            options["fee"] = float(request.fee)
        if request.max_price_impact is not None:
            options["maxPriceImpact"] = float(request.max_price_impact)

        bridges = self._allow_deny(request.allow_bridges, request.deny_bridges)
        if bridges:
            options["bridges"] = bridges
        exchanges = self._allow_deny(request.allow_exchanges, request.deny_exchanges)
        if exchanges:
            options["exchanges"] = exchanges

        return {
            "fromChainId": request.from_chain,
            "toChainId": request.to_chain,
            "fromTokenAddress": request.from_token,
            "toTokenAddress": request.to_token,
            "fromAmount": str(request.from_amount),
            "fromAddress": request.from_address,
            "toAddress": request.recipient,
            "options": options,
        }

    @staticmethod
    def _allow_deny(allow: Optional[frozenset], deny: Optional[frozenset]) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = {}
        if allow is not None:
            result["allow"] = sorted(allow)
        if deny:
            result["deny"] = sorted(deny)
        return result

    async def get_quotes(self, request: TransferRequest) -> List[Quote]:
        """Fetch candidate routes and convert the executable ones into Quotes."""
        for chain_id in (request.from_chain, request.to_chain):
            if not self._registry.is_chain_supported(chain_id):
                raise NoRouteFound(f"Chain {chain_id} is not supported", provider=self._provider.name)

        payload = self.build_payload(request)
        data = await self._call("routes", self._provider.routes(payload))

        received_at = datetime.now(timezone.utc)
        quotes: List[Quote] = []
        for route in data.get("routes") or []:
            quote = self.parse_route(route, request, received_at=received_at)
            if quote is not None:
                quotes.append(quote)

        if not quotes:
            unavailable = data.get("unavailableRoutes") or {}
            self._logger.info(
                "No executable routes for %s→%s (unavailable=%s)",
                request.from_chain,
                request.to_chain,
                list(unavailable.keys()),
            )
            raise NoRouteFound(
                f"No viable route from chain {request.from_chain} to chain {request.to_chain}",
                provider=self._provider.name,
            )

        self._logger.info("Received %d candidate routes from %s", len(quotes), self._provider.name)
        return quotes

    def parse_route(
        self,
        route: Dict[str, Any],
        request: TransferRequest,
        *,
        received_at: Optional[datetime] = None,
    ) -> Optional[Quote]:
        """Translate one provider route; ``None`` when it is unexecutable or has no output estimate."""
        received_at = received_at or datetime.now(timezone.utc)
        provider_steps = route.get("steps") or []
        if not provider_steps:
            return None

        to_amount = _to_int(route.get("toAmount"))
        to_amount_min = _to_int(route.get("toAmountMin"))
        if not to_amount or not to_amount_min:
            # No output estimate means no delivery tolerance to check against
            self._logger.warning("Dropping route %s without toAmount/toAmountMin", route.get("id"))
            return None

        steps: List[Step] = []
        bridges: set = set()
        exchanges: set = set()
        duration = 0
        fee_usd = Decimal(0)
        explicit_impact: Optional[Decimal] = None

        for provider_step in provider_steps:
            action = provider_step.get("action") or {}
            estimate = provider_step.get("estimate") or {}
            step_chain = _to_int(action.get("fromChainId"))
            if step_chain != request.from_chain:
                # Needs a signature on another chain after the bridge lands
                return None

            depends_on: Tuple[int, ...] = (steps[-1].index,) if steps else ()
            from_token = ((action.get("fromToken") or {}).get("address")) or request.from_token
            from_amount = _to_int(action.get("fromAmount")) or request.from_amount
            approval_address = estimate.get("approvalAddress")

            if approval_address and not ChainRegistry.is_native(from_token):
                approval = Step(
                    index=len(steps),
                    kind=StepKind.APPROVAL,
                    chain_id=step_chain,
                    to_address=from_token,
                    data=encode_approve(approval_address, from_amount),
                    depends_on=depends_on,
                    token_address=from_token,
                    spender=approval_address,
                    amount=from_amount,
                )
                steps.append(approval)
                depends_on = (approval.index,)

            is_bridge = _to_int(action.get("toChainId")) != step_chain
            tx_request = provider_step.get("transactionRequest") or {}
            included = provider_step.get("includedSteps") or []
            for sub in included or [provider_step]:
                tool = (sub.get("tool") or "").lower()
                if not tool:
                    continue
                if sub.get("type") == "cross":
                    bridges.add(tool)
                elif sub.get("type") == "swap":
                    exchanges.add(tool)

            steps.append(
                Step(
                    index=len(steps),
                    kind=StepKind.BRIDGE_DEPOSIT if is_bridge else StepKind.CONTRACT_CALL,
                    chain_id=step_chain,
                    to_address=tx_request.get("to") or "",
                    data=tx_request.get("data") or "0x",
                    value=_to_int(tx_request.get("value")) or 0,
                    depends_on=depends_on,
                    tool=provider_step.get("tool"),
                    included_tools=tuple(s.get("tool") for s in included if s.get("tool")),
                    provider_step_id=provider_step.get("id"),
                    token_address=from_token,
                    amount=from_amount,
                )
            )

            duration += int(_to_decimal(estimate.get("executionDuration")))
            for fee in estimate.get("feeCosts") or []:
                fee_usd += _to_decimal(fee.get("amountUSD"))
            if estimate.get("priceImpact") is not None:
                impact = _to_decimal(estimate.get("priceImpact"))
                explicit_impact = impact if explicit_impact is None else max(explicit_impact, impact)

        if route.get("priceImpact") is not None:
            explicit_impact = _to_decimal(route.get("priceImpact"))

        price_impact = explicit_impact if explicit_impact is not None else self._usd_price_impact(route)
        gas_usd = _to_decimal(route.get("gasCostUSD"))

        return Quote(
            id=str(route.get("id") or provider_steps[0].get("id")),
            request=request,
            steps=tuple(steps),
            to_amount=to_amount,
            to_amount_min=to_amount_min,
            price_impact=price_impact,
            estimated_duration_seconds=duration,
            estimated_cost_usd=gas_usd + fee_usd,
            expires_at=received_at + timedelta(seconds=self._config.quote_ttl_seconds),
            bridges=frozenset(bridges),
            exchanges=frozenset(exchanges),
            tags=tuple(route.get("tags") or ()),
            received_at=received_at,
            raw=route,
        )

    @staticmethod
    def _usd_price_impact(route: Dict[str, Any]) -> Decimal:
        from_usd = _to_decimal(route.get("fromAmountUSD"))
        to_usd = _to_decimal(route.get("toAmountUSD"))
        if from_usd <= 0:
            return Decimal(0)
        return max(Decimal(0), (from_usd - to_usd) / from_usd)

    # ─────────────────────────────────────────────────────────────────────────
    # Materialization, status, gas
    # ─────────────────────────────────────────────────────────────────────────

    async def materialize(self, quote: Quote) -> Quote:
        """Return a copy of ``quote`` whose provider steps carry encoded call data."""
        if quote.is_materialized:
            return quote

        raw_steps = {s.get("id"): s for s in (quote.raw.get("steps") or [])}
        pending = [
            step for step in quote.steps
            if not step.is_materialized and step.provider_step_id in raw_steps
        ]
        populated = await asyncio.gather(
            *(
                self._call("stepTransaction", self._provider.step_transaction(
                    self._with_integrator(raw_steps[step.provider_step_id], quote.request)
                ))
                for step in pending
            )
        )

        by_index = {step.index: step for step in quote.steps}
        for step, response in zip(pending, populated):
            tx_request = response.get("transactionRequest") or {}
            if not tx_request.get("data"):
                raise NoRouteFound(
                    f"Provider returned no transaction for step {step.provider_step_id}",
                    provider=self._provider.name,
                )
            by_index[step.index] = replace(
                step,
                to_address=tx_request.get("to") or step.to_address,
                data=tx_request["data"],
                value=_to_int(tx_request.get("value")) or 0,
            )

        return replace(quote, steps=tuple(by_index[i] for i in sorted(by_index)))

    @staticmethod
    def _with_integrator(step: Dict[str, Any], request: TransferRequest) -> Dict[str, Any]:
        enriched = dict(step)
        enriched["integrator"] = request.integrator
        if request.fee is not None:
            enriched["fee"] = float(request.fee)
        return enriched

    async def get_status(
        self,
        tx_hash: str,
        *,
        from_chain: int,
        to_chain: int,
        bridge: Optional[str] = None,
    ) -> BridgeStatus:
        try:
            data = await self._call(
                "status",
                self._provider.status(tx_hash, from_chain=from_chain, to_chain=to_chain, bridge=bridge),
            )
        except NoRouteFound:
            # Provider has not indexed the transaction yet
            return BridgeStatus(status="NOT_FOUND")

        receiving = data.get("receiving") or {}
        return BridgeStatus(
            status=str(data.get("status") or "NOT_FOUND").upper(),
            substatus=data.get("substatus"),
            message=data.get("substatusMessage"),
            receiving_tx_hash=receiving.get("txHash"),
            receiving_amount=_to_int(receiving.get("amount")),
            receiving_chain_id=_to_int(receiving.get("chainId")),
            tool=data.get("tool"),
            explorer_link=data.get("lifiExplorerLink"),
        )

    async def provider_health(self) -> Dict[str, Any]:
        return {"name": self._provider.name, **(await self._provider.health_check())}

    async def _call(self, operation: str, awaitable: Any) -> Dict[str, Any]:
        """Await a provider call, mapping transport failures onto the taxonomy."""
        try:
            return await awaitable
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            detail = (exc.response.text or "").strip()[:200]
            self._logger.warning("LI.FI %s failed (%s): %s", operation, status_code, detail)
            if status_code in NO_ROUTE_STATUS_CODES:
                raise NoRouteFound(detail or "Provider found no route", provider=self._provider.name) from exc
            raise ProviderUnavailable(
                f"LI.FI {operation} returned {status_code}",
                provider=self._provider.name,
                status_code=status_code,
            ) from exc
        except httpx.RequestError as exc:
            self._logger.warning("LI.FI %s request error: %s", operation, exc)
            raise ProviderUnavailable(
                f"LI.FI {operation} unreachable: {exc.__class__.__name__}",
                provider=self._provider.name,
            ) from exc
