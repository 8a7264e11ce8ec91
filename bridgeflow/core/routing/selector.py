"""Pure route selection policy."""

from collections import Counter
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple, Union

from .models import Quote, Rejected, RejectionReason, RouteOrder, RoutePolicy


class RouteSelector:
    """
    Picks one Quote from the provider's candidates, or rejects them all.

    Exclusion happens before ranking:
    - price impact above the policy ceiling
    - any bridge/exchange outside the allow-list or inside the deny-list

    Ranking: primary metric by ``policy.order`` (highest estimated output for
    CHEAPEST, shortest estimated duration for FASTEST), then fewer steps, then
    lower estimated cost, then quote id so identical inputs always pick the
    same quote.

    No I/O; the selector holds no state between calls.
    """

    def select(self, quotes: Sequence[Quote], policy: RoutePolicy) -> Union[Quote, Rejected]:
        if not quotes:
            return Rejected(reason=RejectionReason.NO_CANDIDATES)

        eligible: List[Quote] = []
        excluded: List[Tuple[str, RejectionReason]] = []
        for quote in quotes:
            reason = self.exclusion_reason(quote, policy)
            if reason is None:
                eligible.append(quote)
            else:
                excluded.append((quote.id, reason))

        if not eligible:
            return Rejected(reason=self._dominant_reason(excluded), excluded=tuple(excluded))

        return min(eligible, key=lambda q: self._rank_key(q, policy.order))

    def exclusion_reason(self, quote: Quote, policy: RoutePolicy) -> Optional[RejectionReason]:
        if policy.max_price_impact is not None and quote.price_impact > policy.max_price_impact:
            return RejectionReason.PRICE_IMPACT_EXCEEDED
        if not self._protocols_allowed(quote, policy):
            return RejectionReason.PROTOCOL_NOT_ALLOWED
        return None

    @staticmethod
    def _protocols_allowed(quote: Quote, policy: RoutePolicy) -> bool:
        bridges = {b.lower() for b in quote.bridges}
        exchanges = {e.lower() for e in quote.exchanges}

        if policy.allow_bridges is not None and not bridges <= policy.allow_bridges:
            return False
        if policy.allow_exchanges is not None and not exchanges <= policy.allow_exchanges:
            return False
        if bridges & policy.deny_bridges or exchanges & policy.deny_exchanges:
            return False
        return True

    @staticmethod
    def _rank_key(quote: Quote, order: RouteOrder) -> Tuple[Decimal, int, Decimal, str]:
        if order is RouteOrder.FASTEST:
            primary = Decimal(quote.estimated_duration_seconds)
        else:
            primary = Decimal(-quote.to_amount)
        return (primary, len(quote.steps), quote.estimated_cost_usd, quote.id)

    @staticmethod
    def _dominant_reason(excluded: Sequence[Tuple[str, RejectionReason]]) -> RejectionReason:
        counts = Counter(reason for _, reason in excluded)
        # Ties resolve to price impact: it is checked first per quote
        priority = [RejectionReason.PRICE_IMPACT_EXCEEDED, RejectionReason.PROTOCOL_NOT_ALLOWED]
        return max(priority, key=lambda r: (counts.get(r, 0), -priority.index(r)))
