"""
Tests for the RouteSelector

Exclusion (price impact, protocol lists), ranking and determinism.
"""

import itertools
from decimal import Decimal

import pytest

from bridgeflow.core.routing.models import (
    Rejected,
    RejectionReason,
    RouteOrder,
    RoutePolicy,
)
from bridgeflow.core.routing.selector import RouteSelector

from conftest import bridge_steps, make_quote, make_request


@pytest.fixture
def selector() -> RouteSelector:
    return RouteSelector()


# =============================================================================
# Exclusion
# =============================================================================

class TestExclusion:
    """Quotes outside policy are never selected."""

    def test_impact_ceiling_picks_compliant_route(self, selector):
        """137 → 10: better output at 2% impact loses to 0.3% under a 1% ceiling."""
        request = make_request()
        risky = make_quote(request, id="high-impact", to_amount=999_500, price_impact=Decimal("0.02"))
        safe = make_quote(request, id="low-impact", to_amount=997_000, price_impact=Decimal("0.003"))

        policy = RoutePolicy(max_price_impact=Decimal("0.01"))
        chosen = selector.select([risky, safe], policy)

        assert chosen is safe

    def test_all_over_ceiling_rejected(self, selector):
        """Every candidate above the ceiling yields PRICE_IMPACT_EXCEEDED."""
        quotes = [
            make_quote(id="a", price_impact=Decimal("0.02")),
            make_quote(id="b", price_impact=Decimal("0.05")),
        ]
        result = selector.select(quotes, RoutePolicy(max_price_impact=Decimal("0.01")))

        assert isinstance(result, Rejected)
        assert not result
        assert result.reason is RejectionReason.PRICE_IMPACT_EXCEEDED
        assert {quote_id for quote_id, _ in result.excluded} == {"a", "b"}

    def test_impact_equal_to_ceiling_is_allowed(self, selector):
        quote = make_quote(price_impact=Decimal("0.01"))
        assert selector.select([quote], RoutePolicy(max_price_impact=Decimal("0.01"))) is quote

    def test_deny_list_excludes_bridge(self, selector):
        """A denied bridge removes the route even if it ranks first."""
        across = make_quote(id="across", to_amount=999_000, bridges=frozenset({"across"}))
        hop = make_quote(id="hop", to_amount=990_000, bridges=frozenset({"hop"}))

        chosen = selector.select([across, hop], RoutePolicy(deny_bridges=frozenset({"across"})))

        assert chosen is hop

    def test_allow_list_requires_every_protocol(self, selector):
        """A route using any protocol outside the allow-list is excluded."""
        mixed = make_quote(id="mixed", bridges=frozenset({"across"}), exchanges=frozenset({"1inch"}))
        policy = RoutePolicy(allow_bridges=frozenset({"across"}), allow_exchanges=frozenset({"uniswap"}))

        result = selector.select([mixed], policy)

        assert isinstance(result, Rejected)
        assert result.reason is RejectionReason.PROTOCOL_NOT_ALLOWED

    def test_no_candidates(self, selector):
        result = selector.select([], RoutePolicy())
        assert isinstance(result, Rejected)
        assert result.reason is RejectionReason.NO_CANDIDATES

    def test_dominant_reason_prefers_impact_on_tie(self, selector):
        quotes = [
            make_quote(id="impact", price_impact=Decimal("0.5")),
            make_quote(id="denied", bridges=frozenset({"hop"})),
        ]
        policy = RoutePolicy(max_price_impact=Decimal("0.01"), deny_bridges=frozenset({"hop"}))

        result = selector.select(quotes, policy)

        assert result.reason is RejectionReason.PRICE_IMPACT_EXCEEDED

    def test_policy_from_request_falls_back_to_default_ceiling(self):
        request = make_request(deny_bridges=["Hop "])
        policy = RoutePolicy.from_request(request, default_max_price_impact=Decimal("0.01"))

        assert policy.max_price_impact == Decimal("0.01")
        assert policy.deny_bridges == frozenset({"hop"})


# =============================================================================
# Ranking
# =============================================================================

class TestRanking:
    """Ordering and tie-breaks."""

    def test_cheapest_prefers_highest_output(self, selector):
        low = make_quote(id="low", to_amount=990_000, cost=Decimal("0.10"))
        high = make_quote(id="high", to_amount=998_000, cost=Decimal("2.00"))

        assert selector.select([low, high], RoutePolicy(order=RouteOrder.CHEAPEST)) is high

    def test_fastest_prefers_shortest_duration(self, selector):
        slow = make_quote(id="slow", duration=900, to_amount=999_000)
        fast = make_quote(id="fast", duration=60, to_amount=990_000)

        assert selector.select([slow, fast], RoutePolicy(order=RouteOrder.FASTEST)) is fast

    def test_tie_breaks_on_step_count_then_cost_then_id(self, selector):
        request = make_request()

        two_steps = make_quote(request, id="a", steps=bridge_steps(request))
        one_step = make_quote(request, id="b", steps=bridge_steps(request, with_approval=False))
        assert selector.select([two_steps, one_step], RoutePolicy()) is one_step

        cheap = make_quote(request, id="z", cost=Decimal("0.10"))
        pricey = make_quote(request, id="y", cost=Decimal("0.50"))
        assert selector.select([pricey, cheap], RoutePolicy()) is cheap

        first = make_quote(request, id="alpha")
        second = make_quote(request, id="beta")
        assert selector.select([second, first], RoutePolicy()) is first

    def test_selection_is_independent_of_input_order(self, selector):
        """Identical inputs always pick the same quote."""
        quotes = [
            make_quote(id="q1", to_amount=995_000),
            make_quote(id="q2", to_amount=997_000),
            make_quote(id="q3", to_amount=997_000, cost=Decimal("0.10")),
            make_quote(id="q4", to_amount=999_000, price_impact=Decimal("0.5")),
        ]
        policy = RoutePolicy(max_price_impact=Decimal("0.01"))

        picks = {selector.select(list(p), policy).id for p in itertools.permutations(quotes)}

        assert picks == {"q3"}
