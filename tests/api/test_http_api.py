"""
Tests for the HTTP surface

The orchestrator and name resolver are replaced through FastAPI dependency
overrides; the error taxonomy maps onto status codes.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from bridgeflow.api.errors import status_for
from bridgeflow.api.transfers import get_name_resolver
from bridgeflow.core.chains.registry import ChainRegistry
from bridgeflow.core.execution.models import Transfer, TransferState
from bridgeflow.core.orchestrator import get_orchestrator
from bridgeflow.core.recovery.errors import (
    InsufficientBalance,
    InvalidTransferRequest,
    NoRouteFound,
    ProviderUnavailable,
    QuoteExpired,
    RouteRejected,
    RpcTimeout,
)
from bridgeflow.core.routing.models import Rejected, RejectionReason
from bridgeflow.main import app

from conftest import SENDER, USDC_OPTIMISM, USDC_POLYGON, make_quote, make_request

client = TestClient(app)

PAYLOAD = {
    "from_chain": "polygon",
    "to_chain": 10,
    "from_token": USDC_POLYGON,
    "to_token": USDC_OPTIMISM,
    "from_amount": 1_000_000,
    "from_address": SENDER,
}


@pytest.fixture
def orchestrator(settings):
    fake = MagicMock()
    fake.chain_registry = ChainRegistry.from_settings(settings)
    fake.engine = object()
    fake.active_count = 0
    fake.quote_client.provider_health = AsyncMock(return_value={"name": "lifi", "status": "healthy", "latency_ms": 12})
    app.dependency_overrides[get_orchestrator] = lambda: fake
    yield fake
    app.dependency_overrides.clear()


@pytest.fixture
def resolver():
    fake = MagicMock()
    fake.resolve = AsyncMock(return_value="0x" + "99" * 20)
    app.dependency_overrides[get_name_resolver] = lambda: fake
    return fake


# =============================================================================
# Transfers
# =============================================================================

class TestTransfersApi:
    """Tests for /transfers."""

    def test_create_transfer(self, orchestrator):
        quote = make_quote()
        transfer = Transfer(request=quote.request, quote=quote)
        orchestrator.start = AsyncMock(return_value=transfer)

        resp = client.post("/transfers", json=PAYLOAD)

        assert resp.status_code == 201, resp.json()
        body = resp.json()
        assert body["id"] == transfer.id
        assert body["state"] == "quoted"
        assert body["quote"]["id"] == quote.id

        request = orchestrator.start.await_args.args[0]
        assert request.from_chain == 137
        assert request.to_chain == 10
        assert request.slippage == Decimal("0.005")
        assert request.integrator == "bridgeflow"

    def test_recipient_name_is_resolved(self, orchestrator, resolver):
        quote = make_quote()
        orchestrator.start = AsyncMock(return_value=Transfer(request=quote.request, quote=quote))

        resp = client.post("/transfers", json={**PAYLOAD, "recipient_name": "alice.eth"})

        assert resp.status_code == 201
        resolver.resolve.assert_awaited_once_with("alice.eth")
        assert orchestrator.start.await_args.args[0].to_address == "0x" + "99" * 20

    def test_unknown_chain_alias(self, orchestrator):
        resp = client.post("/transfers", json={**PAYLOAD, "from_chain": "solana"})

        assert resp.status_code == 400
        assert resp.json()["error"] == "validation"
        assert resp.json()["context"]["details"]["field"] == "from_chain"

    def test_same_chain_and_token(self, orchestrator):
        resp = client.post("/transfers", json={**PAYLOAD, "to_chain": 137, "to_token": USDC_POLYGON})
        assert resp.status_code == 400

    def test_no_signer_is_service_unavailable(self, orchestrator):
        orchestrator.start = AsyncMock(side_effect=ProviderUnavailable("No signing identity configured", provider="signer"))

        resp = client.post("/transfers", json=PAYLOAD)

        assert resp.status_code == 503
        assert resp.json()["context"]["provider"] == "signer"

    def test_get_transfer(self, orchestrator):
        quote = make_quote()
        transfer = Transfer(request=quote.request, quote=quote)
        orchestrator.get = MagicMock(return_value=transfer)
        orchestrator.refresh = AsyncMock(return_value=transfer)

        resp = client.get(f"/transfers/{transfer.id}")

        assert resp.status_code == 200
        body = resp.json()
        assert body["state"] == "quoted"
        assert body["receipts"] == []
        assert body["ticket"] is None
        assert resp.headers["x-request-id"]

    def test_get_unknown_transfer(self, orchestrator):
        orchestrator.get = MagicMock(side_effect=KeyError("missing"))

        resp = client.get("/transfers/missing")

        assert resp.status_code == 404

    def test_cancel_transfer(self, orchestrator):
        quote = make_quote()
        transfer = Transfer(request=quote.request, quote=quote, state=TransferState.CANCELLED, cancel_requested=True)
        orchestrator.get = MagicMock(return_value=transfer)
        orchestrator.cancel = AsyncMock(return_value=transfer)

        resp = client.post(f"/transfers/{transfer.id}/cancel")

        assert resp.status_code == 200
        assert resp.json() == {"id": transfer.id, "state": "cancelled", "cancelRequested": True}

    def test_list_transfers(self, orchestrator):
        quote = make_quote()
        transfer = Transfer(request=quote.request, quote=quote)
        orchestrator.list_transfers = MagicMock(return_value=[transfer])

        resp = client.get("/transfers")

        assert resp.status_code == 200
        assert resp.json()[0]["id"] == transfer.id
        assert resp.json()[0]["quoteId"] == quote.id


# =============================================================================
# Quotes
# =============================================================================

class TestQuotesApi:
    """Tests for /quotes previews."""

    def test_preview_selection(self, orchestrator):
        request = make_request()
        risky = make_quote(request, id="risky", price_impact=Decimal("0.02"))
        safe = make_quote(request, id="safe")
        orchestrator.preview = AsyncMock(return_value=([risky, safe], safe))

        resp = client.post("/quotes", json={**PAYLOAD, "max_price_impact": "0.01", "order": "CHEAPEST"})

        assert resp.status_code == 200
        body = resp.json()
        assert [c["id"] for c in body["candidates"]] == ["risky", "safe"]
        assert body["selected"]["id"] == "safe"
        assert body["rejection"] is None
        assert orchestrator.preview.await_args.args[0].max_price_impact == Decimal("0.01")

    def test_preview_rejection(self, orchestrator):
        risky = make_quote(id="risky", price_impact=Decimal("0.02"))
        rejected = Rejected(
            reason=RejectionReason.PRICE_IMPACT_EXCEEDED,
            excluded=(("risky", RejectionReason.PRICE_IMPACT_EXCEEDED),),
        )
        orchestrator.preview = AsyncMock(return_value=([risky], rejected))

        resp = client.post("/quotes", json=PAYLOAD)

        body = resp.json()
        assert body["selected"] is None
        assert body["rejection"] == {
            "reason": "PriceImpactExceeded",
            "excluded": [{"quoteId": "risky", "reason": "PriceImpactExceeded"}],
        }

    def test_no_route_is_404(self, orchestrator):
        orchestrator.preview = AsyncMock(side_effect=NoRouteFound("No viable route", provider="lifi"))

        resp = client.post("/quotes", json=PAYLOAD)

        assert resp.status_code == 404
        assert resp.json()["error"] == "no_route"


# =============================================================================
# Health and error mapping
# =============================================================================

class TestHealthAndErrors:
    def test_healthz(self, orchestrator):
        resp = client.get("/healthz")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["signer_configured"] is True
        assert 137 in body["chains"]

    def test_healthz_degraded(self, orchestrator):
        orchestrator.quote_client.provider_health = AsyncMock(return_value={"name": "lifi", "status": "error"})
        orchestrator.engine = None

        body = client.get("/healthz").json()

        assert body["status"] == "degraded"
        assert body["signer_configured"] is False

    def test_root(self):
        assert client.get("/").json()["health"] == "/healthz"

    @pytest.mark.parametrize("error,status", [
        (InvalidTransferRequest("bad"), 400),
        (NoRouteFound(), 404),
        (RouteRejected("PriceImpactExceeded"), 422),
        (InsufficientBalance(), 422),
        (QuoteExpired(), 409),
        (ProviderUnavailable(), 503),
        (ProviderUnavailable("boom", status_code=500), 502),
        (RpcTimeout(), 504),
    ])
    def test_status_mapping(self, error, status):
        assert status_for(error) == status
