"""Async client for the LI.FI routing API."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ..config import settings


class LifiProvider:
    """Thin wrapper around https://li.quest/v1 endpoints.

    Raises ``httpx.HTTPStatusError`` / ``httpx.RequestError`` untouched; the
    quote client maps them onto the transfer error taxonomy.
    """

    name = "lifi"

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.lifi_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.lifi_api_key
        self.timeout_s = timeout_s or settings.provider_timeout_seconds
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
            "user-agent": "BridgeflowLifiClient/2026-10",
        }
        if self.api_key:
            headers["x-lifi-api-key"] = self.api_key
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_s,
            transport=self._transport,
        ) as client:
            response = await client.request(
                method,
                path,
                json=json,
                params={k: v for k, v in (params or {}).items() if v is not None},
                headers=self._headers(),
            )
            response.raise_for_status()
            return response

    async def routes(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Request candidate routes (``POST /advanced/routes``).

        `payload` follows https://docs.li.fi (fromChainId, toChainId,
        fromTokenAddress, toTokenAddress, fromAmount, fromAddress, options…).
        """
        resp = await self._request("POST", "/advanced/routes", json=payload)
        return resp.json()

    async def step_transaction(self, step: Dict[str, Any]) -> Dict[str, Any]:
        """Populate ``transactionRequest`` for one route step."""
        resp = await self._request("POST", "/advanced/stepTransaction", json=step)
        return resp.json()

    async def status(
        self,
        tx_hash: str,
        *,
        from_chain: Optional[int] = None,
        to_chain: Optional[int] = None,
        bridge: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Bridge/transfer status for a source-chain transaction."""
        params = {"txHash": tx_hash, "fromChain": from_chain, "toChain": to_chain, "bridge": bridge}
        resp = await self._request("GET", "/status", params=params)
        return resp.json()

    async def health_check(self) -> Dict[str, Any]:
        try:
            resp = await self._request("GET", "/chains", params={"chainTypes": "EVM"})
            return {"status": "healthy", "latency_ms": int(resp.elapsed.total_seconds() * 1000)}
        except httpx.HTTPError as e:
            return {"status": "error", "reason": str(e)}
