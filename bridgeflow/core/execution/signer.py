"""
Signing identities.

The engine only ever sees a ``SigningIdentity``: something that takes an
unsigned call and returns the broadcast transaction hash. Key material
stays on the other side of that interface.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

import httpx

from ...config import settings
from ..recovery.errors import ProviderUnavailable
from .models import GasParams


@runtime_checkable
class SigningIdentity(Protocol):
    async def sign_and_send(
        self,
        chain_id: int,
        to_address: str,
        data: str,
        value: int,
        *,
        fees: GasParams,
    ) -> str:
        ...


class RemoteSigner:
    """
    Signs through an external signer service.

    POST ``{signer_url}/sign-and-send`` with the unsigned transaction, expects
    ``{"txHash": "0x..."}`` back.
    """

    name = "signer"

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        from_address: Optional[str] = None,
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = (base_url or settings.signer_url).rstrip("/")
        if not self.base_url:
            raise ValueError("Signer URL is not configured")
        self.from_address = from_address
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout_s, transport=transport)
        self.logger = logger or logging.getLogger(__name__)

    async def sign_and_send(
        self,
        chain_id: int,
        to_address: str,
        data: str,
        value: int,
        *,
        fees: GasParams,
    ) -> str:
        tx = {
            "chainId": chain_id,
            "to": to_address,
            "data": data,
            "value": hex(value),
            **fees.to_dict(),
        }
        if self.from_address:
            tx["from"] = self.from_address

        try:
            response = await self._client.post("/sign-and-send", json=tx)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(
                f"Signer rejected transaction: {e.response.text[:200]}",
                provider=self.name,
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise ProviderUnavailable(f"Signer unreachable: {e!r}", provider=self.name) from e

        try:
            tx_hash = response.json().get("txHash")
        except (ValueError, AttributeError) as e:
            raise ProviderUnavailable(
                f"Signer returned an unreadable body: {response.text[:200]}", provider=self.name
            ) from e
        if not tx_hash:
            raise ProviderUnavailable("Signer returned no transaction hash", provider=self.name)

        self.logger.info(f"Signer broadcast tx {tx_hash} on chain {chain_id}")
        return tx_hash

    async def close(self) -> None:
        await self._client.aclose()
