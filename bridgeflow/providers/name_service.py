"""Recipient name resolution (ENS-style names to addresses)."""

from typing import Optional

import httpx

from ..config import settings
from ..core.recovery.errors import InvalidTransferRequest, ProviderUnavailable


class NameResolver:
    """Resolves a human-readable recipient via ``GET {base_url}/resolve/{name}``."""

    name = "name_service"

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else settings.name_service_url).rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    async def ready(self) -> bool:
        return bool(self.base_url)

    async def resolve(self, name: str) -> str:
        if not await self.ready():
            raise ProviderUnavailable("Name service is not configured", provider=self.name)

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout_s, transport=self._transport
            ) as client:
                response = await client.get(f"/resolve/{name}")
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise InvalidTransferRequest(f"Unknown recipient name {name}", field_name="recipient_name") from e
            raise ProviderUnavailable(
                f"Name service returned {e.response.status_code}",
                provider=self.name,
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise ProviderUnavailable(f"Name service unreachable: {e!r}", provider=self.name) from e

        address = response.json().get("address")
        if not address:
            raise InvalidTransferRequest(f"Name {name} has no address record", field_name="recipient_name")
        return address
