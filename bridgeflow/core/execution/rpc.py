"""
Chain JSON-RPC client.

Endpoints come from the ChainRegistry and are tried in order. A call that
exhausts every endpoint surfaces as ``RpcTimeout``; the retry strategy
backs off and repeats it a bounded number of times first.
"""

import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional

import httpx

from ...config import Settings, settings as default_settings
from ..chains.abi import decode_uint256, encode_allowance, encode_balance_of
from ..chains.registry import ChainRegistry
from ..recovery.errors import RpcError, RpcTimeout
from ..recovery.strategies import ExponentialBackoffStrategy, RetryStrategy
from .models import GasParams

DEFAULT_PRIORITY_FEE_WEI = 1_000_000_000  # 1 gwei


class ChainRpcClient:
    """Minimal EVM JSON-RPC surface used by the engine and the tracker."""

    def __init__(
        self,
        chain_registry: Optional[ChainRegistry] = None,
        *,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry: Optional[RetryStrategy] = None,
        gas_multiplier: float = 1.2,
        logger: Optional[logging.Logger] = None,
    ):
        self._config = config or default_settings
        self._registry = chain_registry or ChainRegistry.from_settings(self._config)
        self._timeout = self._config.rpc_timeout_seconds
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=transport)
        self.logger = logger or logging.getLogger(__name__)
        self._retry = retry or ExponentialBackoffStrategy(
            max_attempts=self._config.rpc_max_retries,
            initial_delay=self._config.rpc_retry_initial_delay_seconds,
            retry_on=(RpcTimeout,),
            logger=self.logger,
        )
        self.gas_multiplier = gas_multiplier
        self._ids = itertools.count(1)

    async def call(self, chain_id: int, method: str, params: List[Any]) -> Any:
        """Make an RPC call, retrying transient endpoint failures."""
        return await self._retry.execute(
            lambda: self._call_once(chain_id, method, params),
            operation_name=f"{method}@{chain_id}",
        )

    async def _call_once(self, chain_id: int, method: str, params: List[Any]) -> Any:
        if not self._registry.is_chain_supported(chain_id):
            raise RpcError(f"No RPC endpoint configured for chain {chain_id}", chain_id=chain_id, method=method)

        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": next(self._ids)}
        last_error: Optional[BaseException] = None

        for url in self._registry.rpc_urls(chain_id):
            try:
                response = await asyncio.wait_for(self._client.post(url, json=payload), timeout=self._timeout)
                response.raise_for_status()
                body = response.json()
            except (asyncio.TimeoutError, httpx.TransportError, httpx.HTTPStatusError, ValueError) as e:
                self.logger.debug(f"RPC {method} via {url} failed: {e!r}")
                last_error = e
                continue

            error = body.get("error")
            if error:
                raise RpcError(
                    f"RPC error: {error.get('message', error)}",
                    chain_id=chain_id,
                    method=method,
                    code=error.get("code"),
                )
            return body.get("result")

        raise RpcTimeout(
            f"{method} on chain {chain_id} failed on every endpoint: {last_error!r}",
            chain_id=chain_id,
            method=method,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────────

    async def block_number(self, chain_id: int) -> int:
        return int(await self.call(chain_id, "eth_blockNumber", []), 16)

    async def get_transaction_receipt(self, chain_id: int, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt dict, or None while the transaction is not yet included."""
        return await self.call(chain_id, "eth_getTransactionReceipt", [tx_hash])

    async def get_balance(self, chain_id: int, address: str) -> int:
        return int(await self.call(chain_id, "eth_getBalance", [address, "latest"]), 16)

    async def eth_call(self, chain_id: int, to_address: str, data: str) -> str:
        return await self.call(chain_id, "eth_call", [{"to": to_address, "data": data}, "latest"])

    async def token_balance(self, chain_id: int, token_address: str, owner: str) -> int:
        """Native or ERC20 balance of ``owner``."""
        if ChainRegistry.is_native(token_address):
            return await self.get_balance(chain_id, owner)
        return decode_uint256(await self.eth_call(chain_id, token_address, encode_balance_of(owner)))

    async def allowance(self, chain_id: int, token_address: str, owner: str, spender: str) -> int:
        return decode_uint256(await self.eth_call(chain_id, token_address, encode_allowance(owner, spender)))

    # ─────────────────────────────────────────────────────────────────────────
    # Fees
    # ─────────────────────────────────────────────────────────────────────────

    async def fee_params(
        self,
        chain_id: int,
        *,
        from_address: str,
        to_address: str,
        data: str,
        value: int = 0,
    ) -> GasParams:
        """
        Fresh gas limit and EIP-1559 fees for one submission.

        Falls back to ``eth_gasPrice`` on chains that do not serve
        ``eth_feeHistory`` or answer it with an unusable shape.
        """
        call_obj: Dict[str, Any] = {"from": from_address, "to": to_address, "data": data}
        if value > 0:
            call_obj["value"] = hex(value)

        gas_limit = int(int(await self.call(chain_id, "eth_estimateGas", [call_obj]), 16) * self.gas_multiplier)

        try:
            fee_history = await self.call(chain_id, "eth_feeHistory", [1, "latest", [50]])
        except RpcError as e:
            self.logger.info(f"eth_feeHistory unavailable on chain {chain_id} ({e.message}); using eth_gasPrice")
            return await self._legacy_fees(chain_id, gas_limit)

        try:
            base_fee = int(fee_history["baseFeePerGas"][-1], 16)
            rewards = fee_history.get("reward") or []
            priority_fee = int(rewards[0][0], 16) if rewards and rewards[0] else DEFAULT_PRIORITY_FEE_WEI
        except (KeyError, IndexError, TypeError, ValueError, AttributeError):
            self.logger.warning(f"Malformed eth_feeHistory on chain {chain_id}: {fee_history!r}; using eth_gasPrice")
            return await self._legacy_fees(chain_id, gas_limit)

        return GasParams(
            gas_limit=gas_limit,
            max_fee_per_gas=base_fee * 2 + priority_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    async def _legacy_fees(self, chain_id: int, gas_limit: int) -> GasParams:
        gas_price = int(await self.call(chain_id, "eth_gasPrice", []), 16)
        return GasParams(gas_limit=gas_limit, max_fee_per_gas=gas_price, max_priority_fee_per_gas=gas_price)

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()
