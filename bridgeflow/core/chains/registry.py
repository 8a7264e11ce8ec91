"""Static chain registry: chain id → RPC endpoints, native asset and tokens."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ...config import Settings, settings as default_settings

NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"

# Some providers use 0xEeee… for the native asset
NATIVE_ALIASES = frozenset({
    NATIVE_TOKEN_ADDRESS,
    "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee",
})


class ChainIds:
    ETHEREUM = 1
    OPTIMISM = 10
    POLYGON = 137
    BASE = 8453
    ARBITRUM = 42161


@dataclass(frozen=True)
class ChainInfo:
    """Read-only metadata for one chain."""

    chain_id: int
    name: str
    native_symbol: str
    rpc_urls: Tuple[str, ...]
    native_decimals: int = 18
    explorer_url: Optional[str] = None
    tokens: Mapping[str, str] = field(default_factory=dict)

    def tx_url(self, tx_hash: str) -> Optional[str]:
        if not self.explorer_url:
            return None
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"


def default_chains(config: Settings) -> List[ChainInfo]:
    """Chains the service ships with, RPC URLs taken from settings."""
    return [
        ChainInfo(
            chain_id=ChainIds.ETHEREUM,
            name="Ethereum",
            native_symbol="ETH",
            rpc_urls=(config.ethereum_rpc_url,),
            explorer_url="https://etherscan.io",
            tokens={"USDC": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"},
        ),
        ChainInfo(
            chain_id=ChainIds.OPTIMISM,
            name="Optimism",
            native_symbol="ETH",
            rpc_urls=(config.optimism_rpc_url,),
            explorer_url="https://optimistic.etherscan.io",
            tokens={"USDC": "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85"},
        ),
        ChainInfo(
            chain_id=ChainIds.POLYGON,
            name="Polygon",
            native_symbol="POL",
            rpc_urls=(config.polygon_rpc_url,),
            explorer_url="https://polygonscan.com",
            tokens={"USDC": "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"},
        ),
        ChainInfo(
            chain_id=ChainIds.BASE,
            name="Base",
            native_symbol="ETH",
            rpc_urls=(config.base_rpc_url,),
            explorer_url="https://basescan.org",
            tokens={"USDC": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"},
        ),
        ChainInfo(
            chain_id=ChainIds.ARBITRUM,
            name="Arbitrum One",
            native_symbol="ETH",
            rpc_urls=(config.arbitrum_rpc_url,),
            explorer_url="https://arbiscan.io",
            tokens={"USDC": "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"},
        ),
    ]


class ChainRegistry:
    """Static chain metadata with alias lookup.

    Built once at startup and never mutated afterwards, so concurrent
    readers need no locking.

    Usage:
        registry = ChainRegistry.from_settings()
        registry.get_chain_id("matic")   # 137
        registry.rpc_urls(10)            # ("https://mainnet.optimism.io",)
    """

    ALIAS_EXPANSIONS = {
        "ethereum": ["eth", "mainnet", "l1"],
        "arbitrum": ["arb"],
        "optimism": ["op"],
        "polygon": ["matic", "pol"],
    }

    def __init__(
        self,
        chains: Iterable[ChainInfo],
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._logger = logger or logging.getLogger(__name__)

        chain_map: Dict[int, ChainInfo] = {}
        aliases: Dict[str, int] = {}
        for chain in chains:
            urls = tuple(url for url in chain.rpc_urls if url)
            if not urls:
                self._logger.warning("Chain %s has no RPC endpoint configured; skipping", chain.chain_id)
                continue
            if urls != chain.rpc_urls:
                chain = ChainInfo(
                    chain_id=chain.chain_id,
                    name=chain.name,
                    native_symbol=chain.native_symbol,
                    rpc_urls=urls,
                    native_decimals=chain.native_decimals,
                    explorer_url=chain.explorer_url,
                    tokens=chain.tokens,
                )
            chain_map[chain.chain_id] = chain
            for alias in self._generate_aliases(chain):
                # First chain to claim an alias keeps it
                aliases.setdefault(alias, chain.chain_id)

        self._chains: Mapping[int, ChainInfo] = MappingProxyType(chain_map)
        self._alias_to_id: Mapping[str, int] = MappingProxyType(aliases)

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "ChainRegistry":
        return cls(default_chains(config or default_settings))

    def _generate_aliases(self, chain: ChainInfo) -> Set[str]:
        aliases: Set[str] = {str(chain.chain_id)}
        name = chain.name.lower().strip()
        if name:
            aliases.add(name)
            words = name.split()
            if len(words) > 1:
                aliases.add(words[0])
                aliases.add("".join(words))
        for base_name, expansions in self.ALIAS_EXPANSIONS.items():
            if base_name in name:
                aliases.update(expansions)
        aliases.discard("")
        return aliases

    # ─────────────────────────────────────────────────────────────────────────
    # Lookups
    # ─────────────────────────────────────────────────────────────────────────

    def get_chain_id(self, alias: str) -> Optional[int]:
        return self._alias_to_id.get(alias.lower().strip())

    def get_chain(self, chain_id: int) -> Optional[ChainInfo]:
        return self._chains.get(chain_id)

    def require_chain(self, chain_id: int) -> ChainInfo:
        chain = self._chains.get(chain_id)
        if chain is None:
            raise KeyError(f"Chain {chain_id} is not configured")
        return chain

    def get_chain_name(self, chain_id: int) -> str:
        chain = self._chains.get(chain_id)
        return chain.name if chain else f"Chain {chain_id}"

    def rpc_urls(self, chain_id: int) -> Tuple[str, ...]:
        return self.require_chain(chain_id).rpc_urls

    def token_address(self, chain_id: int, symbol: str) -> Optional[str]:
        chain = self._chains.get(chain_id)
        if chain is None:
            return None
        if symbol.upper() == chain.native_symbol:
            return NATIVE_TOKEN_ADDRESS
        return chain.tokens.get(symbol.upper())

    def is_chain_supported(self, chain_id: int) -> bool:
        return chain_id in self._chains

    @staticmethod
    def is_native(token_address: str) -> bool:
        return token_address.lower() in NATIVE_ALIASES

    @property
    def chain_ids(self) -> List[int]:
        return sorted(self._chains)
