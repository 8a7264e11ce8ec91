"""Chain metadata and ERC20 call encoding."""

from .abi import encode_allowance, encode_approve, encode_balance_of
from .registry import NATIVE_TOKEN_ADDRESS, ChainIds, ChainInfo, ChainRegistry

__all__ = [
    "NATIVE_TOKEN_ADDRESS",
    "ChainIds",
    "ChainInfo",
    "ChainRegistry",
    "encode_allowance",
    "encode_approve",
    "encode_balance_of",
]
