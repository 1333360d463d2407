"""
ERC-20 metadata lookup.

A batch build needs the token's ``decimals()`` to scale amounts and its
``symbol()`` for display. Lookups go through a resolver so the pipeline can
run against a live RPC endpoint or a fixed table in tests.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3, HTTPProvider, Web3

from safe_batch.amounts import MAX_DECIMALS
from safe_batch.config import DEFAULT_RPC_URL


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10

# Only the two read-only views we call
ERC20_METADATA_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
]


class TokenResolutionError(Exception):
    """Raised when a token's decimals/symbol cannot be determined."""

    def __init__(self, address: str, message: str):
        self.address = address
        super().__init__(f"Could not resolve token {address}: {message}")


@dataclass(frozen=True)
class TokenSpec:
    """Resolved ERC-20 token. Fixed for the duration of one build."""

    address: str
    decimals: int
    symbol: str

    def summary(self) -> str:
        return f"Detected: {self.symbol} / {self.decimals} decimals"


def make_token_spec(address: str, decimals: Any, symbol: Any) -> TokenSpec:
    """Build a TokenSpec from raw contract return values, rejecting bad ones."""
    if isinstance(decimals, bool) or not isinstance(decimals, int):
        raise TokenResolutionError(address, f"decimals() returned {decimals!r}")
    if not 0 <= decimals <= MAX_DECIMALS:
        raise TokenResolutionError(address, f"decimals() out of range: {decimals}")
    if not isinstance(symbol, str):
        raise TokenResolutionError(address, f"symbol() returned {symbol!r}")
    return TokenSpec(
        address=Web3.to_checksum_address(address),
        decimals=decimals,
        symbol=symbol,
    )


class TokenResolver(ABC):
    """Synchronous token metadata source."""

    @abstractmethod
    def resolve(self, address: str) -> TokenSpec:
        """Return the token at ``address`` or raise TokenResolutionError."""


class AsyncTokenResolver(ABC):
    """Token metadata source for async callers."""

    @abstractmethod
    async def resolve(self, address: str) -> TokenSpec:
        """Return the token at ``address`` or raise TokenResolutionError."""

    async def close(self) -> None:
        """Release network resources. Nothing to release by default."""


class Web3TokenResolver(TokenResolver):
    """Reads decimals() and symbol() over JSON-RPC."""

    def __init__(
        self,
        rpc_url: str = DEFAULT_RPC_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        w3: Optional[Web3] = None,
    ):
        self.rpc_url = rpc_url
        self.w3 = w3 if w3 is not None else Web3(
            HTTPProvider(rpc_url, request_kwargs={"timeout": timeout})
        )

    def resolve(self, address: str) -> TokenSpec:
        try:
            contract = self.w3.eth.contract(
                address=Web3.to_checksum_address(address), abi=ERC20_METADATA_ABI
            )
            decimals = contract.functions.decimals().call()
            symbol = contract.functions.symbol().call()
        except Exception as e:
            raise TokenResolutionError(address, str(e)) from e

        token = make_token_spec(address, decimals, symbol)
        logger.info("Resolved token %s: %s (%d decimals)", token.address, token.symbol, token.decimals)
        return token


class AsyncWeb3TokenResolver(AsyncTokenResolver):
    """
    Async variant of Web3TokenResolver, for use inside an event loop.

    Requests use the provider's default timeout.
    """

    def __init__(
        self,
        rpc_url: str = DEFAULT_RPC_URL,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.rpc_url = rpc_url
        self._owns_provider = w3 is None
        self.w3 = w3 if w3 is not None else AsyncWeb3(AsyncHTTPProvider(rpc_url))

    async def close(self) -> None:
        """Close the HTTP session of a provider this resolver created."""
        if self._owns_provider:
            await self.w3.provider.disconnect()

    async def __aenter__(self) -> "AsyncWeb3TokenResolver":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def resolve(self, address: str) -> TokenSpec:
        try:
            contract = self.w3.eth.contract(
                address=Web3.to_checksum_address(address), abi=ERC20_METADATA_ABI
            )
            decimals = await contract.functions.decimals().call()
            symbol = await contract.functions.symbol().call()
        except Exception as e:
            raise TokenResolutionError(address, str(e)) from e

        token = make_token_spec(address, decimals, symbol)
        logger.info("Resolved token %s: %s (%d decimals)", token.address, token.symbol, token.decimals)
        return token


class StaticTokenResolver(TokenResolver):
    """Resolves from a fixed ``{address: (decimals, symbol)}`` table."""

    def __init__(self, tokens: Mapping[str, tuple[int, str]]):
        self.tokens = {
            Web3.to_checksum_address(addr): meta for addr, meta in tokens.items()
        }

    def resolve(self, address: str) -> TokenSpec:
        key = Web3.to_checksum_address(address)
        if key not in self.tokens:
            raise TokenResolutionError(address, "unknown token")
        decimals, symbol = self.tokens[key]
        return make_token_spec(key, decimals, symbol)


class CachingTokenResolver(TokenResolver):
    """Remembers successful lookups for the lifetime of the process."""

    def __init__(self, inner: TokenResolver):
        self.inner = inner
        self._cache: dict[str, TokenSpec] = {}

    def resolve(self, address: str) -> TokenSpec:
        key = Web3.to_checksum_address(address)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Token cache hit for %s", key)
            return cached
        token = self.inner.resolve(key)
        self._cache[key] = token
        return token
