"""
Fixed configuration for batch documents.

The defaults target Immutable zkEVM mainnet and the treasury Safe that every
batch is created from. Pass a different ``BatchConfig`` to build for another
Safe or chain.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from web3 import Web3


# Safe the batch is imported into (createdFromSafeAddress)
DEFAULT_SAFE_ADDRESS = "0xaA53161A1fD22b258c89bA76B4bA11019034612D"

# Immutable zkEVM mainnet
DEFAULT_CHAIN_ID = 13371
DEFAULT_RPC_URL = "https://rpc.immutable.com"

# Native IMX uses 18 decimals, like ether
NATIVE_DECIMALS = 18
NATIVE_SYMBOL = "IMX"

# ── Safe Transaction Builder metadata ──────────────────────────
BATCH_FORMAT_VERSION = "1.0"
DEFAULT_BATCH_NAME = "Transactions Batch"
DEFAULT_TX_BUILDER_VERSION = "1.16.5"

_HEX_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class BatchConfig:
    """Chain, Safe and metadata settings shared by every build."""

    safe_address: str = DEFAULT_SAFE_ADDRESS
    chain_id: int = DEFAULT_CHAIN_ID
    rpc_url: str = DEFAULT_RPC_URL
    native_decimals: int = NATIVE_DECIMALS
    native_symbol: str = NATIVE_SYMBOL
    name: str = DEFAULT_BATCH_NAME
    description: str = ""
    tx_builder_version: str = DEFAULT_TX_BUILDER_VERSION

    def __post_init__(self) -> None:
        if not _HEX_ADDRESS_RE.match(self.safe_address):
            raise ValueError(f"Invalid Safe address: {self.safe_address}")
        # frozen, so store the checksummed form directly
        object.__setattr__(
            self, "safe_address", Web3.to_checksum_address(self.safe_address)
        )
        if self.chain_id <= 0:
            raise ValueError(f"Chain id must be positive, got {self.chain_id}")
        if not 0 <= self.native_decimals <= 255:
            raise ValueError(
                f"Native decimals must be between 0 and 255, got {self.native_decimals}"
            )


DEFAULT_CONFIG = BatchConfig()
