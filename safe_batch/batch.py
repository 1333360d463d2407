"""
Core batch building logic for Safe Batch.

Turns a recipient CSV into a Safe Transaction Builder batch file. Each row
becomes either a plain value transfer (native currency) or an ERC-20
``transfer(address,uint256)`` call. Building is all-or-nothing: every row is
checked, every problem is collected, and a document is only produced when no
row failed.

Supports:
- Native currency and ERC-20 batches
- Collect-all validation with per-row errors
- Safe Transaction Builder checksum
- Both sync and async token resolution
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from web3 import Web3

from safe_batch.amounts import InvalidAmount, encode_amount, format_amount
from safe_batch.config import BATCH_FORMAT_VERSION, DEFAULT_CONFIG, BatchConfig
from safe_batch.rows import (
    ErrorKind,
    InvalidAddress,
    RawRow,
    RowError,
    ValidatedRow,
    parse_rows,
    validate_address,
    validate_row,
)
from safe_batch.tokens import (
    AsyncTokenResolver,
    AsyncWeb3TokenResolver,
    TokenResolutionError,
    TokenResolver,
    TokenSpec,
    Web3TokenResolver,
)


logger = logging.getLogger(__name__)

# ABI fragment for ERC-20 transfer(address to, uint256 amount).
# Safe Transaction Builder matches on this exact shape.
TRANSFER_METHOD = {
    "inputs": [
        {"internalType": "address", "name": "to", "type": "address"},
        {"internalType": "uint256", "name": "amount", "type": "uint256"},
    ],
    "name": "transfer",
    "payable": False,
}


class FailureKind(Enum):
    """Why a build produced no document."""

    VALIDATION = "validation"  # one or more rows failed
    TOKEN_RESOLUTION = "token_resolution"  # token metadata unavailable


@dataclass(frozen=True)
class NativeTransfer:
    """Plain value transfer of the chain's native currency."""

    to: str
    value: int  # in wei

    def to_dict(self) -> dict[str, Any]:
        return {
            "to": self.to,
            "value": str(self.value),
            "data": None,
            "contractMethod": None,
            "contractInputsValues": None,
        }


@dataclass(frozen=True)
class TokenTransfer:
    """ERC-20 transfer(to, amount) call on the token contract."""

    token_address: str
    to: str
    amount: int  # in the token's smallest unit

    def to_dict(self) -> dict[str, Any]:
        return {
            "to": self.token_address,
            "value": "0",
            "data": None,
            "contractMethod": {
                "inputs": [dict(i) for i in TRANSFER_METHOD["inputs"]],
                "name": TRANSFER_METHOD["name"],
                "payable": TRANSFER_METHOD["payable"],
            },
            "contractInputsValues": {
                "to": self.to,
                "amount": str(self.amount),
            },
        }


TransactionDescriptor = Union[NativeTransfer, TokenTransfer]


def _json_compact(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _serialize_for_checksum(value: Any) -> str:
    """
    Canonical serialization used by the Safe Transaction Builder checksum.

    Objects are written as their sorted key list followed by each value and a
    trailing comma, e.g. ``{"b":1,"a":2}`` becomes ``{["a","b"]2,1,}``.
    """
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_serialize_for_checksum(v) for v in value) + "]"
    if isinstance(value, dict):
        keys = sorted(value)
        out = "{" + _json_compact(keys)
        for key in keys:
            out += _serialize_for_checksum(value[key]) + ","
        return out + "}"
    return _json_compact(value)


def calculate_checksum(batch: dict[str, Any]) -> str:
    """keccak256 of the batch with meta.name nulled, as a 0x-prefixed hex string."""
    payload = dict(batch)
    payload["meta"] = {**batch["meta"], "name": None}
    payload["meta"].pop("checksum", None)
    return Web3.to_hex(Web3.keccak(text=_serialize_for_checksum(payload)))


@dataclass(frozen=True)
class BatchDocument:
    """A complete batch, ready to import into the Safe Transaction Builder."""

    chain_id: int
    safe_address: str
    transactions: tuple[TransactionDescriptor, ...]
    name: str
    description: str = ""
    tx_builder_version: str = ""
    created_at: Optional[int] = None  # unix ms; omitted unless requested

    def to_dict(self) -> dict[str, Any]:
        batch: dict[str, Any] = {
            "version": BATCH_FORMAT_VERSION,
            "chainId": str(self.chain_id),
        }
        if self.created_at is not None:
            batch["createdAt"] = self.created_at
        batch["meta"] = {
            "name": self.name,
            "description": self.description,
            "txBuilderVersion": self.tx_builder_version,
            "createdFromSafeAddress": self.safe_address,
            "createdFromOwnerAddress": "",
        }
        batch["transactions"] = [tx.to_dict() for tx in self.transactions]
        batch["meta"]["checksum"] = calculate_checksum(batch)
        return batch

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass
class BuildResult:
    """Result of a batch build."""

    success: bool
    message: str
    document: Optional[BatchDocument] = None
    errors: list[RowError] = field(default_factory=list)
    failure: Optional[FailureKind] = None
    token: Optional[TokenSpec] = None
    total_amount: int = 0  # smallest units
    decimals: int = 0
    symbol: str = ""

    @property
    def recipient_count(self) -> int:
        return len(self.document.transactions) if self.document else 0

    def summary(self) -> str:
        """Human-readable summary of the build."""
        status = "SUCCESS" if self.success else "FAILED"
        lines = [f"=== Safe Batch — {status} ==="]
        if self.token:
            lines.append(f"Token: {self.token.symbol} ({self.token.address})")
        elif self.symbol:
            lines.append(f"Asset: native {self.symbol}")
        if self.success:
            lines.extend([
                f"Recipients: {self.recipient_count}",
                f"Total amount: {format_amount(self.total_amount, self.decimals)} {self.symbol}",
            ])
            if self.document:
                lines.append(f"Chain id: {self.document.chain_id}")
                lines.append(f"Safe: {self.document.safe_address}")
        else:
            lines.append(f"Error: {self.message}")
            for err in self.errors:
                lines.append(f"  {err}")
        return "\n".join(lines)


# ── Transaction builder ────────────────────────────────────────

def build_native_transaction(recipient: str, value: int) -> NativeTransfer:
    return NativeTransfer(to=recipient, value=value)


def build_token_transaction(token: TokenSpec, recipient: str, amount: int) -> TokenTransfer:
    return TokenTransfer(token_address=token.address, to=recipient, amount=amount)


def build_transactions(
    token: Optional[TokenSpec],
    rows: list[tuple[ValidatedRow, int]],
) -> list[TransactionDescriptor]:
    """One transaction per (row, encoded amount), in row order."""
    if token:
        return [build_token_transaction(token, row.address, amount) for row, amount in rows]
    return [build_native_transaction(row.address, amount) for row, amount in rows]


# ── Batch assembler ────────────────────────────────────────────

def assemble_batch(
    transactions: list[TransactionDescriptor],
    config: BatchConfig = DEFAULT_CONFIG,
    created_at: Optional[int] = None,
) -> BatchDocument:
    """Wrap transactions in a batch document for the configured Safe and chain."""
    document = BatchDocument(
        chain_id=config.chain_id,
        safe_address=config.safe_address,
        transactions=tuple(transactions),
        name=config.name,
        description=config.description,
        tx_builder_version=config.tx_builder_version,
        created_at=created_at,
    )
    logger.info(
        "Assembled batch of %d transactions for Safe %s on chain %d",
        len(transactions), config.safe_address, config.chain_id,
    )
    return document


# ── Error aggregator ───────────────────────────────────────────

def validate_rows(
    parsed: list[Union[RawRow, RowError]],
    decimals: int,
) -> tuple[list[tuple[ValidatedRow, int]], list[RowError]]:
    """
    Validate every row and encode its amount.

    Returns (valid rows with encoded amounts, errors). Processing never stops
    at the first failure; each failing row contributes exactly one error.
    """
    valid: list[tuple[ValidatedRow, int]] = []
    errors: list[RowError] = []

    for entry in parsed:
        if isinstance(entry, RowError):
            errors.append(entry)
            continue

        checked = validate_row(entry)
        if isinstance(checked, RowError):
            errors.append(checked)
            continue

        amount = encode_amount(checked.amount_text, decimals)
        if isinstance(amount, InvalidAmount):
            errors.append(RowError(
                row_index=checked.row_index,
                line_number=checked.line_number,
                kind=ErrorKind.INVALID_AMOUNT,
                reason=amount.reason,
            ))
            continue

        valid.append((checked, amount))

    logger.debug("Validated %d rows, %d errors", len(valid), len(errors))
    return valid, errors


# ── Pipeline ───────────────────────────────────────────────────

def _token_failure(address: str, message: str) -> BuildResult:
    logger.warning("Token resolution failed for %s: %s", address, message)
    return BuildResult(
        success=False,
        message=message,
        failure=FailureKind.TOKEN_RESOLUTION,
    )


def _check_token_address(token_address: str) -> Union[str, BuildResult]:
    checked = validate_address(token_address)
    if isinstance(checked, InvalidAddress):
        return _token_failure(
            token_address, f"Invalid token contract address: {checked.text}"
        )
    return checked


def _build_from_text(
    text: str,
    token: Optional[TokenSpec],
    config: BatchConfig,
    created_at: Optional[int],
) -> BuildResult:
    decimals = token.decimals if token else config.native_decimals
    symbol = token.symbol if token else config.native_symbol

    parsed = parse_rows(text)
    if not parsed:
        logger.warning("No recipient rows found; building an empty batch")

    valid, errors = validate_rows(parsed, decimals)
    if errors:
        return BuildResult(
            success=False,
            message=f"Validation failed with {len(errors)} errors",
            errors=errors,
            failure=FailureKind.VALIDATION,
            token=token,
            decimals=decimals,
            symbol=symbol,
        )

    transactions = build_transactions(token, valid)
    document = assemble_batch(transactions, config, created_at)
    return BuildResult(
        success=True,
        message=f"Built batch of {len(transactions)} transactions",
        document=document,
        token=token,
        total_amount=sum(amount for _, amount in valid),
        decimals=decimals,
        symbol=symbol,
    )


def build_batch(
    text: str,
    token_address: Optional[str] = None,
    config: BatchConfig = DEFAULT_CONFIG,
    resolver: Optional[TokenResolver] = None,
    created_at: Optional[int] = None,
) -> BuildResult:
    """
    Build a batch document from CSV text.

    Parameters:
        text: Contents of the ``address,amount`` CSV.
        token_address: ERC-20 contract to pay in. None or "" pays in the
            native currency.
        config: Safe, chain and metadata settings.
        resolver: Token metadata source. Defaults to a Web3TokenResolver on
            config.rpc_url; only consulted when token_address is set.
        created_at: Optional unix-ms timestamp to embed as createdAt.

    Returns:
        A BuildResult. On success it carries the document; otherwise it
        carries every row error, or the token resolution failure.
    """
    token = None
    if token_address:
        checked = _check_token_address(token_address)
        if isinstance(checked, BuildResult):
            return checked
        resolver = resolver or Web3TokenResolver(config.rpc_url)
        try:
            token = resolver.resolve(checked)
        except TokenResolutionError as e:
            return _token_failure(checked, str(e))

    return _build_from_text(text, token, config, created_at)


async def async_build_batch(
    text: str,
    token_address: Optional[str] = None,
    config: BatchConfig = DEFAULT_CONFIG,
    resolver: Optional[AsyncTokenResolver] = None,
    created_at: Optional[int] = None,
) -> BuildResult:
    """
    Async version of build_batch.

    The token lookup is awaited; everything after it is the same pure,
    synchronous row processing. Preferred inside web servers.
    """
    token = None
    if token_address:
        checked = _check_token_address(token_address)
        if isinstance(checked, BuildResult):
            return checked
        owns_resolver = resolver is None
        resolver = resolver or AsyncWeb3TokenResolver(config.rpc_url)
        try:
            token = await resolver.resolve(checked)
        except TokenResolutionError as e:
            return _token_failure(checked, str(e))
        finally:
            if owns_resolver:
                await resolver.close()

    return _build_from_text(text, token, config, created_at)


def read_recipients_file(filepath: Union[str, Path]) -> str:
    """Read a recipient CSV, dropping a UTF-8 byte order mark if present."""
    return Path(filepath).read_text(encoding="utf-8-sig")


def build_batch_from_file(
    filepath: Union[str, Path],
    token_address: Optional[str] = None,
    config: BatchConfig = DEFAULT_CONFIG,
    resolver: Optional[TokenResolver] = None,
    created_at: Optional[int] = None,
) -> BuildResult:
    """Read a recipient CSV from disk and build it."""
    return build_batch(
        read_recipients_file(filepath),
        token_address=token_address,
        config=config,
        resolver=resolver,
        created_at=created_at,
    )
