"""
Row parsing and recipient address validation.

The input is a two-column ``address,amount`` CSV. The first non-empty line is
treated as a header unless it starts with ``0x``, so a data file whose first
row is malformed loses that row silently.

Both the parser and the validator return tagged results instead of raising:
every problem in a file must be reportable in one pass.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

from web3 import Web3


logger = logging.getLogger(__name__)

ADDRESS_PREFIX = "0x"
EXPECTED_COLUMNS = 2

_HEX_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class ErrorKind(Enum):
    """Row-local failure categories."""

    MALFORMED_ROW = "malformed_row"
    INVALID_ADDRESS = "invalid_address"
    INVALID_AMOUNT = "invalid_amount"


@dataclass(frozen=True)
class RawRow:
    """One data line of the CSV, not yet validated."""

    row_index: int  # 1-based, header excluded
    line_number: int  # physical line in the file
    address_text: str
    amount_text: str


@dataclass(frozen=True)
class ValidatedRow:
    """A row whose address passed validation and is checksummed."""

    row_index: int
    line_number: int
    address: str
    amount_text: str


@dataclass(frozen=True)
class RowError:
    """A failure attributed to a single input row."""

    row_index: int
    line_number: int
    kind: ErrorKind
    reason: str

    def __str__(self) -> str:
        return f"Row {self.row_index} (line {self.line_number}): {self.reason}"


@dataclass(frozen=True)
class InvalidAddress:
    """Returned by validate_address for text that is not an EVM address."""

    text: str
    reason: str


def _is_blank(fields: list[str]) -> bool:
    return not fields or (len(fields) == 1 and not fields[0].strip())


def parse_rows(text: str) -> list[Union[RawRow, RowError]]:
    """
    Split CSV text into raw rows.

    Expected format:
        address,amount
        0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed,1.5
        0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359,250

    Returns RawRow entries in input order, with a RowError (MALFORMED_ROW) in
    place of any line that does not have exactly two columns. Only the shape
    is checked here; addresses and amounts are validated later.

    The header decision looks at the raw text of the first non-empty line, so
    a quoted first row (``"0x...",1``) counts as a header. A line the csv
    module cannot decode ends parsing with a MALFORMED_ROW error.
    """
    if text.startswith("\ufeff"):
        text = text[1:]

    raw_lines: list[str] = []

    def _lines():
        for line in io.StringIO(text, newline=""):
            raw_lines.append(line)
            yield line

    reader = csv.reader(_lines())
    results: list[Union[RawRow, RowError]] = []
    header_checked = False
    row_index = 0

    while True:
        first_line = len(raw_lines)
        try:
            fields = next(reader)
        except StopIteration:
            break
        except csv.Error as e:
            row_index += 1
            results.append(RowError(
                row_index=row_index,
                line_number=reader.line_num,
                kind=ErrorKind.MALFORMED_ROW,
                reason=f"Unreadable row, parsing stopped: {e}",
            ))
            break

        if _is_blank(fields):
            continue

        if not header_checked:
            header_checked = True
            if not raw_lines[first_line].startswith(ADDRESS_PREFIX):
                logger.warning(
                    "Treating line %d as a header and dropping it: %r",
                    reader.line_num, raw_lines[first_line].rstrip("\r\n"),
                )
                continue

        row_index += 1
        if len(fields) != EXPECTED_COLUMNS:
            results.append(RowError(
                row_index=row_index,
                line_number=reader.line_num,
                kind=ErrorKind.MALFORMED_ROW,
                reason=(
                    f"Expected {EXPECTED_COLUMNS} columns (address,amount), "
                    f"got {len(fields)}"
                ),
            ))
            continue

        address_text, amount_text = fields
        results.append(RawRow(
            row_index=row_index,
            line_number=reader.line_num,
            address_text=address_text,
            amount_text=amount_text,
        ))

    logger.debug("Parsed %d data rows", len(results))
    return results


def validate_address(text: str) -> Union[str, InvalidAddress]:
    """
    Check an address and return its EIP-55 checksummed form.

    All-lowercase and all-uppercase hex is accepted; mixed case must carry a
    valid checksum. No network lookup is made.
    """
    candidate = text.strip()
    if not candidate.startswith(ADDRESS_PREFIX):
        return InvalidAddress(candidate, f"Invalid wallet address: {candidate} (missing 0x prefix)")
    if not _HEX_ADDRESS_RE.match(candidate):
        return InvalidAddress(
            candidate, f"Invalid wallet address: {candidate} (expected 40 hex digits after 0x)"
        )
    if not Web3.is_address(candidate):
        return InvalidAddress(candidate, f"Invalid wallet address: {candidate} (bad checksum)")
    return Web3.to_checksum_address(candidate)


def validate_row(row: RawRow) -> Union[ValidatedRow, RowError]:
    """Validate the address of a raw row."""
    result = validate_address(row.address_text)
    if isinstance(result, InvalidAddress):
        return RowError(
            row_index=row.row_index,
            line_number=row.line_number,
            kind=ErrorKind.INVALID_ADDRESS,
            reason=result.reason,
        )
    return ValidatedRow(
        row_index=row.row_index,
        line_number=row.line_number,
        address=result,
        amount_text=row.amount_text,
    )
