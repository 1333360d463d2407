"""
Exact conversion of human-readable amounts into smallest units.

Amounts never pass through float: a CSV value of ``0.1`` must become exactly
``100000000000000000`` wei, not the nearest binary approximation. Amounts that
need more fractional digits than the asset supports are rejected instead of
rounded.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Union


MAX_DECIMALS = 255  # uint8 decimals()
MAX_UINT256 = 2 ** 256 - 1

# Plain non-negative decimal literal: "100", "1.5", "1.", ".5"
_AMOUNT_RE = re.compile(r"^(?:\d+(?:\.\d*)?|\.\d+)$")


@dataclass(frozen=True)
class InvalidAmount:
    """Returned by encode_amount when the text cannot be encoded."""

    text: str
    reason: str


def encode_amount(text: str, decimals: int) -> Union[int, InvalidAmount]:
    """
    Scale a decimal amount string by 10**decimals.

    Returns the exact integer amount in smallest units, or InvalidAmount when
    the text is not a plain non-negative decimal or has more significant
    fractional digits than ``decimals``, or when the scaled value does not fit
    in a uint256. Zero is a valid amount.

        >>> encode_amount("1.5", 18)
        1500000000000000000
        >>> encode_amount("1.23456789", 8)
        123456789
    """
    if not 0 <= decimals <= MAX_DECIMALS:
        raise ValueError(f"Decimals must be between 0 and {MAX_DECIMALS}, got {decimals}")

    candidate = text.strip()
    if not _AMOUNT_RE.match(candidate):
        return InvalidAmount(candidate, f"Invalid amount: '{candidate}'")

    value = Decimal(candidate)
    # Enough digits that scaleb() is exact for any accepted literal
    with localcontext() as ctx:
        ctx.prec = len(candidate) + decimals + 1
        scaled = value.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            return InvalidAmount(
                candidate,
                f"Invalid amount: '{candidate}' has more than {decimals} decimal places",
            )
        if scaled > MAX_UINT256:
            return InvalidAmount(
                candidate, f"Invalid amount: '{candidate}' exceeds the uint256 maximum"
            )
        return int(scaled)


def format_amount(amount: int, decimals: int) -> str:
    """Render a smallest-unit amount back as a plain decimal string."""
    if decimals == 0:
        return str(amount)
    whole, frac = divmod(amount, 10 ** decimals)
    frac_text = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{whole}.{frac_text}" if frac_text else str(whole)
