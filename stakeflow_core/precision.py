"""
Precision constants and helpers for StakeFlow.

All token amounts are integers of the smallest indivisible unit:

    1 SFT = 100,000,000 units

The per-share reward index is a fixed-point integer scaled by
``ACC_PRECISION`` (10**12).  The scale has to be large enough that
``amount * index // ACC_PRECISION`` does not erase the reward owed on
small balances.

Display formatting goes through ``Decimal`` so nothing is rounded twice.
"""

from __future__ import annotations

from decimal import Decimal

# Number of decimal places a whole token is divided into.
TOKEN_DECIMALS: int = 8

# 1 unit = 0.00000001 SFT.
UNITS_PER_TOKEN: int = 10 ** TOKEN_DECIMALS  # 100_000_000

# Scale factor of the accumulated reward-per-share index.
ACC_PRECISION: int = 10 ** 12


def share_of(amount: int, acc_index: int) -> int:
    """Reward accumulated by *amount* staked units at *acc_index*.

    Floors, so the sum over all stakers never exceeds what was issued.

    >>> share_of(100, 10 ** 14)
    10000
    """
    return amount * acc_index // ACC_PRECISION


def index_increment(reward: int, total_staked: int) -> int:
    """Per-share index growth when *reward* is spread over *total_staked*."""
    if total_staked <= 0:
        return 0
    return reward * ACC_PRECISION // total_staked


def units_to_tokens(units: int) -> Decimal:
    """Convert an integer unit count to a whole-token ``Decimal``."""
    return Decimal(units) / UNITS_PER_TOKEN


def tokens_to_units(value: Decimal | str | int) -> int:
    """Convert a whole-token amount to units, rejecting sub-unit dust."""
    scaled = Decimal(value) * UNITS_PER_TOKEN
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{value} has more than {TOKEN_DECIMALS} decimal places")
    return int(scaled)


def format_amount(units: int, symbol: str = "SFT") -> str:
    """Return a human-readable string with ``TOKEN_DECIMALS`` places."""
    return f"{units_to_tokens(units):.{TOKEN_DECIMALS}f} {symbol}"
