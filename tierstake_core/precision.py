"""
Precision constants and integer helpers for TierStake.

All token amounts are integer base units with 18 decimal places, matching
the staked token:

    1 token = 10**18 units (smallest indivisible amount)

Rates are integer basis points out of ``BPS_DENOMINATOR``.  Every helper
below multiplies before it divides and truncates toward zero, so results
are bit-for-bit reproducible.  Intermediates are unbounded Python ints;
``narrow`` enforces the 256-bit ceiling on anything that gets stored.
"""

from __future__ import annotations

from decimal import Decimal

from tierstake_core.errors import ArithmeticOverflowError, ValidationError

# Number of decimal places of the staked token.
TOKEN_DECIMALS: int = 18

# Smallest representable unit: 1 unit = 10**-18 token.
UNITS_PER_TOKEN: int = 10 ** TOKEN_DECIMALS

BPS_DENOMINATOR: int = 10_000

SECONDS_PER_DAY: int = 86_400

# Fixed 365-day year; leap days are intentionally not counted.
SECONDS_PER_YEAR: int = 365 * SECONDS_PER_DAY

UINT256_MAX: int = 2 ** 256 - 1


def narrow(value: int, what: str = "value") -> int:
    """Return *value* if it fits an unsigned 256-bit slot, else raise."""
    if value < 0 or value > UINT256_MAX:
        raise ArithmeticOverflowError(what, value)
    return value


def mul_div(a: int, b: int, denominator: int) -> int:
    """``floor(a * b / denominator)`` with the product kept wide."""
    if denominator <= 0:
        raise ArithmeticOverflowError("denominator", denominator)
    return narrow((a * b) // denominator, "mul_div result")


def require_amount(value: object, name: str = "amount") -> int:
    """Validate that *value* is a positive integer amount of base units."""
    # bool is an int subclass; True must not pass as 1 unit
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer number of units",
                              field=name, actual=value)
    if value <= 0:
        raise ValidationError(f"{name} must be positive", field=name, actual=value)
    return narrow(value, name)


def to_units(tokens: int | str | Decimal) -> int:
    """Convert a whole/decimal token amount to base units (truncating).

    >>> to_units(1)
    1000000000000000000
    >>> to_units("0.5")
    500000000000000000
    """
    if isinstance(tokens, int):
        return tokens * UNITS_PER_TOKEN
    return int(Decimal(tokens).scaleb(TOKEN_DECIMALS))


def from_units(units: int) -> Decimal:
    """Convert base units back to a ``Decimal`` token amount."""
    return Decimal(units) / UNITS_PER_TOKEN


def format_amount(units: int, symbol: str = "TOKEN") -> str:
    """Human-readable amount with 4 decimal places (display only)."""
    return f"{from_units(units):.4f} {symbol}"
