"""Share/asset conversion with virtual-offset inflation protection.

All functions are pure and operate on unsigned 64-bit quantities.  The
intermediate product of :func:`mul_div` is computed at arbitrary precision;
only the final result must fit in 64 bits.

The exchange rate is::

    shares = assets * (total_shares + 10**offset) / (total_assets + 1)
    assets = shares * (total_assets + 1) / (total_shares + 10**offset)

The phantom ``10**offset`` shares and the phantom single asset unit make the
rate well defined for an empty vault and push the cost of a donation-based
price manipulation onto the attacker.
"""

from __future__ import annotations

import enum

from .constants import MAX_DECIMALS, U64_MAX
from .errors import DivisionByZero, MathOverflow, UnsupportedAssetPrecision


class Rounding(enum.Enum):
    FLOOR = "floor"
    CEILING = "ceiling"


def require_u64(value: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer")
    if value < 0:
        raise ValueError(f"{name} must be non-negative")
    if value > U64_MAX:
        raise MathOverflow(f"{name} exceeds 64-bit range")
    return value


def _checked_add(left: int, right: int) -> int:
    total = left + right
    if total > U64_MAX:
        raise MathOverflow()
    return total


def virtual_offset(decimals_offset: int) -> int:
    """Return ``10 ** decimals_offset``, the phantom share supply."""

    if isinstance(decimals_offset, bool) or not isinstance(decimals_offset, int):
        raise TypeError("decimals_offset must be an integer")
    if decimals_offset < 0:
        raise ValueError("decimals_offset must be non-negative")
    offset = 10**decimals_offset
    if offset > U64_MAX:
        raise MathOverflow("decimals offset too large")
    return offset


def mul_div(value: int, numerator: int, denominator: int, rounding: Rounding) -> int:
    """Compute ``value * numerator / denominator`` with explicit rounding."""

    require_u64(value, "value")
    require_u64(numerator, "numerator")
    require_u64(denominator, "denominator")
    if denominator == 0:
        raise DivisionByZero()

    product = value * numerator
    if rounding is Rounding.FLOOR:
        result = product // denominator
    elif rounding is Rounding.CEILING:
        result = (product + denominator - 1) // denominator
    else:
        raise ValueError(f"Unknown rounding mode: {rounding!r}")

    if result > U64_MAX:
        raise MathOverflow()
    return result


def _virtual_totals(total_assets: int, total_shares: int, decimals_offset: int) -> tuple[int, int]:
    require_u64(total_assets, "total_assets")
    require_u64(total_shares, "total_shares")
    virtual_shares = _checked_add(total_shares, virtual_offset(decimals_offset))
    virtual_assets = _checked_add(total_assets, 1)
    return virtual_assets, virtual_shares


def convert_to_shares(
    assets: int,
    total_assets: int,
    total_shares: int,
    decimals_offset: int,
    rounding: Rounding = Rounding.FLOOR,
) -> int:
    """Convert an asset amount to shares at the current virtual exchange rate."""

    virtual_assets, virtual_shares = _virtual_totals(total_assets, total_shares, decimals_offset)
    return mul_div(assets, virtual_shares, virtual_assets, rounding)


def convert_to_assets(
    shares: int,
    total_assets: int,
    total_shares: int,
    decimals_offset: int,
    rounding: Rounding = Rounding.FLOOR,
) -> int:
    """Convert a share amount to assets at the current virtual exchange rate."""

    virtual_assets, virtual_shares = _virtual_totals(total_assets, total_shares, decimals_offset)
    return mul_div(shares, virtual_assets, virtual_shares, rounding)


def preview_deposit(assets: int, total_assets: int, total_shares: int, decimals_offset: int) -> int:
    """Shares received for depositing *assets* (rounded down)."""

    return convert_to_shares(assets, total_assets, total_shares, decimals_offset, Rounding.FLOOR)


def preview_mint(shares: int, total_assets: int, total_shares: int, decimals_offset: int) -> int:
    """Assets paid to mint exactly *shares* (rounded up)."""

    return convert_to_assets(shares, total_assets, total_shares, decimals_offset, Rounding.CEILING)


def preview_withdraw(assets: int, total_assets: int, total_shares: int, decimals_offset: int) -> int:
    """Shares burned to withdraw exactly *assets* (rounded up)."""

    return convert_to_shares(assets, total_assets, total_shares, decimals_offset, Rounding.CEILING)


def preview_redeem(shares: int, total_assets: int, total_shares: int, decimals_offset: int) -> int:
    """Assets received for redeeming *shares* (rounded down)."""

    return convert_to_assets(shares, total_assets, total_shares, decimals_offset, Rounding.FLOOR)


def calculate_decimals_offset(asset_decimals: int) -> int:
    if isinstance(asset_decimals, bool) or not isinstance(asset_decimals, int):
        raise TypeError("asset_decimals must be an integer")
    if asset_decimals < 0 or asset_decimals > MAX_DECIMALS:
        raise UnsupportedAssetPrecision(
            f"Asset decimals {asset_decimals} outside supported range 0..{MAX_DECIMALS}"
        )
    return MAX_DECIMALS - asset_decimals


__all__ = [
    "Rounding",
    "calculate_decimals_offset",
    "convert_to_assets",
    "convert_to_shares",
    "mul_div",
    "preview_deposit",
    "preview_mint",
    "preview_redeem",
    "preview_withdraw",
    "require_u64",
    "virtual_offset",
]
