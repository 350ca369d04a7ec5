"""
amm_math.py

Exact integer constant-product (x * y = k) quoting with numerator/denominator
fees and basis-point slippage.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

BPS_DENOMINATOR = 10_000

# Raydium AMM v4 default swap fee: 25 / 10000
DEFAULT_FEE = (25, 10_000)


class SwapDirection(Enum):
    BASE_TO_QUOTE = "sell"
    QUOTE_TO_BASE = "buy"


@dataclass
class SwapQuote:
    direction: SwapDirection
    amount_in: int
    expected_out: int
    min_out: int
    fee_amount: int
    price_impact_bps: int
    slippage_bps: int


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def _check_fee(fee_numerator: int, fee_denominator: int) -> None:
    if fee_denominator <= 0 or not 0 <= fee_numerator < fee_denominator:
        raise ValueError(f"Invalid fee {fee_numerator}/{fee_denominator}")


def swap_fee(amount_in: int, fee_numerator: int, fee_denominator: int) -> int:
    """Fee charged on the input, rounded up."""
    _check_fee(fee_numerator, fee_denominator)
    return _ceil_div(amount_in * fee_numerator, fee_denominator)


def constant_product_amount_out(
    amount_in: int,
    reserve_in: int,
    reserve_out: int,
    fee_numerator: int = DEFAULT_FEE[0],
    fee_denominator: int = DEFAULT_FEE[1],
) -> int:
    """Output for an exact input; rounds down."""
    if amount_in <= 0:
        raise ValueError("amount_in must be positive")
    if reserve_in <= 0 or reserve_out <= 0:
        raise ValueError("reserves must be positive")
    net_in = amount_in - swap_fee(amount_in, fee_numerator, fee_denominator)
    return reserve_out * net_in // (reserve_in + net_in)


def constant_product_amount_in(
    amount_out: int,
    reserve_in: int,
    reserve_out: int,
    fee_numerator: int = DEFAULT_FEE[0],
    fee_denominator: int = DEFAULT_FEE[1],
) -> int:
    """Input needed to receive at least `amount_out`; rounds up."""
    if amount_out <= 0:
        raise ValueError("amount_out must be positive")
    if reserve_in <= 0 or reserve_out <= 0:
        raise ValueError("reserves must be positive")
    if amount_out >= reserve_out:
        raise ValueError("amount_out must be less than reserve_out")
    _check_fee(fee_numerator, fee_denominator)

    net_in = _ceil_div(reserve_in * amount_out, reserve_out - amount_out)
    gross_in = _ceil_div(net_in * fee_denominator, fee_denominator - fee_numerator)
    # fee rounding can leave the gross one unit short
    while gross_in - swap_fee(gross_in, fee_numerator, fee_denominator) < net_in:
        gross_in += 1
    return gross_in


def min_amount_out(amount_out: int, slippage_bps: int) -> int:
    """Lowest acceptable output after `slippage_bps` tolerance; rounds down."""
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise ValueError(f"slippage_bps must be within 0..{BPS_DENOMINATOR}, got {slippage_bps}")
    if amount_out < 0:
        raise ValueError("amount_out must not be negative")
    return amount_out * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def price_impact_bps(amount_in: int, amount_out: int, reserve_in: int, reserve_out: int) -> int:
    """
    Shortfall of the execution price against the spot price, in bps, fee included.
    """
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        raise ValueError("amounts and reserves must be positive")
    # spot output for amount_in is amount_in * reserve_out / reserve_in
    spot_out_scaled = amount_in * reserve_out
    actual_scaled = amount_out * reserve_in
    shortfall = spot_out_scaled - actual_scaled
    return max(0, shortfall * BPS_DENOMINATOR // spot_out_scaled)


def orient_reserves(base_reserve: int, quote_reserve: int, direction: SwapDirection) -> Tuple[int, int]:
    """(reserve_in, reserve_out) for the direction."""
    if direction is SwapDirection.BASE_TO_QUOTE:
        return base_reserve, quote_reserve
    return quote_reserve, base_reserve


def quote_swap(
    base_reserve: int,
    quote_reserve: int,
    amount_in: int,
    direction: SwapDirection,
    slippage_bps: int,
    fee_numerator: int = DEFAULT_FEE[0],
    fee_denominator: int = DEFAULT_FEE[1],
) -> SwapQuote:
    reserve_in, reserve_out = orient_reserves(base_reserve, quote_reserve, direction)
    expected_out = constant_product_amount_out(amount_in, reserve_in, reserve_out, fee_numerator, fee_denominator)
    return SwapQuote(
        direction=direction,
        amount_in=amount_in,
        expected_out=expected_out,
        min_out=min_amount_out(expected_out, slippage_bps),
        fee_amount=swap_fee(amount_in, fee_numerator, fee_denominator),
        price_impact_bps=price_impact_bps(amount_in, expected_out, reserve_in, reserve_out),
        slippage_bps=slippage_bps,
    )
