"""
Unsigned 192.64 fixed-point exponent and logarithm bounds.

This is an integer-for-integer mirror of the market maker's on-chain math
library. Every quantity is a Python int scaled by ONE (2**64); nothing in this
module touches floating point, so an off-chain quote agrees with what the
contract will compute.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, localcontext
from enum import Enum

from rebalancer.domain.errors import DomainOverflow

ONE = 0x10000000000000000
LN2 = 0xB17217F7D1CF79AC
LOG2_E = 0x171547652B82FE177

MAX_POWER_POW2 = 3541774862152233910271
MIN_POWER_POW2 = -1180591620717411303424

MAX_UINT256 = (1 << 256) - 1

# Collateral and outcome tokens use 6 decimals.
MICRO = 1_000_000

# (coefficient, extra right shift) for the 2**z polynomial, z in [0, ONE).
_POW2_TERMS: tuple[tuple[int, int], ...] = (
    (0xB17217F7D1CF79AB, 0),
    (0xF5FDEFFC162C7543, 2),
    (0xE35846B82505FC59, 4),
    (0x9D955B7DD273B94E, 6),
    (0xAEC3FF3C53398883, 9),
    (0xA184897C363C3B7A, 12),
    (0xFFE5FE2C45863435, 16),
    (0xB160111D2E411FEC, 19),
    (0xDA929E9CAF3E1ED2, 23),
    (0xF267A8AC5C764FB7, 27),
    (0xF465639A8DD92607, 31),
    (0xE1DEB287E14C2F15, 35),
    (0xC0B0C98B3687CB14, 39),
    (0x98A4B26AC3C54B9F, 43),
    (0xE1B7421D82010F33, 48),
    (0x9C744D73CFC59C91, 52),
    (0xCC2225A0E12D3EAB, 57),
    (0xFB8BB5EDA1B4AEB9, 62),
)


class EstimationMode(Enum):
    LOWER_BOUND = "lower"
    UPPER_BOUND = "upper"
    MIDPOINT = "midpoint"


def sdiv(a: int, b: int) -> int:
    """Signed integer division truncating toward zero (contract semantics)."""
    if b == 0:
        raise ZeroDivisionError("sdiv by zero")
    q = abs(a) // abs(b)
    return -q if (a < 0) != (b < 0) else q


def _select(lower: int, upper: int, mode: EstimationMode) -> int:
    if mode is EstimationMode.LOWER_BOUND:
        return lower
    if mode is EstimationMode.UPPER_BOUND:
        return upper
    return (upper - lower) // 2 + lower


def pow2_bounds(x: int) -> tuple[int, int]:
    """
    Lower and upper bounds for 2**x, with x and the result in 192.64 fixed point.

    Inputs below MIN_POWER_POW2 underflow to (0, 1). Inputs above MAX_POWER_POW2
    raise DomainOverflow. Results that do not fit in 256 bits clamp to MAX_UINT256.
    """
    if x > MAX_POWER_POW2:
        raise DomainOverflow(f"pow2 input too large: {x}")
    if x < MIN_POWER_POW2:
        return 0, 1

    # Floor split: for negative x the fractional part must still land in [0, ONE).
    shift, z = divmod(x, ONE)

    # Accumulator is scaled by 2**128.
    result = ONE << 64
    zpow = z
    for coeff, extra_shift in _POW2_TERMS:
        result += (coeff * zpow) >> extra_shift
        zpow = (zpow * z) // ONE

    shift -= 64
    if shift >= 0:
        if result >> (256 - shift) == 0:
            lower = result << shift
            upper = lower + ((8 * ONE) << shift)
            return lower, min(upper, MAX_UINT256)
        return MAX_UINT256, MAX_UINT256

    lower = result >> -shift
    upper = lower + ((8 * ONE) >> -shift) + 1
    return lower, upper


def pow2(x: int, mode: EstimationMode = EstimationMode.MIDPOINT) -> int:
    lower, upper = pow2_bounds(x)
    return _select(lower, upper, mode)


def floor_log2(x: int) -> int:
    """Largest integer e such that x >> e >= ONE (left shift for negative e)."""
    if x <= 0:
        raise DomainOverflow("floor_log2 is undefined for non-positive input")
    lo, hi = -64, 193
    while lo + 1 < hi:
        mid = (hi + lo) >> 1
        y = x << -mid if mid < 0 else x >> mid
        if y < ONE:
            hi = mid
        else:
            lo = mid
    return lo


def log2_bounds(x: int) -> tuple[int, int]:
    """Bounds for log2(x); the upper bound is always lower + 4."""
    if x <= 0:
        raise DomainOverflow("log2 input must be positive")

    exponent = floor_log2(x)
    y = x << -exponent if exponent < 0 else x >> exponent
    lower = exponent * ONE

    # y is now in [ONE, 2*ONE); square and halve to pull out fractional bits.
    for m in range(1, 65):
        if y == ONE:
            break
        y = (y * y) // ONE
        if y >= 2 * ONE:
            lower += ONE >> m
            y //= 2

    return lower, lower + 4


def binary_log(x: int, mode: EstimationMode = EstimationMode.MIDPOINT) -> int:
    lower, upper = log2_bounds(x)
    return _select(lower, upper, mode)


def to_fixed(micro: int) -> int:
    """Micro-units (6 decimals) to 192.64 fixed point."""
    return sdiv(micro * ONE, MICRO)


def from_fixed_to_micro(fx: int) -> int:
    return sdiv(fx * MICRO, ONE)


def fixed_to_decimal(fx: int) -> Decimal:
    """Exact decimal rendering of a fixed-point value (for odds and logging)."""
    with localcontext() as ctx:
        ctx.prec = 80
        return Decimal(fx) / Decimal(ONE)


def decimal_to_fixed(value: Decimal | int | str) -> int:
    """Decimal to fixed point, rounding toward negative infinity."""
    with localcontext() as ctx:
        ctx.prec = 80
        scaled = Decimal(value) * ONE
        return int(scaled.to_integral_value(rounding=ROUND_FLOOR))
