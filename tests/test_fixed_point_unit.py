from decimal import Decimal, localcontext

import pytest

from rebalancer.amm.fixed_point import (
    LN2,
    LOG2_E,
    MAX_POWER_POW2,
    MAX_UINT256,
    MIN_POWER_POW2,
    ONE,
    EstimationMode,
    binary_log,
    decimal_to_fixed,
    fixed_to_decimal,
    floor_log2,
    from_fixed_to_micro,
    log2_bounds,
    pow2,
    pow2_bounds,
    sdiv,
    to_fixed,
)
from rebalancer.domain.errors import DomainOverflow

SAMPLES = ["-20.75", "-10.5", "-1", "-0.3", "0", "0.001", "0.5", "0.999", "1", "3.25", "17.125", "40.75", "100.1"]


def _true_pow2_fixed(x: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 80
        return (Decimal(x) / ONE * Decimal(2).ln()).exp() * ONE


def _true_log2_fixed(x: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 80
        return (Decimal(x) / ONE).ln() / Decimal(2).ln() * ONE


@pytest.mark.parametrize("raw", SAMPLES)
def test_pow2_bounds_bracket_true_value(raw):
    x = decimal_to_fixed(raw)
    lower, upper = pow2_bounds(x)
    true = _true_pow2_fixed(x)
    assert lower <= true <= upper
    # Width stays within a few units of the last place.
    assert upper - lower <= (lower >> 60) + 2


def test_pow2_of_integers_is_exact_lower_bound():
    assert pow2_bounds(0)[0] == ONE
    assert pow2_bounds(3 * ONE)[0] == 8 * ONE
    assert pow2_bounds(-2 * ONE)[0] == ONE // 4


def test_pow2_negative_input_uses_floor_split():
    # -0.5 splits into shift -1 and fraction 0.5, giving 1/sqrt(2).
    value = pow2(-ONE // 2)
    assert abs(value - int(_true_pow2_fixed(-ONE // 2))) <= 16
    assert value < ONE


def test_pow2_modes_select_bound():
    x = decimal_to_fixed("1.7")
    lower, upper = pow2_bounds(x)
    assert pow2(x, EstimationMode.LOWER_BOUND) == lower
    assert pow2(x, EstimationMode.UPPER_BOUND) == upper
    assert lower <= pow2(x, EstimationMode.MIDPOINT) <= upper


def test_pow2_above_max_is_domain_overflow():
    with pytest.raises(DomainOverflow):
        pow2_bounds(MAX_POWER_POW2 + 1)


def test_pow2_below_min_underflows_to_zero():
    assert pow2_bounds(MIN_POWER_POW2 - 1) == (0, 1)


def test_pow2_at_max_fits_in_256_bits():
    lower, upper = pow2_bounds(MAX_POWER_POW2)
    assert 0 < lower <= upper <= MAX_UINT256


def test_floor_log2():
    assert floor_log2(ONE) == 0
    assert floor_log2(5 * ONE) == 2
    assert floor_log2(ONE // 4) == -2
    assert floor_log2(1) == -64
    with pytest.raises(DomainOverflow):
        floor_log2(0)


def test_log2_bounds_have_fixed_width():
    for x in (1, ONE // 3, ONE, 7 * ONE, 10**30):
        lower, upper = log2_bounds(x)
        assert upper == lower + 4


def test_log2_of_powers_of_two_is_exact():
    assert log2_bounds(8 * ONE)[0] == 3 * ONE
    assert log2_bounds(ONE // 2)[0] == -ONE
    assert log2_bounds(ONE)[0] == 0


@pytest.mark.parametrize("raw", ["0.001", "0.35", "0.7", "1.5", "3", "1000", "123456.789"])
def test_log2_bounds_bracket_true_value(raw):
    x = decimal_to_fixed(raw)
    lower, upper = log2_bounds(x)
    true = _true_log2_fixed(x)
    assert lower - 2 <= true <= upper + 2


def test_log2_of_non_positive_is_domain_overflow():
    with pytest.raises(DomainOverflow):
        log2_bounds(0)
    with pytest.raises(DomainOverflow):
        binary_log(-ONE)


@pytest.mark.parametrize("x", [ONE // 3, ONE, 7 * ONE, 12345 * ONE, ONE * 10**9 + 17])
def test_pow2_and_log2_are_approximate_inverses(x):
    lower, _ = log2_bounds(x)
    back = pow2(lower)
    assert abs(back - x) <= x // 10**15 + 16


def test_sdiv_truncates_toward_zero():
    assert sdiv(7, 2) == 3
    assert sdiv(-7, 2) == -3
    assert sdiv(7, -2) == -3
    assert sdiv(-7, -2) == 3
    with pytest.raises(ZeroDivisionError):
        sdiv(1, 0)


def test_unit_conversions():
    assert to_fixed(1_000_000) == ONE
    assert to_fixed(-500_000) == -(ONE // 2)
    assert from_fixed_to_micro(ONE // 2) == 500_000
    assert fixed_to_decimal(ONE // 4) == Decimal("0.25")
    assert decimal_to_fixed("0.25") == ONE // 4
    assert decimal_to_fixed(Decimal("-1.5")) == -(3 * ONE // 2)


def test_ln2_and_log2_e_are_reciprocal():
    assert abs(LN2 * LOG2_E // ONE - ONE) <= 2
    assert LN2 < ONE < LOG2_E
