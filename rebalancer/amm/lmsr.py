"""
LMSR cost and price model, evaluated entirely through the fixed-point bounds.

Quantities (q, b, trade amounts, costs) are micro-unit integers. Exponents,
logarithms and probabilities are 192.64 fixed point. The exponent for outcome i
is -q_i * log2(n) / b, so prices follow n ** (-q_i / b).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from rebalancer.amm.fixed_point import ONE, EstimationMode, binary_log, pow2, sdiv
from rebalancer.domain.errors import DegenerateMarket

logger = logging.getLogger(__name__)

# Stability offset added after subtracting the largest exponent.
EXP_LIMIT = 337769972052787200000


def _log2_outcomes(n: int, mode: EstimationMode = EstimationMode.MIDPOINT) -> int:
    if n < 2:
        raise ValueError(f"an LMSR market needs at least two outcomes; got {n}")
    return binary_log(n * ONE, mode)


def _sum_exp_offset(
    quantities: Sequence[int], b: int, log2n: int, mode: EstimationMode
) -> tuple[list[int], int, int]:
    """Log-sum-exp helper: returns (terms, sum of terms, offset) for 2**(-q_i*log2n/b)."""
    exponents = [sdiv(-q * log2n, b) for q in quantities]
    offset = max(exponents) - EXP_LIMIT
    terms = [pow2(e - offset, mode) for e in exponents]
    return terms, sum(terms), offset


def _cost_fixed(quantities: Sequence[int], b: int, log2n: int, mode: EstimationMode) -> int:
    """b * log2(sum) / log2(n), kept in fixed point (micro-units * ONE)."""
    _, total, offset = _sum_exp_offset(quantities, b, log2n, mode)
    level = binary_log(total, mode) + offset
    return sdiv(level * ONE, log2n) * b


def cost(q: Sequence[int], b: int) -> int:
    """LMSR cost function C(q) in micro-units."""
    if b == 0:
        raise DegenerateMarket("cost is undefined for b == 0")
    log2n = _log2_outcomes(len(q))
    return sdiv(_cost_fixed(q, b, log2n, EstimationMode.MIDPOINT), ONE)


def predict_probabilities(
    q: Sequence[int], b: int, delta: Sequence[int] | None = None
) -> list[int]:
    """
    Probabilities (fixed point) after adding `delta` to the AMM holdings.

    `delta` is expressed as a change in AMM holdings, so a bot trade vector t
    is applied as delta = -t. A degenerate market (b == 0) yields all zeros.
    """
    if b == 0:
        return [0] * len(q)
    if delta is not None:
        if len(delta) != len(q):
            raise ValueError("delta must have one entry per outcome")
        q = [qi + di for qi, di in zip(q, delta)]

    log2n = _log2_outcomes(len(q))
    terms, total, _ = _sum_exp_offset(q, b, log2n, EstimationMode.MIDPOINT)
    if total == 0:
        return [0] * len(q)
    return [term * ONE // total for term in terms]


def net_cost(q: Sequence[int], b: int, outcome: int, shares: int) -> int:
    """
    Signed cost in micro-units of moving `shares` of one outcome out of the AMM.

    Positive shares is a buy (the AMM's holding drops) and normally costs the
    buyer; negative shares is a sell and normally pays out (negative cost).
    """
    if shares == 0:
        return 0
    moved = list(q)
    moved[outcome] -= shares
    return cost(moved, b) - cost(q, b)


def calc_net_cost(q: Sequence[int], b: int, amounts: Sequence[int]) -> int:
    """
    Conservative quote for a whole trade vector, rounded up to the next micro-unit.

    The post-trade level is taken at its upper bound and the current level at
    its lower bound, the same way the ledger quotes so it never undercharges.
    """
    if b == 0:
        raise DegenerateMarket("net cost is undefined for b == 0")
    if len(amounts) != len(q):
        raise ValueError("amounts must have one entry per outcome")

    log2n = _log2_outcomes(len(q), EstimationMode.UPPER_BOUND)
    after = [qi - ai for qi, ai in zip(q, amounts)]
    level_after = _cost_fixed(after, b, log2n, EstimationMode.UPPER_BOUND)
    level_before = _cost_fixed(q, b, log2n, EstimationMode.LOWER_BOUND)
    raw = level_after - level_before

    if raw <= 0 or raw % ONE == 0:
        return sdiv(raw, ONE)
    return raw // ONE + 1


def marginal_price(q: Sequence[int], b: int, outcome: int) -> int:
    """Instantaneous price of one outcome (fixed point), as the contract view reports it."""
    if b == 0:
        raise DegenerateMarket("marginal price is undefined for b == 0")
    log2n = _log2_outcomes(len(q))
    terms, total, _ = _sum_exp_offset(q, b, log2n, EstimationMode.MIDPOINT)
    denominator = total // ONE
    if denominator == 0:
        return 0
    return terms[outcome] // denominator
