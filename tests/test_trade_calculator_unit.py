import asyncio
from decimal import Decimal

import pytest

from conftest import FakeLedger, odds
from rebalancer.amm import lmsr
from rebalancer.amm.fixed_point import ONE
from rebalancer.domain.errors import DegenerateMarket
from rebalancer.domain.models import InventoryConstraint, MarketState, ReferenceOdds, TradeVector
from rebalancer.trading.trade_calculator import (
    REASON_ALIGNED,
    REASON_DEGENERATE,
    REASON_INSUFFICIENT,
    REASON_TRADE,
    TradeCalculator,
    collateral_scale,
    ideal_trade,
    inventory_scale,
)

M = 1_000_000
PLENTY = InventoryConstraint(outcome_balances=(10_000 * M,) * 3, free_collateral=10_000 * M)
SKEWED = MarketState(outcome_balances=(200 * M, 80 * M, 50 * M), funding=300 * M, market_id=7)
SKEWED_TARGET = odds(2.5, 1 / 0.35, 4.0)


def _calculate(ledger: FakeLedger, state: MarketState, target: ReferenceOdds, inventory: InventoryConstraint):
    ledger.add_market(state.market_id, state.outcome_balances, state.funding)
    ledger.free_collateral = inventory.free_collateral
    return asyncio.run(TradeCalculator(ledger).calculate(state.market_id, state, target, inventory))


def _relative_error(probs: list[int], target: list[int]) -> float:
    return max(abs(p - t) / t for p, t in zip(probs, target))


def test_balanced_market_needs_no_trade(ledger):
    state = MarketState(outcome_balances=(100 * M,) * 3, funding=300 * M, market_id=1)
    result = _calculate(ledger, state, odds(3.0, 3.0, 3.0), PLENTY)
    assert result.trade is None
    assert result.reason == REASON_ALIGNED
    assert result.ideal.is_zero
    # Nothing to quote.
    assert ledger.calls == []


def test_odds_matching_current_prices_give_zero_vector():
    current = lmsr.predict_probabilities(SKEWED.outcome_balances, SKEWED.funding)
    matching = ReferenceOdds(tuple(Decimal(ONE) / Decimal(p) for p in current))
    assert ideal_trade(SKEWED, matching).is_zero


def test_skewed_market_buys_underpriced_and_sells_overpriced():
    trade = ideal_trade(SKEWED, SKEWED_TARGET)
    assert trade.amounts[0] > 0
    assert trade.amounts[1] < 0
    assert trade.amounts[2] < 0


def test_degenerate_market_is_reported_not_raised(ledger):
    state = MarketState(outcome_balances=(100 * M,) * 3, funding=0, market_id=3)
    result = _calculate(ledger, state, odds(3.0, 3.0, 3.0), PLENTY)
    assert result.trade is None
    assert result.reason == REASON_DEGENERATE
    with pytest.raises(DegenerateMarket):
        ideal_trade(state, odds(3.0, 3.0, 3.0))


def test_unconstrained_trade_lands_on_target(ledger):
    result = _calculate(ledger, SKEWED, SKEWED_TARGET, PLENTY)
    assert result.reason == REASON_TRADE
    assert result.trade == result.ideal
    assert result.scale == ONE

    target = SKEWED_TARGET.implied_probabilities()
    before = lmsr.predict_probabilities(SKEWED.outcome_balances, SKEWED.funding)
    after = lmsr.predict_probabilities(
        SKEWED.outcome_balances, SKEWED.funding, delta=[-a for a in result.trade.amounts]
    )
    assert _relative_error(after, target) < 0.001
    assert _relative_error(after, target) < _relative_error(before, target)


def test_inventory_shortfall_scales_every_leg(ledger):
    ideal = ideal_trade(SKEWED, SKEWED_TARGET)
    half_of_sell = -ideal.amounts[2] // 2
    inventory = InventoryConstraint(outcome_balances=(10_000 * M, 10_000 * M, half_of_sell), free_collateral=10_000 * M)

    result = _calculate(ledger, SKEWED, SKEWED_TARGET, inventory)
    assert result.reason == REASON_TRADE
    assert result.inventory_scale < ONE
    assert result.trade == ideal.scaled(result.inventory_scale)
    # Capped leg fits the inventory and the unconstrained legs shrank by the same factor.
    assert -result.trade.amounts[2] <= half_of_sell
    for scaled, full in zip(result.trade.amounts, ideal.amounts):
        assert abs(scaled / full - 0.5) < 1e-6


def test_collateral_shortfall_scales_trade(ledger):
    # Overround target: every outcome is underpriced, so the trade is all buys.
    target = odds(2.5, 2.5, 2.2)
    ideal = ideal_trade(SKEWED, target)
    assert all(a > 0 for a in ideal.amounts)
    full_cost = lmsr.calc_net_cost(SKEWED.outcome_balances, SKEWED.funding, ideal.amounts)
    free = full_cost // 2
    inventory = InventoryConstraint(outcome_balances=(0, 0, 0), free_collateral=free)

    result = _calculate(ledger, SKEWED, target, inventory)
    assert result.reason == REASON_TRADE
    assert result.inventory_scale == ONE
    assert result.collateral_scale == free * ONE // full_cost
    assert result.trade == ideal.scaled(result.collateral_scale)
    # The quote was taken on the unscaled vector.
    assert ledger.calls[0] == ("calc_net_cost", SKEWED.market_id, ideal.to_list())
    scaled_cost = lmsr.calc_net_cost(SKEWED.outcome_balances, SKEWED.funding, result.trade.amounts)
    assert scaled_cost <= free + 2


def test_no_inventory_for_required_sells_aborts(ledger):
    inventory = InventoryConstraint(outcome_balances=(0, 0, 0), free_collateral=10_000 * M)
    result = _calculate(ledger, SKEWED, SKEWED_TARGET, inventory)
    assert result.trade is None
    assert result.reason == REASON_INSUFFICIENT
    assert result.inventory_scale == 0


def test_buys_are_capped_by_amm_holdings():
    state = MarketState(outcome_balances=(100 * M, 100 * M, 100 * M), funding=300 * M)
    trade = TradeVector((150 * M, 0, 0))
    scale = inventory_scale(trade, state, PLENTY)
    assert scale == 100 * M * ONE // (150 * M)
    assert trade.scaled(scale).amounts[0] <= 100 * M


def test_collateral_scale():
    assert collateral_scale(-5 * M, 0) == ONE
    assert collateral_scale(5 * M, 10 * M) == ONE
    assert collateral_scale(10 * M, 5 * M) == ONE // 2
    assert collateral_scale(10 * M, 0) == 0


def test_invalid_reference_odds_raise():
    with pytest.raises(ValueError):
        ideal_trade(SKEWED, odds(1.0, 3.0, 3.0))
