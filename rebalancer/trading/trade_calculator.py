"""
Trade solver for moving on-chain LMSR prices onto reference odds.

For each outcome the AMM holding that produces the target price, with every
other holding fixed, follows from the LMSR price relation:

    delta_q_i = -b * log2(target_i / current_i) / log2(n)

The bot trades the opposite of that change. The whole vector is then shrunk by
one common factor so that it fits the bot's outcome-token inventory, the AMM's
own holdings and the bot's free collateral.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from rebalancer.amm import lmsr
from rebalancer.amm.fixed_point import ONE, binary_log, sdiv
from rebalancer.domain.errors import DegenerateMarket
from rebalancer.domain.models import InventoryConstraint, MarketState, ReferenceOdds, TradeVector
from rebalancer.ports.ledger import LedgerPort

logger = logging.getLogger(__name__)

REASON_TRADE = "trade"
REASON_DEGENERATE = "degenerate"
REASON_ALIGNED = "aligned"
REASON_INSUFFICIENT = "insufficient_resources"


@dataclass(frozen=True)
class TradeResult:
    trade: TradeVector | None
    reason: str
    ideal: TradeVector | None = None
    inventory_scale: int = ONE
    collateral_scale: int = ONE

    @property
    def has_trade(self) -> bool:
        return self.trade is not None

    @property
    def scale(self) -> int:
        return min(self.inventory_scale, self.collateral_scale)


def ideal_trade(state: MarketState, odds: ReferenceOdds) -> TradeVector:
    """Unconstrained trade vector taking every outcome to 1/odds."""
    if state.is_degenerate:
        raise DegenerateMarket(f"market {state.market_id} has b == 0")
    if len(odds.values) != state.outcome_count:
        raise ValueError(f"expected {state.outcome_count} odds, got {len(odds.values)}")

    b = state.funding
    current = lmsr.predict_probabilities(state.outcome_balances, b)
    target = odds.implied_probabilities()
    log2n = binary_log(state.outcome_count * ONE)

    amounts = []
    for cur, tgt in zip(current, target):
        if cur == 0 or tgt == 0:
            amounts.append(0)
            continue
        amounts.append(sdiv(b * (binary_log(tgt) - binary_log(cur)), log2n))
    return TradeVector(tuple(amounts))


def inventory_scale(trade: TradeVector, state: MarketState, inventory: InventoryConstraint) -> int:
    """
    Largest common scale (fixed point, at most ONE) such that every sell leg is
    covered by the bot's tokens and no buy leg takes more than the AMM holds.
    """
    scale = ONE
    for i, amount in enumerate(trade.amounts):
        if amount < 0:
            available = inventory.outcome_balances[i]
            if available < -amount:
                scale = min(scale, available * ONE // -amount)
        elif amount > 0:
            held = state.outcome_balances[i]
            if held < amount:
                scale = min(scale, held * ONE // amount)
    return scale


def collateral_scale(cost: int, free_collateral: int) -> int:
    if cost <= 0 or cost <= free_collateral:
        return ONE
    return max(0, free_collateral) * ONE // cost


class TradeCalculator:
    def __init__(self, ledger: LedgerPort):
        self.ledger = ledger

    async def calculate(
        self,
        market_id: int,
        state: MarketState,
        odds: ReferenceOdds,
        inventory: InventoryConstraint,
    ) -> TradeResult:
        if state.is_degenerate:
            logger.warning(f"[{market_id}] Degenerate market (b == 0); no trade")
            return TradeResult(trade=None, reason=REASON_DEGENERATE)

        ideal = ideal_trade(state, odds)
        if ideal.is_zero:
            return TradeResult(trade=None, reason=REASON_ALIGNED, ideal=ideal)

        inv_scale = inventory_scale(ideal, state, inventory)

        # Quote the unscaled vector; the scaled one costs proportionally less.
        cost = await self.ledger.calc_net_cost(market_id, ideal.to_list())
        coll_scale = collateral_scale(cost, inventory.free_collateral)

        scale = min(inv_scale, coll_scale)
        if scale < ONE:
            logger.info(
                f"[{market_id}] Scaling trade by {scale / ONE:.4f} "
                f"(inventory {inv_scale / ONE:.4f}, collateral {coll_scale / ONE:.4f}, cost {cost})"
            )
        trade = ideal.scaled(scale)
        if trade.is_zero:
            reason = REASON_INSUFFICIENT if scale < ONE else REASON_ALIGNED
            return TradeResult(
                trade=None, reason=reason, ideal=ideal, inventory_scale=inv_scale, collateral_scale=coll_scale
            )

        return TradeResult(
            trade=trade, reason=REASON_TRADE, ideal=ideal, inventory_scale=inv_scale, collateral_scale=coll_scale
        )
