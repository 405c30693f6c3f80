"""
Outcome-token inventory management.

The bot needs outcome tokens before it can sell into the AMM. Inventory is
minted by splitting collateral into a complete set (one token per outcome) and
is turned back into collateral by redeeming after the oracle reports.
"""

import logging
from collections.abc import Iterable
from decimal import ROUND_FLOOR, Decimal

from rebalancer.domain.models import TxResult
from rebalancer.ports.ledger import LedgerPort
from rebalancer.trader.timeout import with_timeout

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_BOOTSTRAPPED = "bootstrapped"
STATUS_BOOTSTRAPPED_HALF = "bootstrapped_half"
STATUS_FAILED = "failed"


def full_partition(outcome_count: int) -> list[int]:
    """Index sets [1, 2, 4, ...], one per outcome slot."""
    return [1 << i for i in range(outcome_count)]


def to_token_units(amount: Decimal, decimals: int) -> int:
    return int((Decimal(amount) * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_FLOOR))


class PortfolioManager:
    def __init__(
        self,
        ledger: LedgerPort,
        collateral_decimals: int = 6,
        outcome_count: int = 3,
        timeout_seconds: float = 60.0,
    ):
        self.ledger = ledger
        self.collateral_decimals = collateral_decimals
        self.outcome_count = outcome_count
        self.timeout_seconds = timeout_seconds

    async def _read(self, awaitable, label: str):
        # Writes are bounded by their receipt wait; only reads go through here.
        return await with_timeout(awaitable, self.timeout_seconds, label)

    async def bootstrap_inventory(self, condition_id: str, collateral_amount: Decimal) -> TxResult:
        """Approve and split `collateral_amount` (human units) into one complete set of outcome tokens."""
        units = to_token_units(collateral_amount, self.collateral_decimals)
        if units <= 0:
            raise ValueError(f"bootstrap amount must be positive; got {collateral_amount}")

        logger.info(f"Bootstrapping inventory for condition {condition_id} with {collateral_amount} collateral ({units} units)")
        spender = await self._read(self.ledger.conditional_tokens_address(), "conditional tokens lookup")
        await self.ledger.approve_collateral(spender, units)
        result = await self.ledger.split_collateral(condition_id, full_partition(self.outcome_count), units)
        logger.info(f"Bootstrap complete for condition {condition_id}: {result.tx_hash}")
        return result

    async def unwind_positions(self, market_id: int) -> bool:
        """
        Redeem every outcome with a non-zero payout once the oracle has reported.

        Returns False (and does nothing) while payouts are still unreported.
        """
        condition_id = await self._read(self.ledger.read_condition_id(market_id), f"[{market_id}] condition id")
        numerators = await self._read(self.ledger.read_payout_numerators(market_id), f"[{market_id}] payout numerators")
        if not numerators or not any(numerators):
            logger.info(f"[{market_id}] Cannot unwind yet: outcome not reported for condition {condition_id}")
            return False

        index_sets = [1 << i for i, weight in enumerate(numerators) if weight > 0]
        logger.info(f"[{market_id}] Oracle reported {numerators}; redeeming index sets {index_sets}")
        result = await self.ledger.redeem_positions(condition_id, index_sets)
        logger.info(f"[{market_id}] Unwind complete: {result.tx_hash}")
        return True

    async def reconcile_missing_bootstraps(
        self, market_ids: Iterable[int], expected_amount: Decimal
    ) -> dict[int, str]:
        """
        Bootstrap every market where the bot holds nothing in some outcome slot.

        A failed bootstrap is retried once with half the amount. Failures are
        recorded per market and never stop the batch.
        """
        report: dict[int, str] = {}
        for market_id in market_ids:
            try:
                inventory = await self._read(self.ledger.read_inventory(market_id), f"[{market_id}] inventory")
                if all(balance > 0 for balance in inventory.outcome_balances):
                    report[market_id] = STATUS_OK
                    continue
                condition_id = await self._read(self.ledger.read_condition_id(market_id), f"[{market_id}] condition id")
            except Exception as e:
                logger.error(f"[{market_id}] Could not check inventory: {type(e).__name__}: {e}")
                report[market_id] = STATUS_FAILED
                continue

            logger.warning(f"[{market_id}] Missing outcome inventory {list(inventory.outcome_balances)}; bootstrapping")
            try:
                await self.bootstrap_inventory(condition_id, expected_amount)
                report[market_id] = STATUS_BOOTSTRAPPED
                continue
            except Exception as e:
                logger.warning(f"[{market_id}] Bootstrap with {expected_amount} failed ({type(e).__name__}: {e}); retrying with half")

            try:
                await self.bootstrap_inventory(condition_id, Decimal(expected_amount) / 2)
                report[market_id] = STATUS_BOOTSTRAPPED_HALF
            except Exception as e:
                logger.error(f"[{market_id}] Bootstrap failed: {type(e).__name__}: {e}")
                report[market_id] = STATUS_FAILED
        return report
