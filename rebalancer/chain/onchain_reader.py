from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, localcontext

from rebalancer.amm.fixed_point import ONE
from rebalancer.domain.models import InventoryConstraint, MarketState
from rebalancer.ports.ledger import LedgerPort
from rebalancer.trader.timeout import with_timeout

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_TIMEOUT_SECONDS = 60.0


def probability_to_odds(probability: int) -> Decimal | None:
    """Decimal odds for a 192.64 probability; None when the price is zero."""
    if probability <= 0:
        return None
    with localcontext() as ctx:
        ctx.prec = 40
        return Decimal(ONE) / Decimal(probability)


class OnChainReader:
    """Read-only view of the ledger, every call bounded by a timeout."""

    def __init__(self, ledger: LedgerPort, timeout_seconds: float = DEFAULT_LEDGER_TIMEOUT_SECONDS, outcome_count: int = 3):
        self.ledger = ledger
        self.timeout_seconds = timeout_seconds
        self.outcome_count = outcome_count

    async def get_active_market_ids(self) -> list[int]:
        return await with_timeout(self.ledger.list_active_markets(), self.timeout_seconds, "getActiveMatches")

    async def get_market_state(self, market_id: int) -> MarketState | None:
        return await with_timeout(
            self.ledger.read_market_state(market_id), self.timeout_seconds, f"[{market_id}] market state"
        )

    async def get_onchain_odds(self, market_id: int) -> tuple[Decimal, ...] | None:
        prices = await with_timeout(
            asyncio.gather(
                *(self.ledger.read_marginal_probability(market_id, i) for i in range(self.outcome_count))
            ),
            self.timeout_seconds,
            f"[{market_id}] marginal prices",
        )
        odds = tuple(probability_to_odds(int(p)) for p in prices)
        if any(o is None for o in odds):
            logger.warning(f"[{market_id}] Zero marginal price on chain; odds undefined")
            return None
        return odds  # type: ignore[return-value]

    async def get_inventory(self, market_id: int) -> InventoryConstraint:
        return await with_timeout(
            self.ledger.read_inventory(market_id), self.timeout_seconds, f"[{market_id}] inventory"
        )
