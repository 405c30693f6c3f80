import logging

from rebalancer.domain.models import TradeVector, TxResult
from rebalancer.ports.ledger import LedgerPort
from rebalancer.trader.timeout import with_timeout

logger = logging.getLogger(__name__)


class TradeExecutor:
    """
    Submits a trade with a freshly quoted, exact collateral limit.

    LedgerRejection and LedgerTimeout propagate to the caller; nothing is
    retried here, the next scheduled cycle recomputes from fresh state.
    Reads are bounded by `timeout_seconds`; writes wait on their receipt.
    """

    def __init__(self, ledger: LedgerPort, timeout_seconds: float = 60.0):
        self.ledger = ledger
        self.timeout_seconds = timeout_seconds

    async def execute(self, market_id: int, trade: TradeVector) -> TxResult | None:
        if trade.is_zero:
            logger.info(f"[{market_id}] Empty trade vector; nothing to execute")
            return None

        amounts = trade.to_list()
        # Re-quote: state may have moved since the trade was computed.
        cost = await with_timeout(
            self.ledger.calc_net_cost(market_id, amounts), self.timeout_seconds, f"[{market_id}] calcNetCost"
        )
        logger.info(f"[{market_id}] Executing trade {amounts} at quoted cost {cost}")

        if cost > 0:
            spender = await with_timeout(
                self.ledger.market_maker_address(market_id), self.timeout_seconds, f"[{market_id}] market maker lookup"
            )
            await self.ledger.approve_collateral(spender, cost)

        if trade.has_sells:
            await self.ledger.ensure_outcome_approval(market_id)

        result = await self.ledger.submit_trade(market_id, amounts, cost)
        logger.info(f"[{market_id}] Trade confirmed: {result.tx_hash} (gas used {result.gas_used})")
        return TxResult(tx_hash=result.tx_hash, gas_used=result.gas_used, net_cost=cost)
