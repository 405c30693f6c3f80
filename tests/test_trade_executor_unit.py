import asyncio

import pytest

from conftest import MM_PREFIX, FakeLedger
from rebalancer.amm import lmsr
from rebalancer.domain.errors import LedgerRejection, LedgerTimeout
from rebalancer.domain.models import TradeVector
from rebalancer.trading.executor import TradeExecutor

M = 1_000_000
Q = (200 * M, 80 * M, 50 * M)
B = 300 * M


def _execute(ledger, trade, market_id=7):
    ledger.add_market(market_id, Q, B, inventory=(50 * M,) * 3)
    ledger.free_collateral = 1_000 * M
    return asyncio.run(TradeExecutor(ledger).execute(market_id, trade))


def test_zero_vector_is_not_submitted(ledger):
    assert _execute(ledger, TradeVector((0, 0, 0))) is None
    assert ledger.calls == []


def test_buy_approves_exact_quoted_cost(ledger):
    amounts = [10 * M, 0, 0]
    expected = lmsr.calc_net_cost(Q, B, amounts)

    result = _execute(ledger, TradeVector(tuple(amounts)))

    assert result.net_cost == expected
    assert result.tx_hash.startswith("0xtrade")
    assert ledger.writes("approve_collateral") == [("approve_collateral", f"{MM_PREFIX}7", expected)]
    assert ledger.writes("submit_trade") == [("submit_trade", 7, amounts, expected)]
    assert ledger.writes("ensure_outcome_approval") == []


def test_mixed_trade_also_approves_outcome_tokens(ledger):
    result = _execute(ledger, TradeVector((10 * M, -5 * M, -5 * M)))
    assert result is not None
    assert ledger.writes("ensure_outcome_approval") == [("ensure_outcome_approval", 7)]
    names = [c[0] for c in ledger.calls]
    assert names.index("ensure_outcome_approval") < names.index("submit_trade")


def test_sell_only_trade_needs_no_collateral_approval(ledger):
    result = _execute(ledger, TradeVector((-10 * M, 0, 0)))
    assert result.net_cost < 0
    assert ledger.writes("approve_collateral") == []
    assert ledger.writes("ensure_outcome_approval") == [("ensure_outcome_approval", 7)]


def test_quote_is_taken_again_before_submitting(ledger):
    amounts = [10 * M, -5 * M, 0]
    _execute(ledger, TradeVector(tuple(amounts)))
    assert ledger.calls[0] == ("calc_net_cost", 7, amounts)


def test_rejection_propagates(ledger):
    ledger.reject_trades = True
    with pytest.raises(LedgerRejection) as exc:
        _execute(ledger, TradeVector((10 * M, 0, 0)))
    assert exc.value.tx_hash == "0xdead"


def test_slow_quote_times_out_before_anything_is_written():
    class HangingLedger(FakeLedger):
        async def calc_net_cost(self, market_id, amounts):
            await asyncio.sleep(10)
            return 0

    ledger = HangingLedger()
    ledger.add_market(7, Q, B, inventory=(50 * M,) * 3)
    executor = TradeExecutor(ledger, timeout_seconds=0.01)

    with pytest.raises(LedgerTimeout, match="calcNetCost"):
        asyncio.run(executor.execute(7, TradeVector((10 * M, 0, 0))))
    assert ledger.calls == []
