from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from rebalancer.amm import lmsr
from rebalancer.domain.errors import LedgerRejection
from rebalancer.domain.models import (
    Fixture,
    InventoryConstraint,
    MarketState,
    ReferenceEvent,
    ReferenceOdds,
    TxResult,
)

MM_PREFIX = "0xmm"
CTF_ADDRESS = "0xctf"


class FakeLedger:
    """
    In-memory ledger whose prices and quotes come from the LMSR model.

    Trades move the AMM holdings and the bot's balances the way the contracts
    do, and every write is recorded in `calls` for assertions.
    """

    def __init__(self):
        self.markets: dict[int, dict] = {}
        self.free_collateral = 0
        self.calls: list[tuple] = []
        self.reject_trades = False
        self.fail_split_amounts: set[int] = set()
        self.operator_approved: set[int] = set()

    def add_market(
        self,
        market_id: int,
        q: Sequence[int],
        b: int,
        inventory: Sequence[int] = (0, 0, 0),
        payouts: Sequence[int] = (),
    ) -> None:
        self.markets[market_id] = {
            "q": list(q),
            "b": b,
            "inventory": list(inventory),
            "condition_id": f"0xcond{market_id}",
            "payouts": list(payouts),
        }

    def _market(self, market_id: int) -> dict:
        if market_id not in self.markets:
            raise LedgerRejection(f"unknown market {market_id}")
        return self.markets[market_id]

    async def list_active_markets(self) -> list[int]:
        return list(self.markets)

    async def read_market_state(self, market_id: int) -> MarketState | None:
        m = self.markets.get(market_id)
        if m is None:
            return None
        return MarketState(outcome_balances=tuple(m["q"]), funding=m["b"], market_id=market_id)

    async def read_marginal_probability(self, market_id: int, outcome: int) -> int:
        m = self._market(market_id)
        return lmsr.marginal_price(m["q"], m["b"], outcome)

    async def calc_net_cost(self, market_id: int, amounts: Sequence[int]) -> int:
        m = self._market(market_id)
        self.calls.append(("calc_net_cost", market_id, list(amounts)))
        return lmsr.calc_net_cost(m["q"], m["b"], amounts)

    async def read_inventory(self, market_id: int) -> InventoryConstraint:
        m = self._market(market_id)
        return InventoryConstraint(outcome_balances=tuple(m["inventory"]), free_collateral=self.free_collateral)

    async def read_condition_id(self, market_id: int) -> str:
        return self._market(market_id)["condition_id"]

    async def read_payout_numerators(self, market_id: int) -> list[int]:
        return list(self._market(market_id)["payouts"])

    async def market_maker_address(self, market_id: int) -> str:
        return f"{MM_PREFIX}{market_id}"

    async def conditional_tokens_address(self) -> str:
        return CTF_ADDRESS

    async def approve_collateral(self, spender: str, amount: int) -> TxResult:
        self.calls.append(("approve_collateral", spender, amount))
        return TxResult(tx_hash=f"0xapprove{len(self.calls)}")

    async def ensure_outcome_approval(self, market_id: int) -> None:
        self.calls.append(("ensure_outcome_approval", market_id))
        self.operator_approved.add(market_id)

    async def submit_trade(self, market_id: int, amounts: Sequence[int], collateral_limit: int) -> TxResult:
        self.calls.append(("submit_trade", market_id, list(amounts), collateral_limit))
        if self.reject_trades:
            raise LedgerRejection("trade reverted", tx_hash="0xdead")
        m = self._market(market_id)
        cost = lmsr.calc_net_cost(m["q"], m["b"], amounts)
        if cost > collateral_limit:
            raise LedgerRejection("collateral limit exceeded", tx_hash="0xslip")
        m["q"] = [q - a for q, a in zip(m["q"], amounts)]
        m["inventory"] = [i + a for i, a in zip(m["inventory"], amounts)]
        self.free_collateral -= cost
        return TxResult(tx_hash=f"0xtrade{len(self.calls)}", gas_used=150_000)

    async def split_collateral(self, condition_id: str, partition: Sequence[int], amount: int) -> TxResult:
        self.calls.append(("split_collateral", condition_id, list(partition), amount))
        if amount in self.fail_split_amounts:
            raise LedgerRejection("split reverted")
        for m in self.markets.values():
            if m["condition_id"] == condition_id:
                m["inventory"] = [i + amount for i in m["inventory"]]
        return TxResult(tx_hash=f"0xsplit{len(self.calls)}")

    async def redeem_positions(self, condition_id: str, index_sets: Sequence[int]) -> TxResult:
        self.calls.append(("redeem_positions", condition_id, list(index_sets)))
        return TxResult(tx_hash=f"0xredeem{len(self.calls)}")

    def writes(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]


class FakeFixtures:
    def __init__(self, fixtures: dict[int, Fixture] | None = None):
        self.fixtures = fixtures or {}
        self.calls: list[int] = []

    async def fetch_fixture(self, fixture_id: int) -> Fixture | None:
        self.calls.append(fixture_id)
        return self.fixtures.get(fixture_id)


class FakeReference:
    def __init__(self, events: list[ReferenceEvent] | None = None, odds: dict[int, ReferenceOdds] | None = None):
        self.events = events or []
        self.odds = odds or {}
        self.list_calls: list[tuple[datetime, datetime]] = []
        self.odds_calls: list[tuple[int, str, str]] = []

    async def list_upcoming_events(self, after: datetime, before: datetime) -> list[ReferenceEvent]:
        self.list_calls.append((after, before))
        return list(self.events)

    async def fetch_event_odds(self, event_id: int, home_name: str, away_name: str) -> ReferenceOdds | None:
        self.odds_calls.append((event_id, home_name, away_name))
        return self.odds.get(event_id)


KICKOFF = datetime(2026, 3, 14, 15, 0, tzinfo=timezone.utc)


def fixture_for(fixture_id: int, home: str, away: str) -> Fixture:
    return Fixture(fixture_id=fixture_id, home_name=home, away_name=away, kickoff=KICKOFF, status="NS")


def odds(home, draw, away) -> ReferenceOdds:
    return ReferenceOdds.three_way(Decimal(str(home)), Decimal(str(draw)), Decimal(str(away)))


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()
