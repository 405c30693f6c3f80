from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Any

from rebalancer.amm.fixed_point import ONE


@dataclass(frozen=True)
class MarketState:
    """AMM-held quantity per outcome (micro-units) and the LMSR funding parameter b."""

    outcome_balances: tuple[int, ...]
    funding: int
    market_id: int | None = None

    def __post_init__(self) -> None:
        if self.funding < 0 or any(q < 0 for q in self.outcome_balances):
            raise ValueError("market balances and funding must be non-negative")

    @property
    def is_degenerate(self) -> bool:
        return self.funding == 0

    @property
    def outcome_count(self) -> int:
        return len(self.outcome_balances)


@dataclass(frozen=True)
class ReferenceOdds:
    """
    Decimal odds per outcome, in the market's outcome order (home, draw, away).

    The implied probabilities are deliberately not renormalised, so any
    bookmaker margin survives into the target.
    """

    values: tuple[Decimal, ...]

    @classmethod
    def three_way(cls, home: Any, draw: Any, away: Any) -> "ReferenceOdds":
        return cls(tuple(Decimal(str(v)) for v in (home, draw, away)))

    @property
    def home(self) -> Decimal:
        return self.values[0]

    @property
    def draw(self) -> Decimal:
        return self.values[1]

    @property
    def away(self) -> Decimal:
        return self.values[2]

    def implied_probabilities(self) -> list[int]:
        """1/odds per outcome as 192.64 fixed point."""
        out: list[int] = []
        with localcontext() as ctx:
            ctx.prec = 80
            for odds in self.values:
                if not odds.is_finite() or odds <= 1:
                    raise ValueError(f"decimal odds must be finite and > 1; got {odds}")
                out.append(int(Decimal(ONE) / odds))
        return out


@dataclass(frozen=True)
class TradeVector:
    """Signed per-outcome amounts: positive means the bot buys, negative means it sells."""

    amounts: tuple[int, ...]

    @property
    def is_zero(self) -> bool:
        return all(a == 0 for a in self.amounts)

    @property
    def has_sells(self) -> bool:
        return any(a < 0 for a in self.amounts)

    def scaled(self, scale: int) -> "TradeVector":
        """Scale every leg by scale/ONE, truncating toward zero."""
        out = []
        for a in self.amounts:
            magnitude = abs(a) * scale // ONE
            out.append(-magnitude if a < 0 else magnitude)
        return TradeVector(tuple(out))

    def to_list(self) -> list[int]:
        return [int(a) for a in self.amounts]


@dataclass(frozen=True)
class InventoryConstraint:
    """What the bot can spend this cycle: outcome tokens per slot plus free collateral."""

    outcome_balances: tuple[int, ...]
    free_collateral: int


@dataclass(frozen=True)
class MappingResult:
    market_id: int
    event_id: int
    home_name: str
    away_name: str
    score: int


@dataclass(frozen=True)
class Fixture:
    fixture_id: int
    home_name: str
    away_name: str
    kickoff: datetime
    status: str
    score: tuple[int | None, int | None] | None = None


@dataclass(frozen=True)
class ReferenceEvent:
    event_id: int
    name: str
    start: datetime | None = None


@dataclass(frozen=True)
class TxResult:
    tx_hash: str
    gas_used: int | None = None
    net_cost: int = 0
