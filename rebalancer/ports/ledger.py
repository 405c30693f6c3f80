from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from rebalancer.domain.models import InventoryConstraint, MarketState, TxResult


class LedgerPort(Protocol):
    """
    The on-chain side, treated as an opaque ledger keyed by market id.

    Amounts are micro-unit integers; probabilities are 192.64 fixed point.
    """

    # Reads
    async def list_active_markets(self) -> list[int]: ...

    async def read_market_state(self, market_id: int) -> MarketState | None: ...

    async def read_marginal_probability(self, market_id: int, outcome: int) -> int: ...

    async def calc_net_cost(self, market_id: int, amounts: Sequence[int]) -> int: ...

    async def read_inventory(self, market_id: int) -> InventoryConstraint: ...

    async def read_condition_id(self, market_id: int) -> str: ...

    async def read_payout_numerators(self, market_id: int) -> list[int]: ...

    # Writes
    async def approve_collateral(self, spender: str, amount: int) -> TxResult: ...

    async def ensure_outcome_approval(self, market_id: int) -> None: ...

    async def market_maker_address(self, market_id: int) -> str: ...

    async def conditional_tokens_address(self) -> str: ...

    async def submit_trade(self, market_id: int, amounts: Sequence[int], collateral_limit: int) -> TxResult: ...

    async def split_collateral(self, condition_id: str, partition: Sequence[int], amount: int) -> TxResult: ...

    async def redeem_positions(self, condition_id: str, index_sets: Sequence[int]) -> TxResult: ...
