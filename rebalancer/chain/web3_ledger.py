from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted, Web3Exception

from rebalancer.chain.abi import (
    CONDITIONAL_TOKENS_ABI,
    ERC20_ABI,
    LMSR_MARKET_MAKER_ABI,
    MARKET_FACTORY_ABI,
    ZERO_ADDRESS,
    ZERO_BYTES32,
)
from rebalancer.chain.connection import ChainConnection
from rebalancer.domain.errors import LedgerRejection, LedgerTimeout
from rebalancer.domain.models import InventoryConstraint, MarketState, TxResult

logger = logging.getLogger(__name__)


def _bytes32(value: str | bytes) -> bytes:
    if isinstance(value, bytes):
        return value
    return AsyncWeb3.to_bytes(hexstr=value)


class Web3Ledger:
    """
    LedgerPort backed by the MarketFactory, LMSR market makers and the
    ConditionalTokens contract.

    Per-market addresses, condition ids and position ids never change once a
    market exists, so they are looked up once and kept. Writes go through one
    lock so the account's nonce is only ever read by one sender at a time.
    """

    def __init__(self, connection: ChainConnection):
        self.conn = connection
        self.settings = connection.settings
        self.w3 = connection.w3
        self.factory = connection.contract(self.settings.market_factory_address, MARKET_FACTORY_ABI)
        self.ctf = connection.contract(self.settings.conditional_tokens_address, CONDITIONAL_TOKENS_ABI)
        self.collateral = connection.contract(self.settings.collateral_address, ERC20_ABI)
        self._tx_lock = asyncio.Lock()
        self._market_makers: dict[int, str] = {}
        self._condition_ids: dict[int, str] = {}
        self._position_ids: dict[int, list[int]] = {}
        self._operator_approvals: set[tuple[str, str]] = set()

    # ----- lookups -----

    async def market_maker_address(self, market_id: int) -> str:
        if market_id not in self._market_makers:
            address = await self.factory.functions.lmsrMarketMakers(int(market_id)).call()
            if address == ZERO_ADDRESS:
                return ZERO_ADDRESS
            self._market_makers[market_id] = AsyncWeb3.to_checksum_address(address)
        return self._market_makers[market_id]

    async def conditional_tokens_address(self) -> str:
        return self.ctf.address

    async def read_condition_id(self, market_id: int) -> str:
        if market_id not in self._condition_ids:
            raw = await self.factory.functions.matchConditionIds(int(market_id)).call()
            self._condition_ids[market_id] = AsyncWeb3.to_hex(raw)
        return self._condition_ids[market_id]

    async def _position_ids_for(self, market_id: int) -> list[int]:
        if market_id not in self._position_ids:
            condition_id = _bytes32(await self.read_condition_id(market_id))
            ids = []
            for i in range(self.settings.outcome_count):
                collection = await self.ctf.functions.getCollectionId(ZERO_BYTES32, condition_id, 1 << i).call()
                ids.append(int(await self.ctf.functions.getPositionId(self.collateral.address, collection).call()))
            self._position_ids[market_id] = ids
        return self._position_ids[market_id]

    def _market_maker(self, address: str):
        return self.conn.contract(address, LMSR_MARKET_MAKER_ABI)

    async def _require_market_maker(self, market_id: int):
        address = await self.market_maker_address(market_id)
        if address == ZERO_ADDRESS:
            raise LedgerRejection(f"No LMSR market maker deployed for market {market_id}")
        return self._market_maker(address)

    # ----- reads -----

    async def list_active_markets(self) -> list[int]:
        ids = await self.factory.functions.getActiveMatches().call()
        return [int(i) for i in ids]

    async def read_market_state(self, market_id: int) -> MarketState | None:
        address = await self.market_maker_address(market_id)
        if address == ZERO_ADDRESS:
            logger.warning(f"[{market_id}] No LMSR market maker found")
            return None
        position_ids = await self._position_ids_for(market_id)
        mm = self._market_maker(address)
        *balances, funding = await asyncio.gather(
            *(self.ctf.functions.balanceOf(address, pid).call() for pid in position_ids),
            mm.functions.funding().call(),
        )
        return MarketState(
            outcome_balances=tuple(int(q) for q in balances),
            funding=int(funding),
            market_id=int(market_id),
        )

    async def read_marginal_probability(self, market_id: int, outcome: int) -> int:
        mm = await self._require_market_maker(market_id)
        return int(await mm.functions.calcMarginalPrice(int(outcome)).call())

    async def calc_net_cost(self, market_id: int, amounts: Sequence[int]) -> int:
        mm = await self._require_market_maker(market_id)
        return int(await mm.functions.calcNetCost([int(a) for a in amounts]).call())

    async def read_inventory(self, market_id: int) -> InventoryConstraint:
        position_ids = await self._position_ids_for(market_id)
        owner = self.conn.address
        *balances, free = await asyncio.gather(
            *(self.ctf.functions.balanceOf(owner, pid).call() for pid in position_ids),
            self.collateral.functions.balanceOf(owner).call(),
        )
        return InventoryConstraint(outcome_balances=tuple(int(b) for b in balances), free_collateral=int(free))

    async def read_payout_numerators(self, market_id: int) -> list[int]:
        condition_id = _bytes32(await self.read_condition_id(market_id))
        denominator = await self.ctf.functions.payoutDenominator(condition_id).call()
        if int(denominator) == 0:
            return []
        slots = int(await self.ctf.functions.getOutcomeSlotCount(condition_id).call())
        return [int(await self.ctf.functions.payoutNumerators(condition_id, i).call()) for i in range(slots)]

    # ----- writes -----

    async def _send(self, call, label: str) -> TxResult:
        async with self._tx_lock:
            sender = self.conn.address
            try:
                nonce = await self.w3.eth.get_transaction_count(sender, "pending")
                gas_price = await self.w3.eth.gas_price
                tx = await call.build_transaction(
                    {
                        "from": sender,
                        "nonce": nonce,
                        "gas": self.settings.gas_limit,
                        "gasPrice": gas_price,
                        "chainId": await self.conn.chain_id(),
                    }
                )
                signed = self.conn.account.sign_transaction(tx)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except (Web3Exception, ValueError) as e:
                raise LedgerRejection(f"{label} rejected: {type(e).__name__}: {e}") from e

            hex_hash = AsyncWeb3.to_hex(tx_hash)
            logger.info(f"{label} sent: {hex_hash}")
            try:
                receipt = await self.w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self.settings.receipt_timeout_seconds
                )
            except TimeExhausted as e:
                raise LedgerTimeout(f"{label} {hex_hash} not mined within {self.settings.receipt_timeout_seconds}s") from e

        if receipt["status"] != 1:
            raise LedgerRejection(f"{label} reverted", tx_hash=hex_hash)
        gas_used = int(receipt["gasUsed"])
        logger.info(f"{label} confirmed: {hex_hash} (gas used {gas_used})")
        return TxResult(tx_hash=hex_hash, gas_used=gas_used)

    async def approve_collateral(self, spender: str, amount: int) -> TxResult:
        spender = AsyncWeb3.to_checksum_address(spender)
        return await self._send(self.collateral.functions.approve(spender, int(amount)), f"approve {amount} to {spender}")

    async def ensure_outcome_approval(self, market_id: int) -> None:
        operator = await self.market_maker_address(market_id)
        key = (self.ctf.address, operator)
        if key in self._operator_approvals:
            return
        approved = await self.ctf.functions.isApprovedForAll(self.conn.address, operator).call()
        if not approved:
            logger.info(f"[{market_id}] Granting outcome-token operator approval to {operator}")
            await self._send(self.ctf.functions.setApprovalForAll(operator, True), "setApprovalForAll")
        self._operator_approvals.add(key)

    async def submit_trade(self, market_id: int, amounts: Sequence[int], collateral_limit: int) -> TxResult:
        mm = await self._require_market_maker(market_id)
        call = mm.functions.trade([int(a) for a in amounts], int(collateral_limit))
        return await self._send(call, f"[{market_id}] trade")

    async def split_collateral(self, condition_id: str, partition: Sequence[int], amount: int) -> TxResult:
        call = self.ctf.functions.splitPosition(
            self.collateral.address, ZERO_BYTES32, _bytes32(condition_id), [int(p) for p in partition], int(amount)
        )
        return await self._send(call, f"splitPosition {condition_id}")

    async def redeem_positions(self, condition_id: str, index_sets: Sequence[int]) -> TxResult:
        call = self.ctf.functions.redeemPositions(
            self.collateral.address, ZERO_BYTES32, _bytes32(condition_id), [int(i) for i in index_sets]
        )
        return await self._send(call, f"redeemPositions {condition_id}")
