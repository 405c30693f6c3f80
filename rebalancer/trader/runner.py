from __future__ import annotations

import argparse
import asyncio
import logging
import os
import time
from collections.abc import Sequence
from decimal import Decimal
from enum import Enum

from rebalancer.chain.connection import ChainConnection
from rebalancer.chain.onchain_reader import OnChainReader
from rebalancer.chain.web3_ledger import Web3Ledger
from rebalancer.data.football import FootballClient, load_football_config
from rebalancer.data.id_mapper import ExternalOddsResolver
from rebalancer.data.matchbook import MatchbookClient, load_matchbook_config
from rebalancer.domain.errors import (
    DegenerateMarket,
    DomainOverflow,
    InsufficientResources,
    LedgerRejection,
    LedgerTimeout,
    TransientNetwork,
    UnmappableMarket,
)
from rebalancer.trader.timeout import with_timeout
from rebalancer.trading.executor import TradeExecutor
from rebalancer.trading.portfolio_manager import PortfolioManager
from rebalancer.trading.trade_calculator import REASON_INSUFFICIENT, TradeCalculator
from rebalancer.utils.config_loader import (
    RebalancerSettings,
    load_chain_settings,
    load_config,
    load_mapping_settings,
    load_rebalancer_settings,
)

logger = logging.getLogger(__name__)

# Per-market outcomes reported by run_once().
BALANCED = "balanced"
TRADED = "traded"
NO_MARKET = "no_market"
DEGENERATE = "degenerate"
UNMAPPED = "unmapped"
MISSING_ODDS = "missing_odds"
NO_TRADE = "no_trade"
FAILED = "failed"


class RunState(Enum):
    IDLE = "idle"
    RUNNING = "running"


def calculate_divergence(onchain: Sequence[Decimal], target: Sequence[Decimal]) -> Decimal:
    """Largest relative odds deviation, max_i |onchain_i - target_i| / target_i."""
    if len(onchain) != len(target):
        raise ValueError("odds vectors must have the same length")
    return max(abs(Decimal(o) - Decimal(t)) / Decimal(t) for o, t in zip(onchain, target))


def _fmt_odds(odds: Sequence[Decimal]) -> str:
    return " ".join(f"{label}:{float(v):.2f}" for label, v in zip(("H", "D", "A"), odds))


class Rebalancer:
    """
    Keeps each active market's on-chain odds close to the reference odds.

    A cycle walks the active markets one at a time; any error is logged and the
    cycle moves on to the next market. Only one cycle runs at a time: a tick
    that fires while the previous cycle is still running is dropped.
    """

    def __init__(
        self,
        reader: OnChainReader,
        resolver: ExternalOddsResolver,
        calculator: TradeCalculator,
        executor: TradeExecutor,
        settings: RebalancerSettings,
        portfolio: PortfolioManager | None = None,
    ):
        self.reader = reader
        self.resolver = resolver
        self.calculator = calculator
        self.executor = executor
        self.settings = settings
        self.portfolio = portfolio
        self.state = RunState.IDLE
        self._stop = asyncio.Event()
        self._cycles: set[asyncio.Task] = set()

    async def process_market(self, market_id: int) -> str:
        state = await self.reader.get_market_state(market_id)
        if state is None:
            logger.info(f"[{market_id}] Skipping: could not read on-chain state")
            return NO_MARKET
        if state.is_degenerate:
            raise DegenerateMarket(f"market {market_id} has b == 0")

        mapping = await self.resolver.require(market_id)
        # Let both reads settle before raising so neither is left running unobserved.
        results = await asyncio.gather(
            self.reader.get_onchain_odds(market_id),
            self.resolver.fetch_odds(mapping),
            return_exceptions=True,
        )
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome
        onchain, target = results
        if onchain is None or target is None:
            logger.info(f"[{market_id}] Skipping: missing on-chain or reference odds")
            return MISSING_ODDS

        divergence = calculate_divergence(onchain, target.values)
        logger.info(
            f"[{market_id}] On-chain {_fmt_odds(onchain)} | Target {_fmt_odds(target.values)} "
            f"| divergence {float(divergence) * 100:.2f}%"
        )
        if divergence < Decimal(str(self.settings.divergence_threshold)):
            return BALANCED

        inventory = await self.reader.get_inventory(market_id)
        result = await with_timeout(
            self.calculator.calculate(market_id, state, target, inventory),
            self.settings.ledger_timeout_seconds,
            f"[{market_id}] trade calculation",
        )
        if result.reason == REASON_INSUFFICIENT:
            raise InsufficientResources(f"market {market_id}: inventory and collateral scale the trade to zero")
        if not result.has_trade:
            logger.info(f"[{market_id}] No trade ({result.reason})")
            return NO_TRADE

        await self.executor.execute(market_id, result.trade)
        return TRADED

    async def _process_isolated(self, market_id: int) -> str:
        try:
            return await self.process_market(market_id)
        except UnmappableMarket as e:
            logger.info(f"[{market_id}] Skipping: {e}")
            return UNMAPPED
        except DegenerateMarket as e:
            logger.warning(f"[{market_id}] Skipping degenerate market: {e}")
            return DEGENERATE
        except InsufficientResources as e:
            logger.warning(f"[{market_id}] Insufficient resources: {e}")
            return NO_TRADE
        except TransientNetwork as e:
            logger.warning(f"[{market_id}] Provider unavailable, retrying next cycle: {e}")
        except LedgerTimeout as e:
            logger.warning(f"[{market_id}] Ledger timeout: {e}")
        except LedgerRejection as e:
            logger.error(f"[{market_id}] Ledger rejected the trade (tx {e.tx_hash}): {e}")
        except DomainOverflow as e:
            logger.error(f"[{market_id}] Fixed-point domain overflow: {e}")
        except Exception as e:
            logger.exception(f"[{market_id}] Unexpected error: {type(e).__name__}: {e}")
        return FAILED

    async def run_once(self) -> dict[int, str] | None:
        """Run one cycle over every active market; returns None if a cycle is already running."""
        if self.state is RunState.RUNNING:
            logger.warning("Previous rebalancing cycle still running; dropping this tick")
            return None

        self.state = RunState.RUNNING
        started = time.monotonic()
        report: dict[int, str] = {}
        try:
            try:
                market_ids = await self.reader.get_active_market_ids()
            except Exception as e:
                logger.error(f"Could not list active markets: {type(e).__name__}: {e}")
                return report

            logger.info(f"Starting rebalancing cycle over {len(market_ids)} active markets")
            for market_id in market_ids:
                report[market_id] = await self._process_isolated(market_id)
            return report
        finally:
            self.state = RunState.IDLE
            logger.info(f"Rebalancing cycle finished in {time.monotonic() - started:.1f}s: {report}")

    async def reconcile_inventory(self) -> dict[int, str]:
        if self.portfolio is None:
            return {}
        market_ids = await self.reader.get_active_market_ids()
        report = await self.portfolio.reconcile_missing_bootstraps(market_ids, self.settings.bootstrap_funding_amount)
        logger.info(f"Inventory reconciliation: {report}")
        return report

    def stop(self) -> None:
        self._stop.set()

    async def run_forever(self) -> None:
        """
        Start a cycle every poll interval, measured from the start of the
        previous tick, until stop() is called.
        """
        interval = self.settings.poll_interval_seconds
        logger.info(f"Starting rebalancer polling every {interval:.0f}s")
        self._stop.clear()
        while not self._stop.is_set():
            task = asyncio.create_task(self.run_once())
            self._cycles.add(task)
            task.add_done_callback(self._cycles.discard)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        if self._cycles:
            await asyncio.gather(*self._cycles)
        logger.info("Rebalancer stopped")


def build_rebalancer(config: dict) -> tuple[Rebalancer, ChainConnection, list]:
    """Wire the production components; returns the loop, the RPC connection and the HTTP clients."""
    settings = load_rebalancer_settings(config)
    chain_settings = load_chain_settings(config)

    connection = ChainConnection(chain_settings, os.getenv("REBALANCER_PRIVATE_KEY", ""))
    ledger = Web3Ledger(connection)
    reader = OnChainReader(ledger, settings.ledger_timeout_seconds, chain_settings.outcome_count)

    football = FootballClient(load_football_config(config, os.getenv("API_FOOTBALL_KEY", "")))
    matchbook = MatchbookClient(
        load_matchbook_config(config, os.getenv("MATCHBOOK_USERNAME", ""), os.getenv("MATCHBOOK_PASSWORD", ""))
    )
    resolver = ExternalOddsResolver(football, matchbook, load_mapping_settings(config))

    rebalancer = Rebalancer(
        reader=reader,
        resolver=resolver,
        calculator=TradeCalculator(ledger),
        executor=TradeExecutor(ledger, settings.ledger_timeout_seconds),
        settings=settings,
        portfolio=PortfolioManager(
            ledger, chain_settings.collateral_decimals, chain_settings.outcome_count, settings.ledger_timeout_seconds
        ),
    )
    return rebalancer, connection, [football, matchbook]


async def _run(config: dict, once: bool) -> None:
    rebalancer, connection, clients = build_rebalancer(config)
    try:
        if not await connection.ensure_connected():
            logger.error("Could not connect to the RPC endpoint. Exiting.")
            return
        if rebalancer.settings.reconcile_on_start:
            await rebalancer.reconcile_inventory()
        if once:
            await rebalancer.run_once()
        else:
            await rebalancer.run_forever()
    finally:
        for client in clients:
            await client.aclose()
        await connection.disconnect()


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Keep on-chain LMSR markets aligned with reference odds.")
    parser.add_argument("--once", action="store_true", help="Run a single rebalancing cycle and exit")
    parser.add_argument("--config", default=None, help="Path to config.yaml (default: config/config.yaml)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("REBALANCER_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = load_config(args.config)
    try:
        asyncio.run(_run(config, args.once))
    except KeyboardInterrupt:
        logger.info("Stopping rebalancer...")


if __name__ == "__main__":
    main()
