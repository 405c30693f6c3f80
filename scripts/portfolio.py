#!/usr/bin/env python3
"""
Operator commands for the rebalancer's outcome-token inventory:

  bootstrap <market_id> [--amount N]   split collateral into a complete set
  unwind <market_id>                   redeem winning positions after resolution
  reconcile [--amount N]               bootstrap every active market missing inventory
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

# Ensure repo root is on sys.path so `import rebalancer...` works when running as a script.
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from rebalancer.chain.connection import ChainConnection  # noqa: E402
from rebalancer.chain.web3_ledger import Web3Ledger  # noqa: E402
from rebalancer.trading.portfolio_manager import PortfolioManager  # noqa: E402
from rebalancer.utils.config_loader import load_chain_settings, load_config, load_rebalancer_settings  # noqa: E402

logger = logging.getLogger("portfolio")


async def _run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    chain_settings = load_chain_settings(config)
    settings = load_rebalancer_settings(config)
    default_amount = settings.bootstrap_funding_amount
    amount = Decimal(args.amount) if getattr(args, "amount", None) else default_amount

    connection = ChainConnection(chain_settings, os.getenv("REBALANCER_PRIVATE_KEY", ""))
    if not await connection.ensure_connected():
        logger.error("Could not connect to the RPC endpoint.")
        return 1
    ledger = Web3Ledger(connection)
    portfolio = PortfolioManager(
        ledger, chain_settings.collateral_decimals, chain_settings.outcome_count, settings.ledger_timeout_seconds
    )

    try:
        if args.command == "bootstrap":
            condition_id = await ledger.read_condition_id(args.market_id)
            result = await portfolio.bootstrap_inventory(condition_id, amount)
            print(f"Bootstrapped market {args.market_id}: {result.tx_hash}")
        elif args.command == "unwind":
            if await portfolio.unwind_positions(args.market_id):
                print(f"Unwound market {args.market_id}")
            else:
                print(f"Market {args.market_id} is not resolved yet; nothing redeemed")
        else:
            market_ids = await ledger.list_active_markets()
            report = await portfolio.reconcile_missing_bootstraps(market_ids, amount)
            for market_id, status in report.items():
                print(f"{market_id}: {status}")
            if any(status == "failed" for status in report.values()):
                return 1
    finally:
        await connection.disconnect()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Manage the rebalancer's outcome-token inventory.")
    parser.add_argument("--config", default=None, help="Path to config.yaml (default: config/config.yaml)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_boot = sub.add_parser("bootstrap", help="Split collateral into outcome tokens for one market")
    p_boot.add_argument("market_id", type=int)
    p_boot.add_argument("--amount", default=None, help="Collateral amount in token units (default: from config)")

    p_unwind = sub.add_parser("unwind", help="Redeem positions of a resolved market")
    p_unwind.add_argument("market_id", type=int)

    p_rec = sub.add_parser("reconcile", help="Bootstrap every active market that is missing inventory")
    p_rec.add_argument("--amount", default=None, help="Collateral amount in token units (default: from config)")

    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("REBALANCER_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    env_path = _REPO_ROOT / "config" / "secrets.env"
    if env_path.exists():
        load_dotenv(env_path)

    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
