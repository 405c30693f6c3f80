from __future__ import annotations

import logging
import os
import threading
from copy import deepcopy
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_cache_lock = threading.Lock()
_cached: dict[str, Any] | None = None
_cached_path: str | None = None


def _project_root() -> Path:
    # rebalancer/utils/config_loader.py -> rebalancer/utils -> rebalancer -> project root
    return Path(__file__).resolve().parents[2]


def default_config_path() -> Path:
    return _project_root() / "config" / "config.yaml"


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    """
    Override selected YAML settings with environment variables.

    These are the operational knobs that must be settable without editing the file.
    """
    reb = cfg.setdefault("rebalancer", {})
    if os.getenv("REBALANCER_POLL_INTERVAL_SECONDS"):
        reb["poll_interval_seconds"] = float(os.environ["REBALANCER_POLL_INTERVAL_SECONDS"])
    if os.getenv("REBALANCER_DIVERGENCE_THRESHOLD"):
        reb["divergence_threshold"] = float(os.environ["REBALANCER_DIVERGENCE_THRESHOLD"])
    if os.getenv("REBALANCER_BOOTSTRAP_FUNDING_AMOUNT"):
        reb["bootstrap_funding_amount"] = str(os.environ["REBALANCER_BOOTSTRAP_FUNDING_AMOUNT"])

    mapping = cfg.setdefault("mapping", {})
    if os.getenv("REBALANCER_MIN_MATCH_CONFIDENCE"):
        mapping["min_confidence"] = int(os.environ["REBALANCER_MIN_MATCH_CONFIDENCE"])

    chain = cfg.setdefault("chain", {})
    if os.getenv("REBALANCER_RPC_URL"):
        chain["rpc_url"] = os.environ["REBALANCER_RPC_URL"]


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def validate_config(cfg: dict[str, Any]) -> None:
    """
    Fail fast if the configuration is missing required sections or holds
    values the loop cannot work with.
    """
    required_top = ["chain", "rebalancer", "mapping"]
    missing = [k for k in required_top if k not in cfg]
    if missing:
        raise ValueError(f"Missing required config sections: {', '.join(missing)}")

    chain = cfg.get("chain") or {}
    for k in ["rpc_url", "market_factory_address", "conditional_tokens_address", "collateral_address"]:
        if not chain.get(k):
            raise ValueError(f"Missing chain.{k} in config")

    reb = cfg.get("rebalancer") or {}
    interval = reb.get("poll_interval_seconds", 30)
    if not _is_number(interval) or float(interval) <= 0:
        raise ValueError("rebalancer.poll_interval_seconds must be > 0")
    threshold = reb.get("divergence_threshold", 0.005)
    if not _is_number(threshold) or float(threshold) < 0:
        raise ValueError("rebalancer.divergence_threshold must be >= 0")
    if Decimal(str(reb.get("bootstrap_funding_amount", "15000"))) <= 0:
        raise ValueError("rebalancer.bootstrap_funding_amount must be > 0")

    mapping = cfg.get("mapping") or {}
    confidence = mapping.get("min_confidence", 70)
    if not isinstance(confidence, int) or isinstance(confidence, bool) or not 0 <= confidence <= 100:
        raise ValueError("mapping.min_confidence must be an integer between 0 and 100")


def load_config(config_path: str | Path | None = None, *, force_reload: bool = False) -> dict[str, Any]:
    """
    Load the YAML config once and reuse it across the process.

    - Reads `config/config.yaml` by default.
    - Applies environment overrides for a small set of operational settings.
    - Returns a deep copy so callers can safely mutate local copies.
    """
    global _cached, _cached_path

    path = Path(config_path) if config_path else default_config_path()
    path_str = str(path.resolve())

    with _cache_lock:
        if not force_reload and _cached is not None and _cached_path == path_str:
            return deepcopy(_cached)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}

        if not isinstance(cfg, dict):
            raise ValueError(f"Config must be a YAML mapping (dict); got {type(cfg).__name__}")

        _apply_env_overrides(cfg)
        validate_config(cfg)

        _cached = cfg
        _cached_path = path_str
        logger.info("Loaded config from %s", path_str)
        return deepcopy(cfg)


@dataclass(frozen=True)
class RebalancerSettings:
    poll_interval_seconds: float
    divergence_threshold: float
    ledger_timeout_seconds: float
    bootstrap_funding_amount: Decimal
    reconcile_on_start: bool = True


@dataclass(frozen=True)
class MappingSettings:
    min_confidence: int = 70
    window_before_hours: float = 24.0
    window_after_hours: float = 48.0


@dataclass(frozen=True)
class ChainSettings:
    rpc_url: str
    market_factory_address: str
    conditional_tokens_address: str
    collateral_address: str
    collateral_decimals: int
    gas_limit: int
    outcome_count: int
    receipt_timeout_seconds: float


@dataclass(frozen=True)
class HttpSettings:
    timeout_seconds: float
    retry_attempts: int
    retry_base_delay_seconds: float


def load_rebalancer_settings(config: dict) -> RebalancerSettings:
    r = config.get("rebalancer") or {}
    return RebalancerSettings(
        poll_interval_seconds=float(r.get("poll_interval_seconds", 30)),
        divergence_threshold=float(r.get("divergence_threshold", 0.005)),
        ledger_timeout_seconds=float(r.get("ledger_timeout_seconds", 60)),
        bootstrap_funding_amount=Decimal(str(r.get("bootstrap_funding_amount", "15000"))),
        reconcile_on_start=bool(r.get("reconcile_on_start", True)),
    )


def load_mapping_settings(config: dict) -> MappingSettings:
    m = config.get("mapping") or {}
    return MappingSettings(
        min_confidence=int(m.get("min_confidence", 70)),
        window_before_hours=float(m.get("window_before_hours", 24)),
        window_after_hours=float(m.get("window_after_hours", 48)),
    )


def load_chain_settings(config: dict) -> ChainSettings:
    c = config.get("chain") or {}
    return ChainSettings(
        rpc_url=str(c.get("rpc_url", "")),
        market_factory_address=str(c.get("market_factory_address", "")),
        conditional_tokens_address=str(c.get("conditional_tokens_address", "")),
        collateral_address=str(c.get("collateral_address", "")),
        collateral_decimals=int(c.get("collateral_decimals", 6)),
        gas_limit=int(c.get("gas_limit", 2_000_000)),
        outcome_count=int(c.get("outcome_count", 3)),
        receipt_timeout_seconds=float(c.get("receipt_timeout_seconds", 120)),
    )


def load_http_settings(config: dict) -> HttpSettings:
    h = config.get("http") or {}
    return HttpSettings(
        timeout_seconds=float(h.get("timeout_seconds", 20)),
        retry_attempts=int(h.get("retry_attempts", 3)),
        retry_base_delay_seconds=float(h.get("retry_base_delay_seconds", 1.0)),
    )
