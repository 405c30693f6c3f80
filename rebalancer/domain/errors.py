from __future__ import annotations


class RebalancerError(Exception):
    """Base class for every failure the rebalancer knows how to classify."""


class TransientNetwork(RebalancerError):
    """A provider or RPC call failed in a way that is worth retrying."""


class RateLimited(TransientNetwork):
    """The remote side asked us to slow down (HTTP 429)."""


class UnmappableMarket(RebalancerError):
    """No confident reference event exists for an on-chain market."""

    def __init__(self, market_id: int, reason: str = ""):
        self.market_id = int(market_id)
        self.reason = reason
        super().__init__(f"Market {market_id} cannot be mapped{': ' + reason if reason else ''}")


class DegenerateMarket(RebalancerError):
    """The market has no liquidity parameter (b == 0); prices are undefined."""


class InsufficientResources(RebalancerError):
    """Inventory or collateral scaled the trade all the way down to zero."""


class LedgerRejection(RebalancerError):
    """The ledger refused or reverted a write."""

    def __init__(self, message: str, tx_hash: str | None = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class LedgerTimeout(RebalancerError):
    """A ledger or provider call did not complete within its time limit."""


class DomainOverflow(RebalancerError, ArithmeticError):
    """A fixed-point exponent or logarithm argument is outside the supported range."""
