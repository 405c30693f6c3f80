"""LMSR market rebalancer: keeps on-chain prediction-market odds aligned with a reference exchange."""

__version__ = "0.1.0"
