"""Concentrated-liquidity market maker for a power perpetual pool."""

__version__ = "0.3.0"

__all__ = [
    "chain_client",
    "config",
    "controller",
    "fanout",
    "positions",
    "pricing",
    "ticks",
    "ws_client",
]
