"""Multichain balance aggregation and monitoring engine."""

from balance_engine.engine import BalanceEngine
from balance_engine.settings import EngineSettings

__version__ = "0.1.0"

__all__ = [
    "BalanceEngine",
    "EngineSettings",
]
