"""Core functionality including models, scheduler, monitor, aggregator, and registry."""

from balance_engine.core.aggregator import PortfolioAggregator
from balance_engine.core.models import (
    Alert,
    ErrorKind,
    HistoryEntry,
    NetworkConfig,
    PortfolioSummary,
    ProviderEndpoint,
    Query,
    QueryResult,
    WalletRecord,
    WatchedEntity,
)
from balance_engine.core.monitor import Monitor
from balance_engine.core.registry import AdapterRegistry
from balance_engine.core.scheduler import BatchScheduler

__all__ = [
    "AdapterRegistry",
    "Alert",
    "BatchScheduler",
    "ErrorKind",
    "HistoryEntry",
    "Monitor",
    "NetworkConfig",
    "PortfolioAggregator",
    "PortfolioSummary",
    "ProviderEndpoint",
    "Query",
    "QueryResult",
    "WalletRecord",
    "WatchedEntity",
]
