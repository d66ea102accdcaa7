"""Balance engine facade owning the cache, queues, rate windows and watch-list."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

import httpx

import balance_engine.providers  # noqa: F401  (registers adapters)
from balance_engine.core.aggregator import PortfolioAggregator
from balance_engine.core.models import (
    Alert,
    CacheStats,
    EntityStats,
    HistoryEntry,
    NetworkConfig,
    PortfolioStats,
    PortfolioSummary,
    Query,
    QueryResult,
    WalletRecord,
    WatchedEntity,
)
from balance_engine.core.monitor import AlertSubscriber, CheckListener, Monitor
from balance_engine.core.registry import ProviderAdapterInterface
from balance_engine.core.scheduler import BatchScheduler, Notifier
from balance_engine.data.loader import load_networks
from balance_engine.pricing.defillama import DeFiLlamaPricing
from balance_engine.rpc.cache import ResultCache
from balance_engine.rpc.errors import ErrorClassifier
from balance_engine.rpc.provider import ProviderRegistry
from balance_engine.rpc.rate_limiter import RateLimiter
from balance_engine.settings import EngineSettings

logger = logging.getLogger(__name__)


class BalanceEngine:
    """
    Entry point for balance queries, monitoring and portfolio summaries.

    Each engine owns its own cache, queues, rate windows and watch-list, so
    several engines can run side by side.

    Parameters
    ----------
    settings : EngineSettings | None
        Configuration, read from the environment when None
    networks : Mapping[str, NetworkConfig] | None
        Network catalogue, loaded from ``settings.networks_file`` when None
    client : httpx.AsyncClient | None
        HTTP client; one is created (and closed by ``close``) when None
    adapters : Mapping[str, ProviderAdapterInterface] | None
        Adapter instances by kind, overriding the registered adapters
    notifier : Notifier | None
        Receives ``(result, message)`` for each final query failure
    clock : Callable[[], float]
        Monotonic clock shared by cache, limiter and pricing
    sleep : Callable[[float], Awaitable[None]]
        Sleep coroutine shared by all timed components

    Examples
    --------
    >>> async with BalanceEngine() as engine:
    ...     result = await engine.query("BTC", "bc1q...")

    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        networks: Mapping[str, NetworkConfig] | None = None,
        client: httpx.AsyncClient | None = None,
        adapters: Mapping[str, ProviderAdapterInterface] | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.networks = dict(networks) if networks is not None else load_networks(self.settings.networks_file)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.settings.request_timeout_seconds)
        self._sleep = sleep

        rate = self.settings.rate_limit
        self.classifier = ErrorClassifier()
        self.cache = ResultCache(
            success_ttl=self.settings.cache.success_ttl,
            error_ttl=self.settings.cache.error_ttl,
            clock=clock,
        )
        self.limiter = RateLimiter(
            min_global_gap=rate.min_global_gap,
            min_provider_gap=rate.min_provider_gap,
            cooldown=rate.cooldown,
            classifier=self.classifier,
            clock=clock,
            sleep=sleep,
        )
        self.providers = ProviderRegistry(self.networks, self.client, adapters)

        pricing = None
        if self.settings.pricing.enabled:
            pricing = DeFiLlamaPricing(
                self.client,
                base_url=self.settings.pricing.base_url,
                ttl=self.settings.pricing.ttl,
                clock=clock,
            )
        self.pricing = pricing

        sched = self.settings.scheduler
        self.scheduler = BatchScheduler(
            self.providers,
            self.limiter,
            self.cache,
            classifier=self.classifier,
            pricing=pricing,
            batch_size=sched.batch_size,
            item_delay=sched.item_delay,
            batch_delay=sched.batch_delay,
            max_attempts=sched.max_attempts,
            bulk_concurrency=sched.bulk_concurrency,
            bulk_batch_size=sched.bulk_batch_size,
            bulk_pause=sched.bulk_pause,
            notifier=notifier,
            sleep=sleep,
        )

        mon = self.settings.monitor
        self.monitor = Monitor(
            self.scheduler,
            history_size=mon.history_size,
            alert_capacity=mon.alert_capacity,
            default_interval_minutes=mon.default_interval_minutes,
            default_threshold_percent=mon.default_threshold_percent,
            sleep=sleep,
        )
        self.aggregator = PortfolioAggregator(self.networks)
        self._sweeper: asyncio.Task | None = None

    async def __aenter__(self) -> "BalanceEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        await self.close()

    async def start(self) -> None:
        """Start the periodic cache sweep."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="cache-sweep")

    async def close(self) -> None:
        """Stop timers, cancel queued work and release the HTTP client."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.monitor.close()
        await self.scheduler.close()
        if self._owns_client:
            await self.client.aclose()

    async def query(self, network: str, address: str) -> QueryResult:
        """Fetch one balance; see ``BatchScheduler.query``."""
        return await self.scheduler.query(network, address)

    async def query_many(self, queries: Iterable[Query | tuple[str, str]]) -> list[QueryResult]:
        """Fetch several balances in input order; see ``BatchScheduler.query_many``."""
        return await self.scheduler.query_many(queries)

    async def watch(
        self,
        network: str,
        address: str,
        display_name: str | None = None,
        check_interval_minutes: float | None = None,
        alert_threshold_percent: float | None = None,
        check_immediately: bool = True,
    ) -> WatchedEntity:
        return await self.monitor.watch(
            network,
            address,
            display_name=display_name,
            check_interval_minutes=check_interval_minutes,
            alert_threshold_percent=alert_threshold_percent,
            check_immediately=check_immediately,
        )

    def unwatch(self, entity_id: str) -> bool:
        return self.monitor.unwatch(entity_id)

    def list_watched(self) -> list[WatchedEntity]:
        return self.monitor.list_watched()

    def get_history(self, entity_id: str) -> list[HistoryEntry]:
        return self.monitor.get_history(entity_id)

    def get_entity_stats(self, entity_id: str) -> EntityStats | None:
        return self.monitor.get_entity_stats(entity_id)

    def get_alerts(self, unread_only: bool = False) -> list[Alert]:
        return self.monitor.get_alerts(unread_only)

    def acknowledge_alert(self, alert_id: str) -> bool:
        return self.monitor.acknowledge_alert(alert_id)

    def subscribe_alerts(self, callback: AlertSubscriber) -> Callable[[], None]:
        return self.monitor.subscribe(callback)

    def subscribe_checks(self, callback: CheckListener) -> Callable[[], None]:
        return self.monitor.subscribe_checks(callback)

    def export_history_csv(self, entity_id: str) -> str:
        return self.monitor.export_history_csv(entity_id)

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()
        if self.pricing is not None:
            self.pricing.clear()
        logger.info("Cache cleared")

    def clear_queue(self) -> int:
        return self.scheduler.clear_queue()

    def queue_status(self) -> dict[str, Any]:
        return self.scheduler.queue_status()

    async def summarize_portfolio(self, wallets: Iterable[WalletRecord]) -> PortfolioSummary:
        """
        Query every wallet and aggregate the results.

        Wallets on networks missing from the catalogue are not queried and are
        summarized from their stored balance.

        Parameters
        ----------
        wallets : Iterable[WalletRecord]
            Wallets from the persistence layer

        Returns
        -------
        PortfolioSummary
            Aggregated portfolio

        """
        wallets = list(wallets)
        queries = [(w.network, w.address) for w in wallets if w.network in self.networks]
        skipped = len(wallets) - len(queries)
        if skipped:
            logger.warning("Skipping %d wallets on unsupported networks", skipped)
        results = await self.query_many(queries)
        return self.aggregator.summarize(wallets, results)

    def portfolio_stats(self, summary: PortfolioSummary) -> PortfolioStats:
        return self.aggregator.stats(summary)

    async def _sweep_loop(self) -> None:
        interval = self.settings.cache.sweep_interval
        while True:
            await self._sleep(interval)
            removed = self.cache.sweep()
            logger.debug("Cache sweep removed %d entries", removed)
