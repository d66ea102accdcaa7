"""Per-network query queues with batching, retries, failover, and de-duplication."""

import asyncio
import logging
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from balance_engine.core.exceptions import NoEndpointAvailableError, QueryCancelledError
from balance_engine.core.models import BalanceReading, ErrorKind, NetworkConfig, ProviderEndpoint, Query, QueryResult
from balance_engine.pricing.defillama import DeFiLlamaPricing
from balance_engine.rpc.cache import ResultCache
from balance_engine.rpc.errors import ClassifiedError, ErrorClassifier
from balance_engine.rpc.provider import ProviderRegistry
from balance_engine.rpc.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

Notifier = Callable[[QueryResult, str], None]


@dataclass
class _PendingQuery:
    query: Query
    future: asyncio.Future


class BatchScheduler:
    """
    Turns balance queries into rate-limited, retried, cached provider calls.

    Each network has its own FIFO queue drained by one task. Items are taken
    one at a time with ``item_delay`` between them and ``batch_delay`` after
    every ``batch_size`` items. Provider calls go through the shared
    ``RateLimiter``. At most one query per ``(network, address)`` is in flight;
    later callers join the pending result.

    Parameters
    ----------
    providers : ProviderRegistry
        Endpoint registry
    limiter : RateLimiter
        Global call spacing
    cache : ResultCache
        Result cache
    classifier : ErrorClassifier | None
        Failure classification and retry policy
    pricing : DeFiLlamaPricing | None
        USD enrichment, skipped when None
    batch_size : int
        Items per batch
    item_delay : float
        Seconds between items of a batch
    batch_delay : float
        Seconds between batches
    max_attempts : int
        Attempts per endpoint before failing over
    bulk_concurrency : int
        Concurrent calls on the bulk path
    bulk_batch_size : int
        Items per inner batch on the bulk path
    bulk_pause : float
        Seconds between inner bulk batches
    notifier : Notifier | None
        Receives ``(result, message)`` for each final failure
    sleep : Callable[[float], Awaitable[None]]
        Sleep coroutine

    """

    def __init__(
        self,
        providers: ProviderRegistry,
        limiter: RateLimiter,
        cache: ResultCache,
        classifier: ErrorClassifier | None = None,
        pricing: DeFiLlamaPricing | None = None,
        batch_size: int = 3,
        item_delay: float = 1.5,
        batch_delay: float = 3.0,
        max_attempts: int = 3,
        bulk_concurrency: int = 10,
        bulk_batch_size: int = 10,
        bulk_pause: float = 0.5,
        notifier: Notifier | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.providers = providers
        self.limiter = limiter
        self.cache = cache
        self.classifier = classifier or limiter.classifier
        self.pricing = pricing
        self.batch_size = max(1, batch_size)
        self.item_delay = item_delay
        self.batch_delay = batch_delay
        self.max_attempts = max(1, max_attempts)
        self.bulk_concurrency = bulk_concurrency
        self.bulk_batch_size = max(1, bulk_batch_size)
        self.bulk_pause = bulk_pause
        self.notifier = notifier
        self._sleep = sleep
        self._queues: dict[str, deque[_PendingQuery]] = defaultdict(deque)
        self._drains: dict[str, asyncio.Task] = {}
        self._in_flight: dict[Query, asyncio.Future] = {}

    async def query(self, network: str, address: str) -> QueryResult:
        """
        Fetch the balance of one address.

        Parameters
        ----------
        network : str
            Network code
        address : str
            Address on that network

        Returns
        -------
        QueryResult
            Cached, joined, or freshly fetched result; provider failures are
            reported through ``error_kind``

        Raises
        ------
        UnsupportedNetworkError
            If the network is not in the catalogue

        """
        key = Query(network=network, address=address)
        self.providers.network(network)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached

        pending = self._in_flight.get(key)
        if pending is None:
            pending = asyncio.get_running_loop().create_future()
            self._in_flight[key] = pending
            self._enqueue(key, pending)
        else:
            logger.debug("Joining in-flight query for %s", key)
        return await asyncio.shield(pending)

    async def query_many(self, queries: Iterable[Query | tuple[str, str]]) -> list[QueryResult]:
        """
        Fetch balances of several addresses.

        Networks whose endpoints tolerate parallel reads use a bounded fan-out;
        the rest go through the serial per-network queues.

        Parameters
        ----------
        queries : Iterable[Query | tuple[str, str]]
            Queries or ``(network, address)`` pairs

        Returns
        -------
        list[QueryResult]
            Results in input order

        """
        keys = [q if isinstance(q, Query) else Query(network=q[0], address=q[1]) for q in queries]
        for key in keys:
            self.providers.network(key.network)

        by_network: dict[str, list[Query]] = defaultdict(list)
        for key in dict.fromkeys(keys):
            by_network[key.network].append(key)

        jobs = []
        for code, network_keys in by_network.items():
            if self.providers.supports_bulk(code):
                jobs.append(self._query_bulk(code, network_keys))
            else:
                jobs.append(self._query_serial(network_keys))

        results: dict[Query, QueryResult] = {}
        for outcome in await asyncio.gather(*jobs):
            results.update(outcome)
        return [results[key] for key in keys]

    def clear_queue(self) -> int:
        """
        Cancel every queued query that has not started.

        Queued items resolve with a ``CANCELLED`` result that is not cached.
        Items already executing finish normally.

        Returns
        -------
        int
            Number of queries cancelled

        """
        cancelled = 0
        for code, queue in self._queues.items():
            network = self.providers.network(code)
            while queue:
                item = queue.popleft()
                if item.future.done():
                    continue
                self._complete(item, self._cancelled_result(item.query, network))
                cancelled += 1
        cancelled += self.limiter.clear()
        if cancelled:
            logger.info("Cancelled %d queued queries", cancelled)
        return cancelled

    def queue_status(self) -> dict[str, Any]:
        """
        Snapshot of queue depths.

        Returns
        -------
        dict[str, Any]
            Per-network queue length and drain state, in-flight count, and the
            rate limiter status

        """
        return {
            "networks": {
                code: {"queued": len(queue), "draining": code in self._drains and not self._drains[code].done()}
                for code, queue in self._queues.items()
            },
            "in_flight": len(self._in_flight),
            "rate_limiter": self.limiter.status(),
        }

    async def close(self) -> None:
        """Cancel queued work, stop all drain tasks and release waiting callers."""
        self.clear_queue()
        drains = [task for task in self._drains.values() if not task.done()]
        for task in drains:
            task.cancel()
        await asyncio.gather(*drains, return_exceptions=True)
        self._drains.clear()
        for key, future in list(self._in_flight.items()):
            network = self.providers.network(key.network)
            self._complete(_PendingQuery(key, future), self._cancelled_result(key, network))
        await self.limiter.close()

    def _enqueue(self, key: Query, future: asyncio.Future) -> None:
        queue = self._queues[key.network]
        queue.append(_PendingQuery(key, future))
        logger.debug("Queued %s, %d waiting on %s", key, len(queue), key.network)

        drain = self._drains.get(key.network)
        if drain is None or drain.done():
            self._drains[key.network] = asyncio.create_task(self._drain(key.network), name=f"drain-{key.network}")

    async def _drain(self, code: str) -> None:
        queue = self._queues[code]
        processed = 0
        while queue:
            item = queue.popleft()
            if item.future.done():
                continue

            try:
                result = await self._execute(item.query)
            except Exception as e:
                logger.exception("Unexpected failure querying %s", item.query)
                error = ClassifiedError(ErrorKind.UNKNOWN, str(e) or e.__class__.__name__)
                result = self._failure(item.query, self.providers.network(code), error)
            self._complete(item, result)

            processed += 1
            if not queue:
                break
            if processed % self.batch_size == 0:
                logger.debug("Batch of %d done on %s, pausing %.1fs", self.batch_size, code, self.batch_delay)
                await self._sleep(self.batch_delay)
            else:
                await self._sleep(self.item_delay)

    async def _execute(self, key: Query) -> QueryResult:
        """Run one query with in-place retries and endpoint failover."""
        network = self.providers.network(key.network)
        exhausted: list[ProviderEndpoint] = []
        last_error: ClassifiedError | None = None

        while True:
            try:
                endpoint = await self.providers.acquire(key.network, exclude=exhausted)
            except NoEndpointAvailableError as e:
                if last_error is None:
                    last_error = self.classifier.classify(e.__cause__ or e)
                break

            adapter = self.providers.adapter_for(network, endpoint)
            attempts = 0
            while True:
                attempts += 1
                try:
                    reading = await self.limiter.schedule(
                        endpoint.name,
                        lambda: adapter.fetch_balance(endpoint, network, key.address),
                    )
                except QueryCancelledError:
                    return self._cancelled_result(key, network)
                except Exception as e:
                    last_error = self.classifier.classify(e)
                    self.classifier.log(last_error, f"{key}@{endpoint.name}", attempts)
                    if not self.classifier.should_retry(last_error, attempts, self.max_attempts):
                        break
                    delay = self.classifier.retry_delay(last_error, attempts - 1)
                    logger.debug("Retrying %s in %.1fs", key, delay)
                    await self._sleep(delay)
                    continue
                return await self._success(key, network, endpoint, reading)

            if last_error.kind is ErrorKind.NOT_FOUND:
                # the address is invalid on every endpoint
                break
            self.providers.invalidate(key.network)
            exhausted.append(endpoint)
            logger.info("Endpoint %s exhausted for %s, failing over", endpoint.name, key)

        return self._failure(key, network, last_error)

    async def _query_serial(self, keys: list[Query]) -> dict[Query, QueryResult]:
        results = await asyncio.gather(*(self.query(key.network, key.address) for key in keys))
        return dict(zip(keys, results, strict=True))

    async def _query_bulk(self, code: str, keys: list[Query]) -> dict[Query, QueryResult]:
        results: dict[Query, QueryResult] = {}
        todo = []
        for key in keys:
            cached = self.cache.get(key)
            if cached is not None:
                results[key] = cached
            else:
                todo.append(key)
        if not todo:
            return results

        try:
            endpoint = await self.providers.acquire(code)
        except NoEndpointAvailableError as e:
            logger.info("Bulk path unavailable for %s (%s), using serial queue", code, e)
            results.update(await self._query_serial(todo))
            return results

        network = self.providers.network(code)
        adapter = self.providers.adapter_for(network, endpoint)
        semaphore = asyncio.Semaphore(self.bulk_concurrency)

        for start in range(0, len(todo), self.bulk_batch_size):
            if start:
                await self._sleep(self.bulk_pause)
            chunk = todo[start : start + self.bulk_batch_size]
            logger.debug("Bulk fetching %d addresses on %s", len(chunk), code)
            chunk_results = await asyncio.gather(
                *(self._bulk_one(key, network, endpoint, adapter, semaphore) for key in chunk)
            )
            results.update(zip(chunk, chunk_results, strict=True))
        return results

    async def _bulk_one(
        self,
        key: Query,
        network: NetworkConfig,
        endpoint: ProviderEndpoint,
        adapter: Any,
        semaphore: asyncio.Semaphore,
    ) -> QueryResult:
        pending = self._in_flight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        item = _PendingQuery(key, future)
        error: ClassifiedError | None = None

        async with semaphore:
            try:
                reading = await adapter.fetch_balance(endpoint, network, key.address)
            except Exception as e:
                error = self.classifier.classify(e)
                self.classifier.log(error, f"{key}@{endpoint.name} (bulk)", 1)
                reading = None

        if reading is not None:
            self._complete(item, await self._success(key, network, endpoint, reading))
        elif error is not None and error.kind is ErrorKind.NOT_FOUND:
            self._complete(item, self._failure(key, network, error))
        else:
            # the serial path owns retries and endpoint failover
            self._enqueue(key, future)
        return await asyncio.shield(future)

    async def _success(
        self,
        key: Query,
        network: NetworkConfig,
        endpoint: ProviderEndpoint,
        reading: BalanceReading,
    ) -> QueryResult:
        result = QueryResult(
            network=key.network,
            address=key.address,
            raw_balance=reading.raw_balance,
            display_balance=to_display(reading.raw_balance, network.decimals),
            unit_symbol=network.symbol,
            tokens=reading.tokens,
            provider=endpoint.name,
        )
        if self.pricing is not None:
            result = await self.pricing.enrich(result, network)
        logger.debug("%s = %s %s via %s", key, result.display_balance, network.symbol, endpoint.name)
        return result

    def _failure(self, key: Query, network: NetworkConfig, error: ClassifiedError) -> QueryResult:
        result = QueryResult(
            network=key.network,
            address=key.address,
            unit_symbol=network.symbol,
            error_kind=error.kind,
            error_message=error.message,
        )
        message = self.classifier.user_message(error.kind, error.retry_after)
        logger.warning("Query %s failed: %s", key, message)
        if self.notifier is not None:
            try:
                self.notifier(result, message)
            except Exception:
                logger.exception("Failure notifier raised for %s", key)
        return result

    def _cancelled_result(self, key: Query, network: NetworkConfig) -> QueryResult:
        return QueryResult(
            network=key.network,
            address=key.address,
            unit_symbol=network.symbol,
            error_kind=ErrorKind.CANCELLED,
            error_message=self.classifier.user_message(ErrorKind.CANCELLED),
        )

    def _complete(self, item: _PendingQuery, result: QueryResult) -> None:
        if result.error_kind is not ErrorKind.CANCELLED:
            self.cache.put(item.query, result)
        if self._in_flight.get(item.query) is item.future:
            del self._in_flight[item.query]
        if not item.future.done():
            item.future.set_result(result)


def to_display(raw: int, decimals: int) -> Decimal:
    """Convert a smallest-unit amount to whole units."""
    return Decimal(raw).scaleb(-decimals)
