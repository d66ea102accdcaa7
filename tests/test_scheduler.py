"""Tests for per-network queues, retries, failover and de-duplication."""

import asyncio
from decimal import Decimal

import pytest
from pydantic import ValidationError

from balance_engine.core.exceptions import ProviderRequestError, UnsupportedNetworkError
from balance_engine.core.models import ErrorKind, Query
from balance_engine.core.scheduler import BatchScheduler
from balance_engine.rpc.provider import ProviderRegistry
from balance_engine.rpc.rate_limiter import RateLimiter
from conftest import StubAdapter, make_network

NOT_FOUND = ProviderRequestError("HTTP error 404: Not Found", status_code=404)


def server_error():
    return ProviderRequestError("HTTP error 503: Service Unavailable", status_code=503)


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_cache_coherence(scheduler, adapter, clock):
    """Test repeated queries within the TTL make one provider call."""
    adapter.balances["addr1"] = 150_000_000

    first = await scheduler.query("TEST", "addr1")
    second = await scheduler.query("TEST", "addr1")

    assert first.ok
    assert first.display_balance == Decimal("1.5")
    assert first.unit_symbol == "TEST"
    assert first.provider == "a.example"
    assert second == first
    assert adapter.calls_for("addr1") == 1

    clock.now += 301
    await scheduler.query("TEST", "addr1")
    assert adapter.calls_for("addr1") == 2


@pytest.mark.asyncio
async def test_failed_result_requeried_after_error_ttl(scheduler, adapter, clock):
    """Test failures are cached briefly, then retried."""
    adapter.failures["bad"] = [NOT_FOUND]

    failed = await scheduler.query("TEST", "bad")
    cached = await scheduler.query("TEST", "bad")

    assert failed.error_kind is ErrorKind.NOT_FOUND
    assert cached == failed
    assert adapter.calls_for("bad") == 1

    clock.now += 31
    recovered = await scheduler.query("TEST", "bad")
    assert recovered.ok
    assert adapter.calls_for("bad") == 2


@pytest.mark.asyncio
async def test_concurrent_queries_are_deduplicated(scheduler, adapter):
    """Test a second caller joins the in-flight query."""
    adapter.balances["addr1"] = 42
    adapter.gate = asyncio.Event()

    first = asyncio.create_task(scheduler.query("TEST", "addr1"))
    second = asyncio.create_task(scheduler.query("TEST", "addr1"))
    await settle()

    assert len(adapter.calls) == 1
    adapter.gate.set()
    results = await asyncio.gather(first, second)

    assert results[0] == results[1]
    assert results[0].raw_balance == 42
    assert adapter.calls_for("addr1") == 1


@pytest.mark.asyncio
async def test_not_found_is_attempted_once(scheduler, adapter, providers):
    """Test an invalid address gets exactly one attempt and no failover."""
    adapter.endpoint_failures["a.example"] = NOT_FOUND
    adapter.endpoint_failures["b.example"] = NOT_FOUND

    result = await scheduler.query("TEST", "invalid")

    assert result.error_kind is ErrorKind.NOT_FOUND
    assert adapter.calls == [("a.example", "invalid")]
    assert providers.known_good("TEST").name == "a.example"


@pytest.mark.asyncio
async def test_transient_failure_retried_in_place(scheduler, adapter, clock):
    """Test a server error is retried on the same endpoint after backoff."""
    adapter.failures["addr1"] = [server_error()]

    result = await scheduler.query("TEST", "addr1")

    assert result.ok
    assert adapter.calls == [("a.example", "addr1"), ("a.example", "addr1")]
    assert 2 in clock.sleeps


@pytest.mark.asyncio
async def test_failover_after_attempts_exhausted(scheduler, adapter, providers):
    """Test an endpoint failing every attempt is invalidated and the next used."""
    adapter.endpoint_failures["a.example"] = ProviderRequestError("Network error: connection refused")

    result = await scheduler.query("TEST", "addr1")

    assert result.ok
    assert result.provider == "b.example"
    assert [name for name, _ in adapter.calls] == ["a.example"] * 3 + ["b.example"]
    assert providers.known_good("TEST").name == "b.example"


@pytest.mark.asyncio
async def test_cross_origin_block_fails_over_immediately(scheduler, adapter):
    """Test an endpoint-level fatal error moves to the next endpoint without retrying."""
    adapter.endpoint_failures["a.example"] = ProviderRequestError("Request blocked by CORS policy")

    result = await scheduler.query("TEST", "addr1")

    assert result.ok
    assert [name for name, _ in adapter.calls] == ["a.example", "b.example"]


@pytest.mark.asyncio
async def test_final_failure_notifies_once(scheduler, adapter):
    """Test exhausting every endpoint yields one error result and one notification."""
    notes = []
    scheduler.notifier = lambda result, message: notes.append((result, message))
    adapter.endpoint_failures["a.example"] = server_error()
    adapter.endpoint_failures["b.example"] = server_error()

    result = await scheduler.query("TEST", "addr1")

    assert result.error_kind is ErrorKind.SERVER_ERROR
    assert len(adapter.calls) == 6
    assert len(notes) == 1
    assert notes[0][0] == result
    assert notes[0][1] == "Provider server error, try again later"


@pytest.mark.asyncio
async def test_clear_queue_cancels_waiting_items(scheduler, adapter, cache):
    """Test queued items resolve as cancelled while the running one completes."""
    adapter.gate = asyncio.Event()

    running = asyncio.create_task(scheduler.query("TEST", "x"))
    waiting = [asyncio.create_task(scheduler.query("TEST", address)) for address in ("y", "z")]
    await settle()

    assert adapter.calls == [("a.example", "x")]
    assert scheduler.queue_status()["networks"]["TEST"]["queued"] == 2
    assert scheduler.clear_queue() == 2

    adapter.gate.set()
    assert (await running).ok
    for task in waiting:
        result = await task
        assert result.error_kind is ErrorKind.CANCELLED
        assert cache.get(Query(network="TEST", address=result.address)) is None
    assert adapter.calls == [("a.example", "x")]


@pytest.mark.asyncio
async def test_batch_pacing_and_fifo_order(providers, cache, clock, adapter):
    """Test inter-item and inter-batch delays and submission order."""
    limiter = RateLimiter(min_global_gap=0, min_provider_gap=0, cooldown=0, clock=clock, sleep=clock.sleep)
    scheduler = BatchScheduler(
        providers, limiter, cache, batch_size=3, item_delay=1.5, batch_delay=3.0, sleep=clock.sleep
    )
    addresses = ["q1", "q2", "q3", "q4"]

    await asyncio.gather(*(scheduler.query("TEST", address) for address in addresses))

    assert [address for _, address in adapter.calls] == addresses
    assert [seconds for seconds in clock.sleeps if seconds] == [1.5, 1.5, 3.0]


@pytest.mark.asyncio
async def test_query_many_preserves_order(scheduler, adapter, bulk_adapter):
    """Test results come back in input order across serial and bulk networks."""
    adapter.balances["t1"] = 1
    bulk_adapter.balances["f1"] = 10**18
    queries = [("FAST", "f1"), ("TEST", "t1"), ("FAST", "f2"), ("TEST", "t1")]

    results = await scheduler.query_many(queries)

    assert [(r.network, r.address) for r in results] == queries
    assert results[0].display_balance == Decimal("1")
    assert results[1] == results[3]
    assert adapter.calls_for("t1") == 1
    assert bulk_adapter.calls_for("f1") == 1
    assert bulk_adapter.calls_for("f2") == 1


@pytest.mark.asyncio
async def test_bulk_transient_failure_uses_serial_path(scheduler, bulk_adapter):
    """Test transient bulk failures are retried serially and unknown addresses are final."""
    bulk_adapter.failures["f1"] = [ProviderRequestError("HTTP error 502: Bad Gateway", status_code=502)]
    bulk_adapter.failures["f2"] = [NOT_FOUND]

    results = await scheduler.query_many([("FAST", "f1"), ("FAST", "f2")])

    assert results[0].ok
    assert bulk_adapter.calls_for("f1") == 2
    assert results[1].error_kind is ErrorKind.NOT_FOUND
    assert bulk_adapter.calls_for("f2") == 1


@pytest.mark.asyncio
async def test_bulk_inner_batches_pause(providers, cache, clock, bulk_adapter):
    """Test the bulk path pauses between inner batches."""
    limiter = RateLimiter(min_global_gap=0, min_provider_gap=0, cooldown=0, clock=clock, sleep=clock.sleep)
    scheduler = BatchScheduler(providers, limiter, cache, bulk_batch_size=10, bulk_pause=0.5, sleep=clock.sleep)

    results = await scheduler.query_many([("FAST", f"f{i}") for i in range(25)])

    assert all(result.ok for result in results)
    assert len(bulk_adapter.calls) == 25
    assert [seconds for seconds in clock.sleeps if seconds] == [0.5, 0.5]


@pytest.mark.asyncio
async def test_price_enrichment(scheduler, adapter):
    """Test successful results pass through the pricing service."""

    class FixedPricing:
        async def enrich(self, result, network):
            return result.model_copy(update={"usd_value": result.display_balance * 2})

    scheduler.pricing = FixedPricing()
    adapter.balances["addr1"] = 300_000_000

    result = await scheduler.query("TEST", "addr1")

    assert result.usd_value == Decimal("6")


@pytest.mark.asyncio
async def test_cached_result_cannot_be_modified(scheduler, adapter):
    """Test callers cannot alter the result later cache hits return."""
    adapter.balances["addr1"] = 100_000_000

    first = await scheduler.query("TEST", "addr1")
    with pytest.raises(ValidationError):
        first.display_balance = Decimal("999")

    second = await scheduler.query("TEST", "addr1")
    assert second.display_balance == Decimal("1")
    assert adapter.calls_for("addr1") == 1


@pytest.mark.asyncio
async def test_unsupported_network_rejected(scheduler):
    """Test querying an unknown network raises."""
    with pytest.raises(UnsupportedNetworkError):
        await scheduler.query("NOPE", "addr")
    with pytest.raises(UnsupportedNetworkError):
        await scheduler.query_many([("NOPE", "addr")])


def quiet_scheduler(providers, cache, clock, **kwargs) -> BatchScheduler:
    limiter = RateLimiter(min_global_gap=0, min_provider_gap=0, cooldown=0, clock=clock, sleep=clock.sleep)
    return BatchScheduler(providers, limiter, cache, item_delay=0, batch_delay=0, bulk_pause=0, sleep=clock.sleep, **kwargs)


@pytest.mark.asyncio
async def test_bulk_cross_origin_block_fails_over(cache, clock, bulk_adapter):
    """Test a blocked bulk endpoint hands the query to the serial path, which fails over."""
    networks = {
        "FAST": make_network(
            "FAST", adapter="stub_bulk", endpoints=("fast.example", "fast2.example"), bulk=True, decimals=18
        )
    }
    providers = ProviderRegistry(networks, client=None, adapters={"stub_bulk": bulk_adapter})
    scheduler = quiet_scheduler(providers, cache, clock)
    bulk_adapter.endpoint_failures["fast.example"] = ProviderRequestError("Request blocked by CORS policy")
    bulk_adapter.balances["b1"] = 2 * 10**18

    [result] = await scheduler.query_many([("FAST", "b1")])

    assert result.ok
    assert result.display_balance == Decimal("2")
    assert result.provider == "fast2.example"
    assert [name for name, _ in bulk_adapter.calls] == ["fast.example", "fast.example", "fast2.example"]
    assert providers.known_good("FAST").name == "fast2.example"


class ConcurrencyAdapter(StubAdapter):
    """Bulk adapter recording how many calls run at once."""

    def __init__(self) -> None:
        super().__init__(kind="stub_bulk", supports_bulk=True)
        self.active = 0
        self.peak = 0

    async def fetch_balance(self, endpoint, network, address):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            return await super().fetch_balance(endpoint, network, address)
        finally:
            self.active -= 1


@pytest.mark.asyncio
async def test_bulk_concurrency_is_capped(networks, cache, clock):
    """Test the bulk fan-out never has more than bulk_concurrency calls in flight."""
    counting = ConcurrencyAdapter()
    counting.gate = asyncio.Event()
    providers = ProviderRegistry(networks, client=None, adapters={"stub_bulk": counting})
    scheduler = quiet_scheduler(providers, cache, clock, bulk_concurrency=2, bulk_batch_size=10)

    task = asyncio.create_task(scheduler.query_many([("FAST", f"f{i}") for i in range(10)]))
    await settle(30)
    assert counting.active == 2

    counting.gate.set()
    results = await task

    assert all(result.ok for result in results)
    assert len(counting.calls) == 10
    assert counting.peak == 2
