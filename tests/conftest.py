"""Pytest configuration and shared fakes for balance-engine tests."""

import asyncio
from decimal import Decimal

import pytest

from balance_engine.core.exceptions import ProviderRequestError
from balance_engine.core.models import BalanceReading, NetworkConfig, ProviderEndpoint, QueryResult
from balance_engine.core.scheduler import BatchScheduler
from balance_engine.rpc.cache import ResultCache
from balance_engine.rpc.provider import ProviderRegistry
from balance_engine.rpc.rate_limiter import RateLimiter


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds > 0:
            self.now += seconds
        await asyncio.sleep(0)


class ManualSleep:
    """Sleep that only returns when ``release`` is called."""

    def __init__(self) -> None:
        self.requested: list[float] = []
        self._pending: list[asyncio.Future] = []

    async def __call__(self, seconds: float) -> None:
        self.requested.append(seconds)
        future = asyncio.get_running_loop().create_future()
        self._pending.append(future)
        await future

    def release(self) -> None:
        pending, self._pending = self._pending, []
        for future in pending:
            if not future.done():
                future.set_result(None)


class StubAdapter:
    """
    Scriptable provider adapter.

    ``failures`` maps an address to exceptions raised by successive calls;
    ``endpoint_failures`` maps an endpoint name to an exception raised on
    every call to it.
    """

    def __init__(self, kind: str = "stub", supports_bulk: bool = False) -> None:
        self.kind = kind
        self.supports_bulk = supports_bulk
        self.balances: dict[str, int] = {}
        self.failures: dict[str, list[Exception]] = {}
        self.endpoint_failures: dict[str, Exception] = {}
        self.probe_failures: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.probes: list[str] = []
        self.gate: asyncio.Event | None = None

    async def probe(self, endpoint: ProviderEndpoint) -> None:
        self.probes.append(endpoint.name)
        if endpoint.name in self.probe_failures:
            raise ProviderRequestError("connection refused")

    async def fetch_balance(self, endpoint: ProviderEndpoint, network: NetworkConfig, address: str) -> BalanceReading:
        self.calls.append((endpoint.name, address))
        if self.gate is not None:
            await self.gate.wait()
        scripted = self.failures.get(address)
        if scripted:
            raise scripted.pop(0)
        if endpoint.name in self.endpoint_failures:
            raise self.endpoint_failures[endpoint.name]
        return BalanceReading(raw_balance=self.balances.get(address, 0))

    def calls_for(self, address: str) -> int:
        return sum(1 for _, called in self.calls if called == address)


def make_network(
    code: str,
    adapter: str = "stub",
    endpoints: tuple[str, ...] = ("a.example", "b.example"),
    bulk: bool = False,
    decimals: int = 8,
    symbol: str | None = None,
) -> NetworkConfig:
    return NetworkConfig(
        code=code,
        name=code.title(),
        symbol=symbol or code,
        decimals=decimals,
        adapter=adapter,
        bulk=bulk,
        endpoints=[
            ProviderEndpoint(network=code, url=f"https://{name}", priority=index, name=name)
            for index, name in enumerate(endpoints)
        ],
    )


def make_result(network: str, address: str, balance: str, usd_value: str | None = None, **kwargs) -> QueryResult:
    return QueryResult(
        network=network,
        address=address,
        display_balance=Decimal(balance),
        unit_symbol=network,
        usd_value=Decimal(usd_value) if usd_value is not None else None,
        **kwargs,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def adapter() -> StubAdapter:
    return StubAdapter()


@pytest.fixture
def bulk_adapter() -> StubAdapter:
    return StubAdapter(kind="stub_bulk", supports_bulk=True)


@pytest.fixture
def networks() -> dict[str, NetworkConfig]:
    return {
        "TEST": make_network("TEST"),
        "FAST": make_network("FAST", adapter="stub_bulk", endpoints=("fast.example",), bulk=True, decimals=18),
    }


@pytest.fixture
def providers(networks, adapter, bulk_adapter) -> ProviderRegistry:
    return ProviderRegistry(networks, client=None, adapters={"stub": adapter, "stub_bulk": bulk_adapter})


@pytest.fixture
def cache(clock) -> ResultCache:
    return ResultCache(success_ttl=300, error_ttl=30, clock=clock)


@pytest.fixture
def scheduler(providers, cache, clock) -> BatchScheduler:
    limiter = RateLimiter(min_global_gap=0, min_provider_gap=0, cooldown=0, clock=clock, sleep=clock.sleep)
    return BatchScheduler(
        providers,
        limiter,
        cache,
        item_delay=0,
        batch_delay=0,
        bulk_pause=0,
        sleep=clock.sleep,
    )
