"""Tests for endpoint probing, known-good memory and failover."""

import httpx
import pytest

from balance_engine.core.exceptions import NoEndpointAvailableError, UnsupportedNetworkError
from balance_engine.core.models import NetworkConfig, ProviderEndpoint
from balance_engine.providers import BlockCypherAdapter, EsploraAdapter
from balance_engine.rpc.provider import ProviderRegistry


@pytest.mark.asyncio
async def test_acquire_probes_in_priority_order(providers, adapter):
    """Test the first answering endpoint is returned and remembered."""
    adapter.probe_failures.add("a.example")

    endpoint = await providers.acquire("TEST")

    assert endpoint.name == "b.example"
    assert adapter.probes == ["a.example", "b.example"]
    assert providers.known_good("TEST") == endpoint

    # known-good endpoint is reused without probing
    assert await providers.acquire("TEST") == endpoint
    assert adapter.probes == ["a.example", "b.example"]


@pytest.mark.asyncio
async def test_invalidate_forces_reprobe(providers, adapter):
    """Test invalidate clears the known-good endpoint."""
    await providers.acquire("TEST")
    providers.invalidate("TEST")

    assert providers.known_good("TEST") is None
    await providers.acquire("TEST")
    assert adapter.probes == ["a.example", "a.example"]


@pytest.mark.asyncio
async def test_acquire_skips_excluded(providers):
    """Test excluded endpoints are never returned."""
    first = await providers.acquire("TEST")

    second = await providers.acquire("TEST", exclude=[first])

    assert first.name == "a.example"
    assert second.name == "b.example"


@pytest.mark.asyncio
async def test_no_endpoint_available(providers, adapter):
    """Test every probe failing raises with the last failure chained."""
    adapter.probe_failures.update({"a.example", "b.example"})

    with pytest.raises(NoEndpointAvailableError) as excinfo:
        await providers.acquire("TEST")

    assert "connection refused" in str(excinfo.value)
    assert excinfo.value.__cause__ is not None


@pytest.mark.asyncio
async def test_unsupported_network(providers):
    """Test unknown network codes are rejected."""
    with pytest.raises(UnsupportedNetworkError):
        await providers.acquire("NOPE")
    with pytest.raises(UnsupportedNetworkError):
        providers.network("NOPE")


def test_supports_bulk(providers):
    """Test bulk capability needs both the network flag and the adapter."""
    assert providers.supports_bulk("FAST")
    assert not providers.supports_bulk("TEST")


@pytest.mark.asyncio
async def test_adapter_resolved_per_endpoint():
    """Test endpoint adapter overrides and lazy adapter creation."""
    network = NetworkConfig(
        code="BTC",
        name="Bitcoin",
        symbol="BTC",
        decimals=8,
        adapter="esplora",
        endpoints=[
            ProviderEndpoint(network="BTC", url="https://blockstream.info/api", name="blockstream.info"),
            ProviderEndpoint(
                network="BTC",
                url="https://api.blockcypher.com/v1/btc/main",
                priority=1,
                name="api.blockcypher.com",
                adapter="blockcypher",
            ),
        ],
    )
    async with httpx.AsyncClient() as client:
        registry = ProviderRegistry({"BTC": network}, client)
        first, second = registry.endpoints("BTC")

        esplora = registry.adapter_for(network, first)
        blockcypher = registry.adapter_for(network, second)

        assert isinstance(esplora, EsploraAdapter)
        assert isinstance(blockcypher, BlockCypherAdapter)
        assert registry.adapter_for(network) is esplora
        assert esplora.client is client
