"""Tests for DeFiLlama price lookups."""

from decimal import Decimal

import httpx
import pytest

from balance_engine.core.models import TokenHolding
from balance_engine.pricing import DeFiLlamaPricing
from conftest import make_network, make_result

PRICES = {
    "coingecko:ethereum": {"price": 2000.5, "symbol": "ETH", "confidence": 0.99},
    "ethereum:0xusdc": {"price": 1.0, "symbol": "USDC", "decimals": 6},
}


def price_client(requests: list, status: int = 200) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request.url.path)
        if status != 200:
            return httpx.Response(status)
        wanted = request.url.path.rsplit("/", 1)[-1].split(",")
        return httpx.Response(200, json={"coins": {coin: PRICES[coin] for coin in wanted if coin in PRICES}})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_get_prices_batches_and_caches(clock):
    """Test one request covers several coins and prices are reused within the TTL."""
    requests = []
    async with price_client(requests) as client:
        pricing = DeFiLlamaPricing(client, ttl=300, clock=clock)

        prices = await pricing.get_prices(["coingecko:ethereum", "ethereum:0xusdc", "coingecko:unknown"])
        again = await pricing.get_price("coingecko:ethereum")

        clock.now += 301
        await pricing.get_price("coingecko:ethereum")

    assert prices == {"coingecko:ethereum": Decimal("2000.5"), "ethereum:0xusdc": Decimal("1.0")}
    assert again == Decimal("2000.5")
    assert requests == [
        "/prices/current/coingecko:ethereum,ethereum:0xusdc,coingecko:unknown",
        "/prices/current/coingecko:ethereum",
    ]


@pytest.mark.asyncio
async def test_lookup_failure_gives_no_price(clock):
    """Test HTTP failures yield an empty result instead of raising."""
    async with price_client([], status=502) as client:
        pricing = DeFiLlamaPricing(client, clock=clock)

        assert await pricing.get_prices(["coingecko:ethereum"]) == {}
        assert await pricing.get_price("coingecko:ethereum") is None


@pytest.mark.asyncio
async def test_enrich_native_and_tokens(clock):
    """Test USD values are filled for the native unit and priced tokens."""
    network = make_network("ETH", decimals=18, symbol="ETH")
    network.price_id = "coingecko:ethereum"
    network.price_chain = "Ethereum"
    tokens = [
        TokenHolding(contract="0xusdc", symbol="USDC", decimals=6, raw_balance=5, display_balance=Decimal("5")),
        TokenHolding(contract="0xnone", symbol="NONE", decimals=6, raw_balance=1, display_balance=Decimal("1")),
    ]
    result = make_result("ETH", "0xabc", "2", tokens=tokens)

    async with price_client([]) as client:
        enriched = await DeFiLlamaPricing(client, clock=clock).enrich(result, network)

    assert enriched.usd_value == Decimal("4001.0")
    assert enriched.tokens[0].usd_value == Decimal("5.0")
    assert enriched.tokens[1].usd_value is None
    assert result.usd_value is None


@pytest.mark.asyncio
async def test_enrich_skips_unpriced_networks(clock):
    """Test networks without price identifiers make no request."""
    requests = []
    async with price_client(requests) as client:
        result = make_result("TEST", "addr", "1")
        enriched = await DeFiLlamaPricing(client, clock=clock).enrich(result, make_network("TEST"))

    assert enriched == result
    assert requests == []
