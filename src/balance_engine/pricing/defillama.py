"""DeFiLlama pricing service for fetching USD prices."""

import logging
import time
from collections.abc import Callable, Iterable
from decimal import Decimal

import httpx

from balance_engine.core.models import NetworkConfig, QueryResult, TokenHolding

logger = logging.getLogger(__name__)


class DeFiLlamaPricing:
    """
    Fetches USD prices from the DeFiLlama coins API.

    Native units are looked up by the network's ``price_id`` (for example
    ``coingecko:ethereum``) and tokens by ``{price_chain}:{contract}``. Prices
    are kept for ``ttl`` seconds. Lookup failures yield no price rather than
    an error.

    Parameters
    ----------
    client : httpx.AsyncClient
        Shared HTTP client
    base_url : str
        DeFiLlama API base URL
    ttl : float
        Seconds a fetched price is reused
    clock : Callable[[], float]
        Monotonic clock

    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://coins.llama.fi",
        ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.ttl = ttl
        self._clock = clock
        self._prices: dict[str, tuple[Decimal, float]] = {}

    async def get_prices(self, coin_ids: Iterable[str]) -> dict[str, Decimal]:
        """
        Fetch USD prices for several coins.

        Parameters
        ----------
        coin_ids : Iterable[str]
            Coin identifiers in ``chain:address`` or ``coingecko:id`` form

        Returns
        -------
        dict[str, Decimal]
            Prices for the coins DeFiLlama knows; unknown coins are absent

        Examples
        --------
        >>> pricing = DeFiLlamaPricing(client)
        >>> prices = await pricing.get_prices(["coingecko:bitcoin", "coingecko:ethereum"])

        """
        now = self._clock()
        result = {}
        missing = []
        for coin_id in dict.fromkeys(coin_ids):
            cached = self._prices.get(coin_id)
            if cached is not None and now - cached[1] < self.ttl:
                result[coin_id] = cached[0]
            else:
                missing.append(coin_id)

        if missing:
            fetched = await self._fetch_batch_prices(missing)
            for coin_id in missing:
                price_info = fetched.get(coin_id)
                if price_info and "price" in price_info:
                    price = Decimal(str(price_info["price"]))
                    self._prices[coin_id] = (price, now)
                    result[coin_id] = price
        return result

    async def get_price(self, coin_id: str) -> Decimal | None:
        """Fetch the USD price of a single coin, None when unknown."""
        prices = await self.get_prices([coin_id])
        return prices.get(coin_id)

    async def enrich(self, result: QueryResult, network: NetworkConfig) -> QueryResult:
        """
        Fill USD values on a successful result.

        Parameters
        ----------
        result : QueryResult
            Result to enrich
        network : NetworkConfig
            Network the result belongs to

        Returns
        -------
        QueryResult
            Copy with ``usd_value`` set where a price was found

        """
        if not result.ok:
            return result

        native_id = network.price_id
        token_ids = {
            token.contract: self._format_coin_id(network.price_chain, token.contract)
            for token in result.tokens
            if network.price_chain
        }
        wanted = [coin_id for coin_id in [native_id, *token_ids.values()] if coin_id]
        if not wanted:
            return result

        prices = await self.get_prices(wanted)

        usd_value = None
        if native_id and native_id in prices:
            usd_value = result.display_balance * prices[native_id]

        tokens: list[TokenHolding] = []
        for token in result.tokens:
            price = prices.get(token_ids.get(token.contract, ""))
            value = token.display_balance * price if price is not None else None
            tokens.append(token.model_copy(update={"usd_value": value}))

        return result.model_copy(update={"usd_value": usd_value, "tokens": tokens})

    async def _fetch_batch_prices(self, coin_ids: list[str]) -> dict:
        """
        Fetch prices from DeFiLlama API.

        Parameters
        ----------
        coin_ids : list[str]
            Coin identifiers

        Returns
        -------
        dict
            Raw ``coins`` mapping, empty on failure

        """
        try:
            coins_param = ",".join(coin_ids)
            url = f"{self.base_url}/prices/current/{coins_param}"

            response = await self.client.get(url)
            response.raise_for_status()

            data = response.json()
            return data.get("coins", {})

        except httpx.HTTPError as e:
            logger.debug("Price lookup failed for %s: %s", coin_ids, e)
            return {}
        except ValueError as e:
            logger.debug("Invalid price response for %s: %s", coin_ids, e)
            return {}

    @staticmethod
    def _format_coin_id(chain: str | None, address: str) -> str:
        """Format a token identifier for DeFiLlama (e.g., ``ethereum:0x...``)."""
        return f"{(chain or '').lower()}:{address}"

    def clear(self) -> None:
        """Forget cached prices."""
        self._prices.clear()
