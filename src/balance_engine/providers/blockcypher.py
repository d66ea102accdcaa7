"""BlockCypher REST adapter for BTC, LTC and DOGE."""

from balance_engine.core.exceptions import ProviderRequestError
from balance_engine.core.models import BalanceReading, NetworkConfig, ProviderEndpoint
from balance_engine.core.registry import AdapterRegistry
from balance_engine.providers.base import BaseProviderAdapter


@AdapterRegistry.register
class BlockCypherAdapter(BaseProviderAdapter):
    """
    Adapter for BlockCypher chain endpoints.

    Endpoint URLs point at a chain root such as
    ``https://api.blockcypher.com/v1/btc/main``.

    """

    kind = "blockcypher"

    async def probe(self, endpoint: ProviderEndpoint) -> None:
        await self._get_json(endpoint.url.rstrip("/"))

    async def fetch_balance(self, endpoint: ProviderEndpoint, network: NetworkConfig, address: str) -> BalanceReading:
        data = await self._get_json(f"{endpoint.url.rstrip('/')}/addrs/{address}/balance")
        if isinstance(data, dict) and data.get("error"):
            raise ProviderRequestError(str(data["error"]))
        try:
            return BalanceReading(raw_balance=int(data["balance"]))
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Unexpected BlockCypher response for {address}"
            raise ProviderRequestError(msg) from e
