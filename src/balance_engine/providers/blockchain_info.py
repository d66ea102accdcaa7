"""Blockchain.info adapter for Bitcoin mainnet."""

from balance_engine.core.exceptions import ProviderRequestError
from balance_engine.core.models import BalanceReading, NetworkConfig, ProviderEndpoint
from balance_engine.core.registry import AdapterRegistry
from balance_engine.providers.base import BaseProviderAdapter


@AdapterRegistry.register
class BlockchainInfoAdapter(BaseProviderAdapter):
    """Adapter for the blockchain.info ``rawaddr`` endpoint."""

    kind = "blockchain_info"

    async def probe(self, endpoint: ProviderEndpoint) -> None:
        await self._get_json(f"{endpoint.url.rstrip('/')}/latestblock")

    async def fetch_balance(self, endpoint: ProviderEndpoint, network: NetworkConfig, address: str) -> BalanceReading:
        data = await self._get_json(f"{endpoint.url.rstrip('/')}/rawaddr/{address}", params={"limit": 0})
        try:
            return BalanceReading(raw_balance=int(data["final_balance"]))
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Unexpected blockchain.info response for {address}"
            raise ProviderRequestError(msg) from e
