"""Esplora REST adapter (Blockstream, mempool.space) for UTXO chains."""

from balance_engine.core.exceptions import ProviderRequestError
from balance_engine.core.models import BalanceReading, NetworkConfig, ProviderEndpoint
from balance_engine.core.registry import AdapterRegistry
from balance_engine.providers.base import BaseProviderAdapter


@AdapterRegistry.register
class EsploraAdapter(BaseProviderAdapter):
    """
    Adapter for Esplora-compatible address APIs.

    The confirmed balance is ``funded_txo_sum - spent_txo_sum`` from the
    address ``chain_stats`` block.

    """

    kind = "esplora"

    async def probe(self, endpoint: ProviderEndpoint) -> None:
        await self._get_json(f"{endpoint.url.rstrip('/')}/blocks/tip/height")

    async def fetch_balance(self, endpoint: ProviderEndpoint, network: NetworkConfig, address: str) -> BalanceReading:
        data = await self._get_json(f"{endpoint.url.rstrip('/')}/address/{address}")
        try:
            stats = data["chain_stats"]
            funded = int(stats.get("funded_txo_sum") or 0)
            spent = int(stats.get("spent_txo_sum") or 0)
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Unexpected Esplora response for {address}"
            raise ProviderRequestError(msg) from e
        return BalanceReading(raw_balance=funded - spent)
