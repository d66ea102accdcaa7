"""Solana JSON-RPC adapter."""

from typing import Any

from balance_engine.core.exceptions import ProviderRequestError
from balance_engine.core.models import BalanceReading, NetworkConfig, ProviderEndpoint
from balance_engine.core.registry import AdapterRegistry
from balance_engine.providers.base import BaseProviderAdapter


@AdapterRegistry.register
class SolanaRPCAdapter(BaseProviderAdapter):
    """
    Adapter for Solana JSON-RPC endpoints.

    ``getBalance`` returns lamports under ``result.value``.

    """

    kind = "solana_rpc"

    async def probe(self, endpoint: ProviderEndpoint) -> None:
        await self._rpc(endpoint.url, "getHealth", [])

    async def fetch_balance(self, endpoint: ProviderEndpoint, network: NetworkConfig, address: str) -> BalanceReading:
        result = await self._rpc(endpoint.url, "getBalance", [address])
        try:
            return BalanceReading(raw_balance=int(result["value"]))
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Unexpected getBalance result for {address}"
            raise ProviderRequestError(msg) from e

    async def _rpc(self, url: str, method: str, params: list[Any]) -> Any:
        body = await self._post_json(url, {"jsonrpc": "2.0", "id": 1, "method": method, "params": params})
        error = body.get("error") if isinstance(body, dict) else None
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            status = 429 if code == 429 else code
            raise ProviderRequestError(f"RPC error {code}: {message}", status_code=status)
        if not isinstance(body, dict) or "result" not in body:
            msg = f"Missing result in {method} response"
            raise ProviderRequestError(msg)
        return body["result"]
