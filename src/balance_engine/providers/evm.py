"""EVM JSON-RPC adapter for native and ERC20 balances."""

import logging
from itertools import count
from typing import Any

from balance_engine.core.exceptions import ProviderRequestError
from balance_engine.core.models import BalanceReading, NetworkConfig, ProviderEndpoint, TokenConfig, TokenHolding
from balance_engine.core.registry import AdapterRegistry
from balance_engine.providers.base import BaseProviderAdapter

logger = logging.getLogger(__name__)

# balanceOf(address)
BALANCE_OF_SELECTOR = "0x70a08231"

# JSON-RPC error codes public nodes use for throttling
RATE_LIMIT_RPC_CODES = {-32005, -32029, 429}


@AdapterRegistry.register
class EVMRPCAdapter(BaseProviderAdapter):
    """
    Adapter for Ethereum-compatible JSON-RPC endpoints.

    Uses ``eth_getBalance`` for the native balance and ``eth_call`` with
    ``balanceOf`` for each tracked token. Token failures are logged and
    skipped; only the native balance decides success.

    """

    kind = "evm_rpc"
    supports_bulk = True

    _ids = count(1)

    async def probe(self, endpoint: ProviderEndpoint) -> None:
        await self._rpc(endpoint.url, "eth_chainId", [])

    async def fetch_balance(self, endpoint: ProviderEndpoint, network: NetworkConfig, address: str) -> BalanceReading:
        """
        Fetch native and token balances.

        Parameters
        ----------
        endpoint : ProviderEndpoint
            RPC endpoint
        network : NetworkConfig
            Network configuration, including tracked tokens
        address : str
            0x-prefixed account address

        Returns
        -------
        BalanceReading
            Balance in wei and tracked token holdings

        """
        result = await self._rpc(endpoint.url, "eth_getBalance", [address, "latest"])
        raw_balance = self._parse_quantity(result)

        tokens = []
        for token in network.tokens:
            try:
                holding = await self._fetch_token(endpoint, token, address)
            except ProviderRequestError as e:
                logger.debug("Token %s balance failed on %s: %s", token.symbol, network.code, e)
                continue
            if holding.raw_balance > 0:
                tokens.append(holding)

        return BalanceReading(raw_balance=raw_balance, tokens=tokens)

    async def _fetch_token(self, endpoint: ProviderEndpoint, token: TokenConfig, address: str) -> TokenHolding:
        data = BALANCE_OF_SELECTOR + self._pad_address(address)
        result = await self._rpc(endpoint.url, "eth_call", [{"to": token.contract, "data": data}, "latest"])
        raw = self._parse_quantity(result)
        return TokenHolding(
            contract=token.contract,
            symbol=token.symbol,
            name=token.name,
            decimals=token.decimals,
            raw_balance=raw,
            display_balance=self.to_units(raw, token.decimals),
        )

    async def _rpc(self, url: str, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        body = await self._post_json(url, payload)

        if not isinstance(body, dict):
            msg = f"Unexpected {method} response: {body!r}"
            raise ProviderRequestError(msg)

        error = body.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            status = 429 if code in RATE_LIMIT_RPC_CODES else code
            raise ProviderRequestError(f"RPC error {code}: {message}", status_code=status)

        if "result" not in body:
            msg = f"Missing result in {method} response"
            raise ProviderRequestError(msg)
        return body["result"]

    @staticmethod
    def _parse_quantity(value: Any) -> int:
        if value in (None, "0x", ""):
            return 0
        try:
            return int(value, 16)
        except (TypeError, ValueError) as e:
            msg = f"Invalid hex quantity: {value!r}"
            raise ProviderRequestError(msg) from e

    @staticmethod
    def _pad_address(address: str) -> str:
        """Left-pad an address to a 32-byte ABI word (without 0x)."""
        return address.lower().removeprefix("0x").rjust(64, "0")
