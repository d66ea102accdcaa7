"""Base provider adapter with shared HTTP handling."""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, ClassVar

import httpx

from balance_engine.core.exceptions import ProviderRequestError
from balance_engine.core.models import BalanceReading, NetworkConfig, ProviderEndpoint
from balance_engine.rpc.errors import parse_retry_after

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "multichain-balance-engine/0.1",
}


class BaseProviderAdapter(ABC):
    """
    Abstract base class for provider adapters.

    An adapter knows one provider API family: how to probe an endpoint and how
    to turn that provider's response shape into a ``BalanceReading``. Provider
    field names never leave the adapter.

    Attributes
    ----------
    kind : str
        Unique adapter identifier (must be set in subclass)
    supports_bulk : bool
        Whether endpoints tolerate parallel reads

    Parameters
    ----------
    client : httpx.AsyncClient
        Shared HTTP client

    """

    kind: ClassVar[str] = ""
    supports_bulk: ClassVar[bool] = False

    def __init__(self, client: httpx.AsyncClient) -> None:
        if not self.kind:
            msg = f"{self.__class__.__name__} must define 'kind' attribute"
            raise ValueError(msg)
        self.client = client

    @abstractmethod
    async def probe(self, endpoint: ProviderEndpoint) -> None:
        """
        Cheap connectivity check against an endpoint.

        Must be implemented by subclasses.

        Parameters
        ----------
        endpoint : ProviderEndpoint
            Endpoint to probe

        """
        ...

    @abstractmethod
    async def fetch_balance(self, endpoint: ProviderEndpoint, network: NetworkConfig, address: str) -> BalanceReading:
        """
        Fetch the native balance (and tracked tokens) of an address.

        Must be implemented by subclasses.

        Parameters
        ----------
        endpoint : ProviderEndpoint
            Endpoint to query
        network : NetworkConfig
            Network configuration
        address : str
            Address to query

        Returns
        -------
        BalanceReading
            Canonical balance reading

        """
        ...

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET a URL and decode its JSON body.

        Parameters
        ----------
        url : str
            Absolute URL
        params : dict[str, Any] | None
            Query parameters

        Returns
        -------
        Any
            Decoded JSON

        Raises
        ------
        ProviderRequestError
            If the request fails or the body is not JSON

        """
        return await self._request("GET", url, params=params)

    async def _post_json(self, url: str, payload: dict[str, Any]) -> Any:
        """POST a JSON payload and decode the JSON response."""
        return await self._request("POST", url, json=payload)

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self.client.request(method, url, headers=DEFAULT_HEADERS, **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            msg = f"Request timeout: {e}"
            raise ProviderRequestError(msg) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            msg = f"HTTP error {status}: {e.response.reason_phrase}"
            retry_after = parse_retry_after(e.response.headers) if status == 429 else None
            raise ProviderRequestError(msg, status_code=status, retry_after=retry_after) from e
        except httpx.HTTPError as e:
            msg = f"Network error: {e}"
            raise ProviderRequestError(msg) from e

        try:
            return response.json()
        except ValueError as e:
            msg = f"Invalid JSON from {url}"
            raise ProviderRequestError(msg, status_code=response.status_code) from e

    @staticmethod
    def to_units(raw: int, decimals: int) -> Decimal:
        """
        Convert a raw integer amount to whole units.

        Parameters
        ----------
        raw : int
            Amount in the smallest unit
        decimals : int
            Decimal places of the unit

        Returns
        -------
        Decimal
            Amount in whole units

        """
        return Decimal(raw).scaleb(-decimals)
