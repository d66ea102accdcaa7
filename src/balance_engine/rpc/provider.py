"""Endpoint registry with probing and known-good endpoint memory."""

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

import httpx

from balance_engine.core.exceptions import NoEndpointAvailableError, UnsupportedNetworkError
from balance_engine.core.models import NetworkConfig, ProviderEndpoint
from balance_engine.core.registry import AdapterRegistry, ProviderAdapterInterface

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Ordered endpoints per network with failover.

    The first endpoint that answers a probe is remembered as known-good and
    returned by ``acquire`` until it is invalidated. Each network has its own
    lock, so probing one network never blocks another.

    Parameters
    ----------
    networks : Mapping[str, NetworkConfig]
        Network catalogue keyed by code
    client : httpx.AsyncClient
        HTTP client shared by all adapters
    adapters : Mapping[str, ProviderAdapterInterface] | None
        Adapter instances by kind, overriding the registered adapter classes

    """

    def __init__(
        self,
        networks: Mapping[str, NetworkConfig],
        client: httpx.AsyncClient,
        adapters: Mapping[str, ProviderAdapterInterface] | None = None,
    ) -> None:
        self._networks = dict(networks)
        self._client = client
        self._adapters: dict[str, ProviderAdapterInterface] = dict(adapters or {})
        self._known_good: dict[str, ProviderEndpoint] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def network(self, code: str) -> NetworkConfig:
        """
        Get the configuration of a network.

        Raises
        ------
        UnsupportedNetworkError
            If the network is not in the catalogue

        """
        try:
            return self._networks[code]
        except KeyError:
            msg = f"Unsupported network: {code}"
            raise UnsupportedNetworkError(msg) from None

    def networks(self) -> list[str]:
        return list(self._networks)

    def endpoints(self, code: str) -> list[ProviderEndpoint]:
        """Endpoints of a network in priority order."""
        return sorted(self.network(code).endpoints, key=lambda endpoint: endpoint.priority)

    def adapter_for(self, network: NetworkConfig, endpoint: ProviderEndpoint | None = None) -> ProviderAdapterInterface:
        """
        Resolve the adapter serving an endpoint.

        Parameters
        ----------
        network : NetworkConfig
            Network configuration
        endpoint : ProviderEndpoint | None
            Endpoint whose ``adapter`` overrides the network default

        Returns
        -------
        ProviderAdapterInterface
            Adapter instance, created once per kind

        """
        kind = (endpoint.adapter if endpoint is not None else None) or network.adapter
        adapter = self._adapters.get(kind)
        if adapter is None:
            adapter = AdapterRegistry.create(kind, client=self._client)
            self._adapters[kind] = adapter
        return adapter

    def supports_bulk(self, code: str) -> bool:
        """Whether the network and its primary adapter tolerate parallel reads."""
        network = self.network(code)
        if not network.bulk:
            return False
        endpoints = self.endpoints(code)
        first = endpoints[0] if endpoints else None
        return bool(getattr(self.adapter_for(network, first), "supports_bulk", False))

    async def acquire(self, code: str, exclude: Iterable[ProviderEndpoint] = ()) -> ProviderEndpoint:
        """
        Return a working endpoint for a network.

        Parameters
        ----------
        code : str
            Network code
        exclude : Iterable[ProviderEndpoint]
            Endpoints already exhausted by the caller

        Returns
        -------
        ProviderEndpoint
            Known-good endpoint, or the first one answering a probe

        Raises
        ------
        UnsupportedNetworkError
            If the network is not in the catalogue
        NoEndpointAvailableError
            If no remaining endpoint answers, chained to the last probe failure

        """
        network = self.network(code)
        excluded = set(exclude)

        lock = self._locks.setdefault(code, asyncio.Lock())
        async with lock:
            known = self._known_good.get(code)
            if known is not None and known not in excluded:
                return known

            last_error: Exception | None = None
            for endpoint in self.endpoints(code):
                if endpoint in excluded:
                    continue
                try:
                    await self.adapter_for(network, endpoint).probe(endpoint)
                except Exception as e:
                    logger.info("Probe failed for %s endpoint %s: %s", code, endpoint.name, e)
                    last_error = e
                    continue
                logger.debug("Using %s endpoint %s", code, endpoint.name)
                self._known_good[code] = endpoint
                return endpoint

        msg = f"No working endpoint for {code}"
        if last_error is not None:
            msg = f"{msg}: {last_error}"
        raise NoEndpointAvailableError(msg) from last_error

    def invalidate(self, code: str) -> None:
        """Forget the known-good endpoint of a network."""
        if self._known_good.pop(code, None) is not None:
            logger.debug("Invalidated known-good endpoint for %s", code)

    def known_good(self, code: str) -> ProviderEndpoint | None:
        return self._known_good.get(code)

    def status(self) -> dict[str, Any]:
        """Known-good endpoint name per network."""
        return {code: endpoint.name for code, endpoint in self._known_good.items()}
