"""Provider adapter registry with auto-registration pattern."""

from typing import Any, Protocol

from balance_engine.core.models import BalanceReading, NetworkConfig, ProviderEndpoint


class ProviderAdapterInterface(Protocol):
    """
    Interface that all provider adapters must implement.

    Attributes
    ----------
    kind : str
        Unique adapter identifier referenced from the network catalogue
    supports_bulk : bool
        Whether the provider family tolerates parallel reads

    Methods
    -------
    probe(endpoint)
        Cheap connectivity check
    fetch_balance(endpoint, network, address)
        Fetch and parse the balance of an address

    """

    kind: str
    supports_bulk: bool

    async def probe(self, endpoint: ProviderEndpoint) -> None:
        """
        Check that an endpoint answers.

        Parameters
        ----------
        endpoint : ProviderEndpoint
            Endpoint to probe

        Raises
        ------
        ProviderRequestError
            If the endpoint is unreachable or answers with an error

        """
        ...

    async def fetch_balance(self, endpoint: ProviderEndpoint, network: NetworkConfig, address: str) -> BalanceReading:
        """
        Fetch the balance of an address.

        Parameters
        ----------
        endpoint : ProviderEndpoint
            Endpoint to query
        network : NetworkConfig
            Network the address lives on
        address : str
            Address to query

        Returns
        -------
        BalanceReading
            Raw native balance and token holdings

        """
        ...


class AdapterRegistry:
    """
    Registry for provider adapters with auto-registration.

    Adapters register themselves using the @AdapterRegistry.register decorator.
    The provider registry then instantiates the adapter named by each
    network's ``adapter`` field.

    """

    _adapters: dict[str, type] = {}

    @classmethod
    def register(cls, adapter_class: type) -> type:
        """
        Decorator to register a provider adapter.

        Parameters
        ----------
        adapter_class : type
            Adapter class to register

        Returns
        -------
        type
            The adapter class (for decorator chaining)

        Examples
        --------
        >>> @AdapterRegistry.register
        ... class EsploraAdapter(BaseProviderAdapter):
        ...     kind = "esplora"

        """
        if not getattr(adapter_class, "kind", ""):
            msg = f"Adapter {adapter_class.__name__} must define 'kind' attribute"
            raise ValueError(msg)

        cls._adapters[adapter_class.kind] = adapter_class
        return adapter_class

    @classmethod
    def get_adapter(cls, kind: str) -> type | None:
        """
        Get adapter class by kind.

        Parameters
        ----------
        kind : str
            Adapter identifier

        Returns
        -------
        type | None
            Adapter class or None if not found

        """
        return cls._adapters.get(kind)

    @classmethod
    def create(cls, kind: str, **kwargs: Any) -> Any:
        """
        Instantiate the adapter registered under ``kind``.

        Parameters
        ----------
        kind : str
            Adapter identifier
        **kwargs : Any
            Constructor arguments

        Returns
        -------
        Any
            Adapter instance

        Raises
        ------
        KeyError
            If no adapter is registered under ``kind``

        """
        adapter_class = cls.get_adapter(kind)
        if adapter_class is None:
            msg = f"No provider adapter registered for '{kind}'"
            raise KeyError(msg)
        return adapter_class(**kwargs)

    @classmethod
    def list_kinds(cls) -> list[str]:
        """
        Get list of all registered adapter kinds.

        Returns
        -------
        list[str]
            List of adapter identifiers

        """
        return list(cls._adapters.keys())
