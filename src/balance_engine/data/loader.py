"""Network catalogue loader."""

from functools import cache
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from balance_engine.core.models import NetworkConfig, ProviderEndpoint, TokenConfig

DEFAULT_NETWORKS_FILE = Path(__file__).parent / "networks.yaml"


def load_network_file(path: Path | None = None) -> dict[str, Any]:
    """
    Load the raw network catalogue from YAML.

    Parameters
    ----------
    path : Path | None
        Catalogue file, defaults to the packaged ``networks.yaml``

    Returns
    -------
    dict[str, Any]
        Parsed YAML document

    """
    path = path or DEFAULT_NETWORKS_FILE
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_networks(document: dict[str, Any]) -> dict[str, NetworkConfig]:
    """
    Build network configurations from a catalogue document.

    Endpoint priority defaults to list position and endpoint name to the URL
    host, so the same host serving several networks shares one rate window.

    Parameters
    ----------
    document : dict[str, Any]
        Parsed catalogue with a top-level ``networks`` mapping

    Returns
    -------
    dict[str, NetworkConfig]
        Mapping of network code to configuration

    Raises
    ------
    ValueError
        If a network entry is malformed

    """
    networks = {}
    for code, entry in (document.get("networks") or {}).items():
        if not isinstance(entry, dict):
            msg = f"Network '{code}' must be a mapping"
            raise ValueError(msg)

        endpoints = []
        for position, raw in enumerate(entry.get("endpoints") or []):
            if isinstance(raw, str):
                raw = {"url": raw}
            endpoints.append(
                ProviderEndpoint(
                    network=code,
                    url=raw["url"],
                    priority=raw.get("priority", position),
                    name=raw.get("name") or endpoint_name(raw["url"]),
                    adapter=raw.get("adapter"),
                )
            )
        endpoints.sort(key=lambda endpoint: endpoint.priority)

        tokens = [TokenConfig(**token) for token in entry.get("tokens") or []]
        fields = {key: value for key, value in entry.items() if key not in ("endpoints", "tokens")}
        networks[code] = NetworkConfig(code=code, endpoints=endpoints, tokens=tokens, **fields)
    return networks


@cache
def _default_networks() -> dict[str, NetworkConfig]:
    return parse_networks(load_network_file())


def load_networks(path: Path | None = None) -> dict[str, NetworkConfig]:
    """
    Load network configurations.

    Parameters
    ----------
    path : Path | None
        Catalogue file, defaults to the packaged ``networks.yaml``

    Returns
    -------
    dict[str, NetworkConfig]
        Mapping of network code to configuration

    """
    if path is None:
        return dict(_default_networks())
    return parse_networks(load_network_file(path))


def get_network_config(network: str) -> NetworkConfig:
    """
    Get configuration for a specific network.

    Parameters
    ----------
    network : str
        Network code (e.g., 'ETH', 'BTC')

    Returns
    -------
    NetworkConfig
        Network configuration

    Raises
    ------
    KeyError
        If network is not found in the catalogue

    """
    return _default_networks()[network]


def get_all_supported_networks(include_testnets: bool = True) -> list[str]:
    """
    Get the codes of all catalogued networks.

    Parameters
    ----------
    include_testnets : bool
        Whether test networks are listed

    Returns
    -------
    list[str]
        Network codes in catalogue order

    """
    return [code for code, config in _default_networks().items() if include_testnets or not config.testnet]


def endpoint_name(url: str) -> str:
    """Derive a provider name from an endpoint URL."""
    return urlparse(url).netloc or url
