"""Network catalogue loading."""

from balance_engine.data.loader import (
    DEFAULT_NETWORKS_FILE,
    endpoint_name,
    get_all_supported_networks,
    get_network_config,
    load_network_file,
    load_networks,
    parse_networks,
)

__all__ = [
    "DEFAULT_NETWORKS_FILE",
    "endpoint_name",
    "get_all_supported_networks",
    "get_network_config",
    "load_network_file",
    "load_networks",
    "parse_networks",
]
