"""Provider adapters for the supported blockchain API families."""

# Import all adapters to trigger auto-registration
from balance_engine.providers.base import BaseProviderAdapter
from balance_engine.providers.blockchain_info import BlockchainInfoAdapter
from balance_engine.providers.blockcypher import BlockCypherAdapter
from balance_engine.providers.esplora import EsploraAdapter
from balance_engine.providers.evm import EVMRPCAdapter
from balance_engine.providers.solana import SolanaRPCAdapter

__all__ = [
    "BaseProviderAdapter",
    "BlockCypherAdapter",
    "BlockchainInfoAdapter",
    "EVMRPCAdapter",
    "EsploraAdapter",
    "SolanaRPCAdapter",
]
