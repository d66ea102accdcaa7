"""Pricing services for USD value enrichment."""

from balance_engine.pricing.defillama import DeFiLlamaPricing

__all__ = [
    "DeFiLlamaPricing",
]
