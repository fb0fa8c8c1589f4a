"""Marketplace adapters."""

from .base import AdapterError, BaseMarketplace
from .ebay import EbayMarketplace
from .reverb import ReverbMarketplace
from .amazon import AmazonMarketplace

from ..models import Marketplace


def get_adapters() -> dict[Marketplace, BaseMarketplace]:
    """Create one adapter per supported marketplace."""
    return {
        Marketplace.EBAY: EbayMarketplace(),
        Marketplace.REVERB: ReverbMarketplace(),
        Marketplace.AMAZON: AmazonMarketplace(),
    }


__all__ = [
    "AdapterError",
    "BaseMarketplace",
    "EbayMarketplace",
    "ReverbMarketplace",
    "AmazonMarketplace",
    "get_adapters",
]
