"""History and spot price providers."""

from .base import STABLECOINS, MarketDataProvider
from .ccxt_provider import CcxtMarketData
from .static import StaticMarketData

__all__ = [
    "STABLECOINS",
    "CcxtMarketData",
    "MarketDataProvider",
    "StaticMarketData",
]
