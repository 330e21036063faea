"""Provider interface consumed by the history and prices tools."""

from __future__ import annotations

import abc
from typing import Dict, Optional, Sequence

from portfolio_advisor.models import PriceSeries

STABLECOINS = frozenset({"USDT", "USDC", "DAI"})


class MarketDataProvider(abc.ABC):
    """Asynchronous source of daily price history and spot prices.

    Implementations never raise for a single unknown or failing symbol: the
    symbol maps to an empty series (history) or ``None`` (prices).
    """

    @abc.abstractmethod
    async def history(self, symbols: Sequence[str], window_days: int) -> Dict[str, PriceSeries]:
        """Return up to ``window_days`` daily closes per symbol, oldest first."""

    @abc.abstractmethod
    async def prices(self, symbols: Sequence[str]) -> Dict[str, Optional[float]]:
        """Return the latest spot price per symbol."""

    async def close(self) -> None:
        """Release network resources held by the provider."""
        return None
