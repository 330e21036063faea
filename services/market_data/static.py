"""In-memory provider used for offline runs and tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from portfolio_advisor.models import PriceSeries, coerce_history, coerce_prices

from .base import MarketDataProvider


class StaticMarketData(MarketDataProvider):
    def __init__(
        self,
        history: Optional[Mapping[str, Any]] = None,
        prices: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._history = coerce_history(dict(history or {}))
        self._prices = coerce_prices(dict(prices or {}))

    @classmethod
    def from_json(cls, path: Path) -> "StaticMarketData":
        """Load fixtures shaped ``{"history": {...}, "prices": {...}}``."""

        try:
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"Market data fixture not found: {path}") from exc
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in market data fixture {path}: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise TypeError(f"Market data fixture {path} must be a JSON object.")
        return cls(history=payload.get("history") or {}, prices=payload.get("prices") or {})

    async def history(self, symbols: Sequence[str], window_days: int) -> Dict[str, PriceSeries]:
        result: Dict[str, PriceSeries] = {}
        for symbol in symbols:
            key = str(symbol).upper()
            series = self._history.get(key, PriceSeries())
            result[key] = series.tail(window_days) if window_days > 0 else series
        return result

    async def prices(self, symbols: Sequence[str]) -> Dict[str, Optional[float]]:
        return {str(symbol).upper(): self._prices.get(str(symbol).upper()) for symbol in symbols}
