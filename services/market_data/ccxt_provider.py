"""CCXT-backed history and spot price provider."""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Dict, List, Optional, Sequence

import ccxt.async_support as ccxt_async

from portfolio_advisor.models import PriceSeries

from ..cache import TTLCache
from ..telemetry import Telemetry
from .base import STABLECOINS, MarketDataProvider

logger = logging.getLogger(__name__)

_DAY_MS = 86_400_000


def _flat_series(window_days: int, *, now_ms: Optional[int] = None) -> PriceSeries:
    """Return a constant 1.0 series ending at the current UTC day."""

    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    last_day = now_ms - (now_ms % _DAY_MS)
    count = max(window_days, 0)
    timestamps = [last_day - (count - 1 - index) * _DAY_MS for index in range(count)]
    return PriceSeries(timestamps=timestamps, prices=[1.0] * count)


def _closes_from_ohlcv(rows: Any) -> PriceSeries:
    timestamps: List[int] = []
    prices: List[float] = []
    for row in rows or []:
        if not isinstance(row, (list, tuple)) or len(row) < 5:
            continue
        try:
            timestamp = int(row[0])
            close = float(row[4])
        except (TypeError, ValueError):
            continue
        if not math.isfinite(close) or close <= 0:
            continue
        timestamps.append(timestamp)
        prices.append(close)
    return PriceSeries(timestamps=timestamps, prices=prices)


class CcxtMarketData(MarketDataProvider):
    """Daily closes and last prices from a ccxt exchange client.

    Symbols are traded against ``quote`` (``BTC`` -> ``BTC/USDT``). Stablecoins
    are pinned to 1.0. Results are cached in the injected ``TTLCache``; a stale
    entry is only served when the exchange call fails.
    """

    def __init__(
        self,
        client: Any,
        *,
        quote: str = "USDT",
        cache: Optional[TTLCache] = None,
        telemetry: Optional[Telemetry] = None,
        price_ttl_seconds: float = 60.0,
        history_ttl_seconds: float = 3600.0,
    ) -> None:
        self.client = client
        self.quote = quote.upper()
        self.cache = cache or TTLCache()
        self.telemetry = telemetry or Telemetry()
        self.price_ttl_seconds = price_ttl_seconds
        self.history_ttl_seconds = history_ttl_seconds
        self.exchange_id = str(getattr(client, "id", "exchange"))

    @classmethod
    def create(
        cls,
        exchange_id: str,
        *,
        quote: str = "USDT",
        cache: Optional[TTLCache] = None,
        telemetry: Optional[Telemetry] = None,
        price_ttl_seconds: float = 60.0,
        history_ttl_seconds: float = 3600.0,
    ) -> "CcxtMarketData":
        exchange_class = getattr(ccxt_async, exchange_id.lower(), None)
        if exchange_class is None:
            raise ValueError(f"Unsupported ccxt exchange: {exchange_id}")
        client = exchange_class({"enableRateLimit": True})
        return cls(
            client,
            quote=quote,
            cache=cache,
            telemetry=telemetry,
            price_ttl_seconds=price_ttl_seconds,
            history_ttl_seconds=history_ttl_seconds,
        )

    def _market(self, symbol: str) -> str:
        return f"{symbol}/{self.quote}"

    async def history(self, symbols: Sequence[str], window_days: int) -> Dict[str, PriceSeries]:
        result: Dict[str, PriceSeries] = {}
        for raw in symbols:
            symbol = str(raw).upper()
            if symbol in STABLECOINS:
                result[symbol] = _flat_series(window_days)
                continue
            key = f"history:{self.exchange_id}:{symbol}:{window_days}"
            cached = self.cache.get(key)
            if cached is not None and not cached.stale:
                result[symbol] = cached.value
                continue
            market = self._market(symbol)
            try:
                rows = await self.telemetry.execute_with_resilience(
                    f"{self.exchange_id}.fetch_ohlcv",
                    lambda market=market: self.client.fetch_ohlcv(market, "1d", limit=window_days),
                )
            except Exception as exc:
                logger.warning(
                    "History fetch failed",
                    extra={"symbol": symbol, "exchange": self.exchange_id, "error": str(exc), "stale": cached is not None},
                )
                result[symbol] = cached.value if cached is not None else PriceSeries()
                continue
            series = _closes_from_ohlcv(rows).tail(window_days)
            self.cache.set(key, series, self.history_ttl_seconds)
            result[symbol] = series
        return result

    async def prices(self, symbols: Sequence[str]) -> Dict[str, Optional[float]]:
        result: Dict[str, Optional[float]] = {}
        for raw in symbols:
            symbol = str(raw).upper()
            if symbol in STABLECOINS:
                result[symbol] = 1.0
                continue
            key = f"price:{self.exchange_id}:{symbol}"
            cached = self.cache.get(key)
            if cached is not None and not cached.stale:
                result[symbol] = cached.value
                continue
            market = self._market(symbol)
            try:
                ticker = await self.telemetry.execute_with_resilience(
                    f"{self.exchange_id}.fetch_ticker",
                    lambda market=market: self.client.fetch_ticker(market),
                )
            except Exception as exc:
                logger.warning(
                    "Price fetch failed",
                    extra={"symbol": symbol, "exchange": self.exchange_id, "error": str(exc), "stale": cached is not None},
                )
                result[symbol] = cached.value if cached is not None else None
                continue
            price = _ticker_price(ticker)
            if price is not None:
                self.cache.set(key, price, self.price_ttl_seconds)
            else:
                logger.info("No price in ticker", extra={"symbol": symbol, "exchange": self.exchange_id})
            result[symbol] = price
        return result

    async def close(self) -> None:
        closer = getattr(self.client, "close", None)
        if closer is not None:
            await closer()


def _ticker_price(ticker: Any) -> Optional[float]:
    if not isinstance(ticker, dict):
        return None
    for key in ("last", "close", "bid"):
        value = ticker.get(key)
        if value in (None, ""):
            continue
        try:
            price = float(value)
        except (TypeError, ValueError):
            continue
        if price > 0:
            return price
    return None
