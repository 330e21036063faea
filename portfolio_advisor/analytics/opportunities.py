"""Momentum and moving-average screen over candidate symbols."""

from __future__ import annotations

import logging
from typing import List, Mapping, Optional, Sequence

from ..models import Opportunity, PriceSeries
from .returns import mean

logger = logging.getLogger(__name__)

MIN_POINTS = 30
MIN_SCORE = 70
MAX_RESULTS = 5
NEUTRAL_SENTIMENT = 0.5
STRONG_MOMENTUM = 0.15

_MOMENTUM_LONG = 12
_MOMENTUM_SHORT = 2
_FAST_MA = 20
_SLOW_MA = 50


def windowed_momentum(prices: Sequence[float], long: int = _MOMENTUM_LONG, short: int = _MOMENTUM_SHORT) -> float:
    """Relative change between the last ``short`` closes and the ``short``
    closes starting ``long`` points back.

    Returns 0 when the series is shorter than ``long`` or the older window
    averages to zero.
    """

    if len(prices) < long:
        return 0.0
    recent = prices[-short:]
    older = prices[-long : -long + short]
    older_avg = mean(older)
    if older_avg == 0:
        return 0.0
    return (mean(recent) - older_avg) / older_avg


def moving_average(prices: Sequence[float], period: int) -> float:
    if not prices:
        return 0.0
    if len(prices) < period:
        return prices[-1]
    return mean(prices[-period:])


def score_candidate(
    symbol: str, prices: Sequence[float], sentiment: float = NEUTRAL_SENTIMENT
) -> Optional[Opportunity]:
    if len(prices) < MIN_POINTS:
        return None
    momentum = windowed_momentum(prices)
    fast = moving_average(prices, _FAST_MA)
    slow = moving_average(prices, _SLOW_MA)
    ma_cross = prices[-1] > fast > slow
    strong = momentum > STRONG_MOMENTUM

    score = 50
    reasons: List[str] = []
    if strong:
        score += 20
        reasons.append(f"Strong momentum ({momentum * 100:.1f}%)")
    if ma_cross:
        score += 15
        reasons.append("MA crossover signal")
    if sentiment > 0.7 or sentiment < 0.3:
        score += 15
        reasons.append("Positive sentiment spike" if sentiment > 0.7 else "Oversold sentiment")

    if score < MIN_SCORE or not reasons:
        return None
    return Opportunity(
        symbol=symbol,
        score=min(100, score),
        reasons=reasons,
        momentum=momentum,
        sentiment=sentiment,
    )


def scan_opportunities(
    symbols: Sequence[str],
    history: Mapping[str, PriceSeries],
    sentiment: Optional[Mapping[str, float]] = None,
    *,
    limit: int = MAX_RESULTS,
) -> List[Opportunity]:
    """Rank ``symbols`` by the screen and keep the best ``limit`` hits.

    Symbols with fewer than 30 closes are skipped. Sentiment is optional;
    a symbol without a reading is treated as neutral (0.5).
    """

    sentiment = sentiment or {}
    found: List[Opportunity] = []
    skipped: List[str] = []
    for symbol in symbols:
        series = history.get(symbol)
        prices = series.prices if series is not None else []
        if len(prices) < MIN_POINTS:
            skipped.append(symbol)
            continue
        reading = sentiment.get(symbol)
        candidate = score_candidate(symbol, prices, NEUTRAL_SENTIMENT if reading is None else reading)
        if candidate is not None:
            found.append(candidate)
    if skipped:
        logger.debug("Skipped symbols with short history", extra={"symbols": skipped, "min_points": MIN_POINTS})
    found.sort(key=lambda item: item.score, reverse=True)
    return found[:limit]
