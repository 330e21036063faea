"""Return-series helpers shared by the risk and rebalance computations."""

from __future__ import annotations

import math
from statistics import fmean
from typing import Dict, List, Mapping, Sequence

from ..models import PriceSeries

TRADING_DAYS = 252


def align_histories(history: Mapping[str, PriceSeries]) -> Dict[str, List[float]]:
    """Truncate every series to the trailing suffix of the shortest one."""

    if not history:
        return {}
    min_length = min(len(series) for series in history.values())
    aligned: Dict[str, List[float]] = {}
    for symbol, series in history.items():
        aligned[symbol] = list(series.prices[-min_length:]) if min_length > 0 else []
    return aligned


def simple_returns(prices: Sequence[float]) -> List[float]:
    """Return ``(p[i] - p[i-1]) / p[i-1]`` for each consecutive pair.

    A zero previous price contributes a zero return.
    """

    returns: List[float] = []
    for previous, current in zip(prices, prices[1:]):
        if previous == 0:
            returns.append(0.0)
            continue
        returns.append((current - previous) / previous)
    return returns


def asset_returns(aligned: Mapping[str, Sequence[float]]) -> Dict[str, List[float]]:
    return {symbol: simple_returns(prices) for symbol, prices in aligned.items()}


def portfolio_returns(returns: Mapping[str, Sequence[float]], weights: Mapping[str, float]) -> List[float]:
    """Weighted sum of asset returns per day; unweighted assets contribute nothing."""

    if not returns:
        return []
    length = min(len(series) for series in returns.values())
    combined: List[float] = []
    for index in range(length):
        daily = 0.0
        for symbol, series in returns.items():
            daily += weights.get(symbol, 0.0) * series[index]
        combined.append(daily)
    return combined


def mean(values: Sequence[float]) -> float:
    return fmean(values) if values else 0.0


def variance(values: Sequence[float]) -> float:
    """Population variance; zero for an empty series."""

    if not values:
        return 0.0
    centre = mean(values)
    return sum((value - centre) ** 2 for value in values) / len(values)


def stdev(values: Sequence[float]) -> float:
    return math.sqrt(variance(values))


def covariance(x: Sequence[float], y: Sequence[float]) -> float:
    """Population covariance over the common prefix of ``x`` and ``y``."""

    n = min(len(x), len(y))
    if n == 0:
        return 0.0
    x_head, y_head = x[:n], y[:n]
    mean_x, mean_y = mean(x_head), mean(y_head)
    return sum((a - mean_x) * (b - mean_y) for a, b in zip(x_head, y_head)) / n


def finite_or_zero(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
