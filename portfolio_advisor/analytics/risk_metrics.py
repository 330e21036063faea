"""Historical risk metrics for a weighted crypto portfolio."""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Sequence

from ..models import PriceSeries, RiskMetrics
from .returns import (
    TRADING_DAYS,
    align_histories,
    asset_returns,
    covariance,
    finite_or_zero,
    mean,
    portfolio_returns,
    stdev,
    variance,
)

logger = logging.getLogger(__name__)

_STDEV_FLOOR = 1e-9
_VARIANCE_FLOOR = 1e-9
_VAR_CONFIDENCE = 0.95


def sortino_ratio(returns: Sequence[float]) -> float:
    """Annualised mean over annualised downside deviation of negative returns."""

    downside = [value for value in returns if value < 0]
    if not downside:
        return 0.0
    downside_deviation = math.sqrt(TRADING_DAYS * mean([value * value for value in downside]))
    if downside_deviation <= 0:
        return 0.0
    return (mean(returns) * TRADING_DAYS) / downside_deviation


def max_drawdown(returns: Sequence[float]) -> float:
    """Most negative ``(cumulative - peak) / peak`` along the compounded path."""

    cumulative = 1.0
    peak = 1.0
    worst = 0.0
    for value in returns:
        cumulative *= 1 + value
        if cumulative > peak:
            peak = cumulative
        drawdown = (cumulative - peak) / peak if peak else 0.0
        if drawdown < worst:
            worst = drawdown
    return worst


def value_at_risk(returns: Sequence[float], confidence: float = _VAR_CONFIDENCE) -> tuple[float, float]:
    """Return empirical ``(VaR, CVaR)`` from the sorted return distribution.

    CVaR averages every return at or below the VaR index.
    """

    if not returns:
        return 0.0, 0.0
    ordered = sorted(returns)
    index = min(int(math.floor((1 - confidence) * len(ordered))), len(ordered) - 1)
    tail = ordered[: index + 1]
    return ordered[index], mean(tail)


def correlation_matrix(returns: Mapping[str, Sequence[float]]) -> Dict[str, Dict[str, float]]:
    symbols = list(returns)
    deviations = {symbol: stdev(returns[symbol]) for symbol in symbols}
    matrix: Dict[str, Dict[str, float]] = {}
    for first in symbols:
        row: Dict[str, float] = {}
        for second in symbols:
            if first == second:
                row[second] = 1.0
                continue
            denominator = deviations[first] * deviations[second]
            if denominator <= 0:
                row[second] = 0.0
                continue
            row[second] = finite_or_zero(covariance(returns[first], returns[second]) / denominator)
        matrix[first] = row
    return matrix


def compute_risk_metrics(
    history: Mapping[str, PriceSeries],
    weights: Mapping[str, float],
    *,
    benchmark: str = "BTC",
    window_days: int = 90,
) -> RiskMetrics:
    """Derive volatility, ratios, drawdown, beta, VaR and correlations.

    Series are aligned to the shortest one before any cross-asset arithmetic.
    With fewer than two aligned prices the neutral metrics are returned.
    """

    aligned = align_histories(history)
    returns = asset_returns(aligned)
    combined = portfolio_returns(returns, weights)
    if not combined:
        logger.info(
            "Insufficient aligned history for risk metrics; returning neutral values",
            extra={"symbols": sorted(history), "aligned_points": len(next(iter(aligned.values()), []))},
        )
        return RiskMetrics.neutral(window_days)

    defaults: List[str] = []
    deviation = stdev(combined)
    average = mean(combined)
    volatility = deviation * math.sqrt(TRADING_DAYS)
    sharpe = average / max(deviation, _STDEV_FLOOR) * math.sqrt(TRADING_DAYS)

    benchmark_key = benchmark.upper()
    benchmark_returns = returns.get(benchmark_key)
    if benchmark_returns:
        beta = covariance(combined, benchmark_returns) / max(variance(benchmark_returns), _VARIANCE_FLOOR)
    else:
        beta = 1.0
        defaults.append("betaBTC")
        logger.info("Benchmark series missing; beta defaults to 1.0", extra={"benchmark": benchmark_key})

    var95, cvar95 = value_at_risk(combined)

    metrics = RiskMetrics(
        window_days=window_days,
        vol_pct=finite_or_zero(volatility * 100),
        sharpe=finite_or_zero(sharpe),
        sortino=finite_or_zero(sortino_ratio(combined)),
        max_dd_pct=finite_or_zero(max_drawdown(combined) * 100),
        beta_btc=finite_or_zero(beta),
        var95_pct=finite_or_zero(var95 * 100),
        cvar95_pct=finite_or_zero(cvar95 * 100),
        corr=correlation_matrix(returns),
        defaults=defaults,
    )
    logger.debug(
        "Computed risk metrics",
        extra={"observations": len(combined), "vol_pct": metrics.vol_pct, "sharpe": metrics.sharpe},
    )
    return metrics
