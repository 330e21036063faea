"""Blend risk, P&L, concentration and momentum into 0-100 scores."""

from __future__ import annotations

import logging
from typing import List, Mapping, Optional, Sequence, Tuple

from ..models import HealthScores, PriceSeries, RiskMetrics
from .returns import round_half_up

logger = logging.getLogger(__name__)

NEUTRAL_MOMENTUM = 50
_MOMENTUM_LONG = 12
_MOMENTUM_SHORT = 2


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def health_score(risk: RiskMetrics, pnl_pct: float) -> int:
    vol_pct = risk.vol_pct if risk.vol_pct is not None else 0.0
    sharpe_score = _clamp(risk.sharpe / 2 * 100)
    pnl_score = _clamp(50 + pnl_pct)
    drawdown_score = _clamp(100 + risk.max_dd_pct)
    vol_score = _clamp(100 - vol_pct)
    blended = 0.4 * sharpe_score + 0.25 * pnl_score + 0.2 * drawdown_score + 0.15 * vol_score
    return int(_clamp(round_half_up(blended)))


def herfindahl_index(weights: Mapping[str, float]) -> float:
    return sum(weight * weight for weight in weights.values())


def diversification_score(weights: Mapping[str, float]) -> int:
    return int(_clamp(round_half_up((1 - herfindahl_index(weights)) * 100)))


def momentum_score(prices: Sequence[float]) -> Tuple[int, bool]:
    """Return ``(score, defaulted)`` for the 12-point/2-point momentum heuristic."""

    if len(prices) < _MOMENTUM_LONG:
        return NEUTRAL_MOMENTUM, True
    now = prices[-1]
    long_ref = prices[-_MOMENTUM_LONG]
    short_ref = prices[-_MOMENTUM_SHORT]
    if long_ref == 0 or short_ref == 0:
        return NEUTRAL_MOMENTUM, True
    momentum = now / long_ref - now / short_ref
    return int(_clamp(round_half_up(50 + 400 * momentum))), False


def compute_health_scores(
    risk: RiskMetrics,
    weights: Mapping[str, float],
    *,
    pnl_pct: float = 0.0,
    history: Optional[Mapping[str, PriceSeries]] = None,
    reference_symbol: Optional[str] = None,
) -> HealthScores:
    defaults: List[str] = []
    reference = None
    if history:
        reference = reference_symbol.upper() if reference_symbol else next(iter(history))
    series = history.get(reference) if history and reference else None

    if series is None:
        momentum, defaulted = NEUTRAL_MOMENTUM, True
    else:
        momentum, defaulted = momentum_score(series.prices)
    if defaulted:
        defaults.append("momentum")
        logger.info(
            "Momentum defaulted to neutral score",
            extra={"reference_symbol": reference, "points": len(series) if series is not None else 0},
        )

    return HealthScores(
        health=health_score(risk, pnl_pct),
        diversification=diversification_score(weights),
        momentum=momentum,
        defaults=defaults,
    )
