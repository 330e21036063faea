"""Risk-parity target weights and the trades that move a portfolio toward them."""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..config.models import RebalanceConstraints
from ..models import PriceSeries, RebalanceAction, RebalancePlan
from .returns import align_histories, round_half_up, simple_returns, variance

logger = logging.getLogger(__name__)

MIN_ASSETS = 3
DRIFT_THRESHOLD = 0.02
INSUFFICIENT_ASSETS_NOTE = "Insufficient assets for rebalancing (minimum 3 required)"
_VARIANCE_FLOOR = 1e-9


def equal_weights(symbols: Sequence[str]) -> Dict[str, float]:
    if not symbols:
        return {}
    share = 1 / len(symbols)
    return {symbol: share for symbol in symbols}


def risk_parity_weights(
    symbols: Sequence[str], history: Mapping[str, PriceSeries]
) -> Tuple[Dict[str, float], bool]:
    """Return ``(weights, defaulted)`` with ``weight_i`` proportional to ``1 / variance_i``.

    Falls back to equal weights (``defaulted=True``) when any symbol has fewer
    than two aligned return observations.
    """

    if not symbols:
        return {}, True
    aligned = align_histories(history)
    returns = {symbol: simple_returns(aligned.get(symbol, [])) for symbol in symbols}
    observations = min(len(series) for series in returns.values())
    if observations < 2:
        logger.info(
            "Insufficient aligned returns for risk parity; using equal weights",
            extra={"observations": observations, "symbols": list(symbols)},
        )
        return equal_weights(symbols), True

    inverse = {
        symbol: 1 / max(variance(series[:observations]), _VARIANCE_FLOOR) for symbol, series in returns.items()
    }
    total = sum(inverse.values())
    return {symbol: value / total for symbol, value in inverse.items()}, False


def _portfolio_value(holdings: Mapping[str, float], prices: Mapping[str, Optional[float]]) -> float:
    value = 0.0
    for symbol, amount in holdings.items():
        price = prices.get(symbol)
        if price:
            value += amount * price
    return value


def build_rebalance_plan(
    holdings: Mapping[str, float],
    prices: Mapping[str, Optional[float]],
    history: Mapping[str, PriceSeries],
    constraints: Optional[RebalanceConstraints] = None,
) -> RebalancePlan:
    """Compute risk-parity targets and the buy/sell actions to reach them.

    Fewer than three holdings yields an empty plan with an explanatory note.
    Symbols without a price are skipped and noted. When the summed trade value
    exceeds ``max_turnover_pct`` of the portfolio every action is scaled down.
    """

    constraints = constraints or RebalanceConstraints()
    symbols = list(holdings)
    if len(symbols) < MIN_ASSETS:
        return RebalancePlan(notes=[INSUFFICIENT_ASSETS_NOTE])

    targets, defaulted = risk_parity_weights(symbols, history)
    method = "equal_weight" if defaulted else "risk_parity"
    plan = RebalancePlan(
        target_weights=targets,
        method=method,
        defaults=["targetWeights"] if defaulted else [],
    )

    portfolio_value = _portfolio_value(holdings, prices)
    blacklist = set(constraints.blacklist)
    for symbol in symbols:
        price = prices.get(symbol)
        if not price:
            plan.notes.append(f"Ignored {symbol} - no price available")
            continue
        if portfolio_value <= 0:
            continue
        current = holdings[symbol] * price / portfolio_value
        diff = targets.get(symbol, 0.0) - current
        trade_value = abs(diff * portfolio_value)
        if abs(diff) <= DRIFT_THRESHOLD or trade_value <= constraints.min_trade_usd:
            continue
        side = "buy" if diff > 0 else "sell"
        if side == "buy" and symbol in blacklist:
            plan.notes.append(f"Skipped buy for blacklisted {symbol}")
            continue
        plan.actions.append(RebalanceAction(symbol=symbol, side=side, value_usd=round_half_up(trade_value)))

    if portfolio_value <= 0:
        plan.notes.append("Portfolio value unavailable - no actions generated")
    elif constraints.max_turnover_pct:
        turnover_pct = sum(action.value_usd for action in plan.actions) / portfolio_value * 100
        if turnover_pct > constraints.max_turnover_pct:
            scale = constraints.max_turnover_pct / turnover_pct
            for action in plan.actions:
                action.value_usd = round_half_up(action.value_usd * scale)
            plan.notes.append(f"Scaled by turnover cap ({constraints.max_turnover_pct:g}%)")

    plan.notes.append("Risk-parity optimized" if not defaulted else "Equal-weight fallback (insufficient history)")
    logger.info(
        "Built rebalance plan",
        extra={"method": method, "actions": len(plan.actions), "portfolio_value": round(portfolio_value, 2)},
    )
    return plan
