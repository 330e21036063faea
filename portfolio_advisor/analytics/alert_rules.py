"""Threshold alert rules evaluated against risk metrics and allocations."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..config.models import RiskPolicy
from ..models import Alert, AlertCode, AlertLevel, RiskMetrics

logger = logging.getLogger(__name__)

STABLECOIN_SYMBOLS = ("USDT", "USDC", "DAI")

AlertRule = Callable[[RiskMetrics, Mapping[str, float], RiskPolicy], Optional[Alert]]


def weights_from_holdings(holdings: Iterable[Mapping[str, Any]]) -> Dict[str, float]:
    """Normalise ``[{symbol, value}]`` USD holdings into weights."""

    values: Dict[str, float] = {}
    for holding in holdings or []:
        if not isinstance(holding, Mapping):
            continue
        symbol = str(holding.get("symbol") or "").upper()
        if not symbol:
            continue
        try:
            value = float(holding.get("value") or 0.0)
        except (TypeError, ValueError):
            continue
        values[symbol] = values.get(symbol, 0.0) + max(value, 0.0)
    total = sum(values.values())
    if total <= 0:
        return {symbol: 0.0 for symbol in values}
    return {symbol: value / total for symbol, value in values.items()}


def _concentration(risk: RiskMetrics, weights: Mapping[str, float], policy: RiskPolicy) -> Optional[Alert]:
    if policy.max_weight is None or not weights:
        return None
    symbol, largest = max(weights.items(), key=lambda item: item[1])
    if largest <= policy.max_weight:
        return None
    return Alert(
        AlertLevel.HIGH,
        AlertCode.HIGH_CONCENTRATION,
        f"{symbol} allocation {largest * 100:.1f}% exceeds {policy.max_weight * 100:.0f}% threshold",
    )


def _stable_floor(risk: RiskMetrics, weights: Mapping[str, float], policy: RiskPolicy) -> Optional[Alert]:
    if policy.min_stable_pct is None:
        return None
    stable = sum(weights.get(symbol, 0.0) for symbol in STABLECOIN_SYMBOLS)
    if stable >= policy.min_stable_pct:
        return None
    return Alert(
        AlertLevel.MEDIUM,
        AlertCode.LOW_STABLE,
        f"Stablecoin {stable * 100:.1f}% below {policy.min_stable_pct * 100:.0f}% minimum",
    )


def _volatility(risk: RiskMetrics, weights: Mapping[str, float], policy: RiskPolicy) -> Optional[Alert]:
    if policy.max_vol_pct is None or risk.vol_pct is None:
        return None
    if risk.vol_pct <= policy.max_vol_pct:
        return None
    return Alert(
        AlertLevel.MEDIUM,
        AlertCode.HIGH_VOL,
        f"Volatility {risk.vol_pct:.1f}% exceeds {policy.max_vol_pct:g}% limit",
    )


def _drawdown(risk: RiskMetrics, weights: Mapping[str, float], policy: RiskPolicy) -> Optional[Alert]:
    if policy.max_drawdown_day_pct is None:
        return None
    if abs(risk.max_dd_pct) <= policy.max_drawdown_day_pct:
        return None
    return Alert(
        AlertLevel.HIGH,
        AlertCode.HIGH_DRAWDOWN,
        f"Max drawdown {risk.max_dd_pct:.1f}% exceeds {policy.max_drawdown_day_pct:g}% limit",
    )


RULES: tuple[AlertRule, ...] = (_concentration, _stable_floor, _volatility, _drawdown)


def evaluate_alerts(
    risk: RiskMetrics,
    weights: Mapping[str, float],
    policy: RiskPolicy,
) -> List[Alert]:
    """Evaluate every rule independently; any subset may fire."""

    alerts: List[Alert] = []
    for rule in RULES:
        alert = rule(risk, weights, policy)
        if alert is not None:
            alerts.append(alert)
    for alert in alerts:
        log_level = logging.WARNING if alert.level is AlertLevel.HIGH else logging.INFO
        logger.log(log_level, "Alert rule fired", extra={"code": alert.code.value, "detail": alert.message})
    return alerts
