"""Tools wired into the default registry.

Every tool accepts the JSON-like input produced by template resolution and
returns a JSON-like payload, so tool outputs can be stored on the blackboard
and fed to downstream steps unchanged.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from services.market_data import MarketDataProvider

from ..analytics import (
    build_rebalance_plan,
    compute_health_scores,
    compute_risk_metrics,
    evaluate_alerts,
    scan_opportunities,
)
from ..analytics.alert_rules import weights_from_holdings
from ..config.models import DEFAULT_POLICY, RebalanceConstraints, RiskPolicy
from ..models import RiskMetrics, alerts_to_payload, coerce_history, coerce_prices, coerce_weights
from .tools import ExecutionContext, ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 90


def _input_mapping(tool: str, payload: Any) -> Mapping[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise TypeError(f"{tool} expects an object input, got {type(payload).__name__}")
    return payload


def _symbols(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    symbols: List[str] = []
    for item in value or []:
        symbol = str(item).strip().upper()
        if symbol and symbol not in symbols:
            symbols.append(symbol)
    return symbols


def _window_days(value: Any) -> int:
    try:
        window = int(value)
    except (TypeError, ValueError):
        return DEFAULT_WINDOW_DAYS
    return window if window > 0 else DEFAULT_WINDOW_DAYS


def coerce_amounts(payload: Any) -> Dict[str, float]:
    """Return ``symbol -> amount`` from a mapping or a ``[{symbol, amount}]`` list."""

    if isinstance(payload, Mapping):
        items = payload.items()
    elif isinstance(payload, list):
        items = [
            (entry.get("symbol"), entry.get("amount"))
            for entry in payload
            if isinstance(entry, Mapping)
        ]
    else:
        return {}
    amounts: Dict[str, float] = {}
    for symbol, amount in items:
        key = str(symbol or "").strip().upper()
        if not key:
            continue
        try:
            amounts[key] = amounts.get(key, 0.0) + float(amount or 0.0)
        except (TypeError, ValueError):
            continue
    return amounts


class HistoryTool:
    name = "history"

    def __init__(self, provider: MarketDataProvider) -> None:
        self.provider = provider

    async def run(self, input: Any, context: ExecutionContext) -> Dict[str, Any]:
        payload = _input_mapping(self.name, input)
        symbols = _symbols(payload.get("symbols"))
        window_days = _window_days(payload.get("windowDays"))
        history = await self.provider.history(symbols, window_days)
        context.metrics.inc("market_data_requests_total", labels={"kind": "history"}, amount=len(symbols))
        return {"data": {symbol: series.to_payload() for symbol, series in history.items()}}


class PricesTool:
    name = "prices"

    def __init__(self, provider: MarketDataProvider) -> None:
        self.provider = provider

    async def run(self, input: Any, context: ExecutionContext) -> Dict[str, Any]:
        payload = _input_mapping(self.name, input)
        symbols = _symbols(payload.get("symbols"))
        prices = await self.provider.prices(symbols)
        context.metrics.inc("market_data_requests_total", labels={"kind": "prices"}, amount=len(symbols))
        missing = sorted(symbol for symbol, price in prices.items() if price is None)
        if missing:
            logger.info("Prices unavailable", extra={"symbols": missing, "request_id": context.request_id})
        return {"data": dict(prices)}


class RiskMetricsTool:
    name = "risk_metrics"

    def __init__(self, *, benchmark: str = "BTC") -> None:
        self.benchmark = benchmark

    def run(self, input: Any, context: ExecutionContext) -> Dict[str, Any]:
        payload = _input_mapping(self.name, input)
        metrics = compute_risk_metrics(
            coerce_history(payload.get("history")),
            coerce_weights(payload.get("weights")),
            benchmark=str(payload.get("benchmark") or self.benchmark),
            window_days=_window_days(payload.get("windowDays")),
        )
        return metrics.to_payload()


class HealthScoresTool:
    name = "health_scores"

    def run(self, input: Any, context: ExecutionContext) -> Dict[str, Any]:
        payload = _input_mapping(self.name, input)
        try:
            pnl_pct = float(payload.get("pnlPct") or 0.0)
        except (TypeError, ValueError):
            pnl_pct = 0.0
        reference: Optional[str] = payload.get("referenceSymbol") or None
        scores = compute_health_scores(
            RiskMetrics.from_mapping(payload.get("risk")),
            coerce_weights(payload.get("weights")),
            pnl_pct=pnl_pct,
            history=coerce_history(payload.get("history")),
            reference_symbol=str(reference) if reference else None,
        )
        return scores.to_payload()


class AlertsTool:
    name = "alerts"

    def __init__(self, *, policy: RiskPolicy = DEFAULT_POLICY) -> None:
        self.policy = policy

    def run(self, input: Any, context: ExecutionContext) -> List[Dict[str, str]]:
        payload = _input_mapping(self.name, input)
        raw_policy = payload.get("policy")
        policy = RiskPolicy.from_mapping(raw_policy) if isinstance(raw_policy, Mapping) else self.policy
        holdings = payload.get("holdings")
        if isinstance(holdings, list):
            weights = weights_from_holdings(holdings)
        else:
            weights = coerce_weights(payload.get("weights"))
        alerts = evaluate_alerts(RiskMetrics.from_mapping(payload.get("risk")), weights, policy)
        return alerts_to_payload(alerts)


class RebalanceTool:
    name = "rebalance"

    def __init__(self, *, constraints: Optional[RebalanceConstraints] = None) -> None:
        self.constraints = constraints or RebalanceConstraints()

    def run(self, input: Any, context: ExecutionContext) -> Dict[str, Any]:
        payload = _input_mapping(self.name, input)
        raw_constraints = payload.get("constraints")
        constraints = (
            RebalanceConstraints.from_mapping(raw_constraints)
            if isinstance(raw_constraints, Mapping)
            else self.constraints
        )
        plan = build_rebalance_plan(
            coerce_amounts(payload.get("holdings")),
            coerce_prices(payload.get("prices")),
            coerce_history(payload.get("history")),
            constraints,
        )
        return plan.to_payload()


class OpportunityScannerTool:
    name = "opportunity_scanner"

    def run(self, input: Any, context: ExecutionContext) -> Dict[str, Any]:
        payload = _input_mapping(self.name, input)
        history = coerce_history(payload.get("history"))
        symbols = _symbols(payload.get("symbols")) or sorted(history)
        news = payload.get("news")
        raw_sentiment = payload.get("sentiment")
        if raw_sentiment is None and isinstance(news, Mapping):
            raw_sentiment = news.get("sentiment")
        opportunities = scan_opportunities(symbols, history, coerce_weights(raw_sentiment))
        return {"opportunities": [item.to_payload() for item in opportunities]}


def build_default_registry(
    market_data: MarketDataProvider,
    *,
    benchmark: str = "BTC",
    policy: RiskPolicy = DEFAULT_POLICY,
    constraints: Optional[RebalanceConstraints] = None,
) -> ToolRegistry:
    return ToolRegistry(
        [
            HistoryTool(market_data),
            PricesTool(market_data),
            RiskMetricsTool(benchmark=benchmark),
            HealthScoresTool(),
            AlertsTool(policy=policy),
            RebalanceTool(constraints=constraints),
            OpportunityScannerTool(),
        ]
    )
