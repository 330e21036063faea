from __future__ import annotations

import asyncio
import math

import pytest

from portfolio_advisor.config.models import RebalanceConstraints, RiskPolicy
from portfolio_advisor.orchestration import ExecutionContext, ToolNotFoundError, ToolRegistry, build_default_registry
from portfolio_advisor.orchestration.builtin_tools import (
    AlertsTool,
    HealthScoresTool,
    HistoryTool,
    OpportunityScannerTool,
    PricesTool,
    RebalanceTool,
    RiskMetricsTool,
    coerce_amounts,
)
from services.market_data import StaticMarketData


def _prices(base: float, amplitude: float, length: int = 90) -> list[float]:
    return [base * (1 + amplitude * math.sin(index / 4)) for index in range(length)]


@pytest.fixture
def market_data() -> StaticMarketData:
    return StaticMarketData(
        history={
            "BTC": {"prices": _prices(30000, 0.05)},
            "ETH": {"prices": _prices(2000, 0.08)},
            "SOL": {"prices": _prices(100, 0.12)},
        },
        prices={"BTC": 30000, "ETH": 2000, "SOL": 100},
    )


def test_default_registry_lists_every_tool(market_data) -> None:
    registry = build_default_registry(market_data)

    assert registry.names() == [
        "alerts",
        "health_scores",
        "history",
        "opportunity_scanner",
        "prices",
        "rebalance",
        "risk_metrics",
    ]
    assert "history" in registry
    assert len(registry) == 7


def test_registry_rejects_duplicates_and_unknown_names() -> None:
    registry = ToolRegistry([HealthScoresTool()])

    with pytest.raises(ValueError, match="already registered"):
        registry.register(HealthScoresTool())
    with pytest.raises(ToolNotFoundError) as excinfo:
        registry.get("nope")
    assert excinfo.value.tool == "nope"

    registry.register(HealthScoresTool(), name="health_v2")
    assert registry.names() == ["health_scores", "health_v2"]


def test_history_tool_returns_enveloped_series(market_data) -> None:
    context = ExecutionContext()

    payload = asyncio.run(HistoryTool(market_data).run({"symbols": ["btc", "BTC", "eth"], "windowDays": 30}, context))

    assert set(payload["data"]) == {"BTC", "ETH"}
    assert len(payload["data"]["BTC"]["prices"]) == 30
    assert context.metrics.counter("market_data_requests_total", labels={"kind": "history"}) == 2


def test_history_tool_defaults_window(market_data) -> None:
    payload = asyncio.run(HistoryTool(market_data).run({"symbols": ["SOL"], "windowDays": None}, ExecutionContext()))

    assert len(payload["data"]["SOL"]["prices"]) == 90


def test_prices_tool_maps_unknown_symbols_to_none(market_data) -> None:
    payload = asyncio.run(PricesTool(market_data).run({"symbols": ["BTC", "DOGE"]}, ExecutionContext()))

    assert payload == {"data": {"BTC": 30000.0, "DOGE": None}}


def test_tools_reject_non_object_input() -> None:
    with pytest.raises(TypeError, match="risk_metrics expects an object"):
        RiskMetricsTool().run(["not", "a", "mapping"], ExecutionContext())


def test_risk_and_health_tools_chain(market_data) -> None:
    context = ExecutionContext()
    history = asyncio.run(HistoryTool(market_data).run({"symbols": ["BTC", "ETH", "SOL"]}, context))
    weights = {"BTC": 0.5, "ETH": 0.3, "SOL": 0.2}

    risk = RiskMetricsTool().run({"history": history, "weights": weights}, context)
    health = HealthScoresTool().run(
        {"risk": risk, "weights": weights, "history": history, "pnlPct": None}, context
    )

    assert risk["volPct"] > 0
    assert risk["defaults"] == []
    assert set(risk["corr"]) == {"BTC", "ETH", "SOL"}
    assert 0 <= health["health"] <= 100
    assert health["diversification"] == 62


def test_alerts_tool_accepts_partial_policy_and_holdings() -> None:
    tool = AlertsTool(policy=RiskPolicy())
    holdings = [
        {"symbol": "BTC", "amount": 1, "value": 40},
        {"symbol": "ETH", "amount": 1, "value": 35},
        {"symbol": "SOL", "amount": 1, "value": 25},
    ]

    alerts = tool.run({"risk": None, "policy": {"maxWeight": 0.35}, "holdings": holdings}, ExecutionContext())

    assert alerts == [
        {"level": "high", "code": "HIGH_CONCENTRATION", "message": "BTC allocation 40.0% exceeds 35% threshold"}
    ]


def test_alerts_tool_falls_back_to_configured_policy() -> None:
    tool = AlertsTool(policy=RiskPolicy(max_weight=None, min_stable_pct=0.5, max_vol_pct=None, max_drawdown_day_pct=None))

    alerts = tool.run({"weights": {"BTC": 1.0}}, ExecutionContext())

    assert [alert["code"] for alert in alerts] == ["LOW_STABLE"]


def test_rebalance_tool_reads_amount_lists_and_envelopes() -> None:
    tool = RebalanceTool(constraints=RebalanceConstraints(min_trade_usd=0))
    payload = {
        "holdings": [
            {"symbol": "AAA", "amount": 10},
            {"symbol": "BBB", "amount": 10},
            {"symbol": "CCC", "amount": 40},
        ],
        "prices": {"data": {"AAA": 100, "BBB": 100, "CCC": 100}},
        "history": {"data": {}},
        "constraints": None,
    }

    plan = tool.run(payload, ExecutionContext())

    assert plan["method"] == "equal_weight"
    assert plan["actions"] == [
        {"symbol": "AAA", "side": "buy", "valueUSD": 1000},
        {"symbol": "BBB", "side": "buy", "valueUSD": 1000},
        {"symbol": "CCC", "side": "sell", "valueUSD": 2000},
    ]


def test_rebalance_tool_uses_request_constraints() -> None:
    payload = {
        "holdings": {"AAA": 10, "BBB": 10, "CCC": 40},
        "prices": {"AAA": 100, "BBB": 100, "CCC": 100},
        "constraints": {"maxTurnoverPct": 30},
    }

    plan = RebalanceTool().run(payload, ExecutionContext())

    assert [action["valueUSD"] for action in plan["actions"]] == [450, 450, 900]


def test_coerce_amounts_sums_repeated_symbols() -> None:
    amounts = coerce_amounts([{"symbol": "btc", "amount": 1}, {"symbol": "BTC", "amount": "0.5"}, {"amount": 3}])

    assert amounts == {"BTC": 1.5}


def test_opportunity_scanner_reads_history_envelope_and_news_sentiment() -> None:
    tool = OpportunityScannerTool()
    history = {
        "data": {
            "ETH": {"prices": [100 + 0.1 * index for index in range(60)]},
            "SOL": {"prices": [100 * 1.02**index for index in range(60)]},
        }
    }

    result = tool.run({"history": history, "news": {"sentiment": {"eth": 0.85}}}, ExecutionContext())

    assert [item["symbol"] for item in result["opportunities"]] == ["SOL", "ETH"]
    assert result["opportunities"][1]["reasons"] == ["MA crossover signal", "Positive sentiment spike"]


def test_opportunity_scanner_without_hits_returns_empty_list() -> None:
    tool = OpportunityScannerTool()

    result = tool.run({"symbols": ["BTC"], "history": {"BTC": {"prices": [1.0] * 60}}}, ExecutionContext())

    assert result == {"opportunities": []}
