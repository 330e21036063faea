from __future__ import annotations

import json
import math
from typing import Any, Dict

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient  # noqa: E402

from portfolio_advisor.config.models import AdvisorConfig  # noqa: E402
from portfolio_advisor.orchestration import PlanDefinitionError  # noqa: E402
from portfolio_advisor.service import AdvisorService  # noqa: E402
from portfolio_advisor.web import create_app  # noqa: E402
from services.market_data import StaticMarketData  # noqa: E402


def _prices(base: float, amplitude: float, phase: float) -> list[float]:
    return [base * (1 + amplitude * math.sin(index / 6 + phase)) for index in range(90)]


def _client() -> TestClient:
    market_data = StaticMarketData(
        history={
            "BTC": {"prices": _prices(30000, 0.05, 0.0)},
            "ETH": {"prices": _prices(2000, 0.08, 1.0)},
            "SOL": {"prices": _prices(100, 0.1, 2.0)},
        },
        prices={"BTC": 30000, "ETH": 2000, "SOL": 100},
    )
    config = AdvisorConfig()
    return TestClient(create_app(config, service=AdvisorService(config, market_data)))


HOLDINGS = [
    {"symbol": "BTC", "amount": 0.4},
    {"symbol": "ETH", "amount": 5.25},
    {"symbol": "SOL", "amount": 75},
]


def _sse_events(body: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


def test_health_endpoint_reports_provider_status() -> None:
    response = _client().get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "providers": {}}


def test_analyze_endpoint_returns_plan_outputs() -> None:
    response = _client().post("/api/analyze", json={"portfolio": {"holdings": HOLDINGS}, "pnlPct": 4})

    assert response.status_code == 200
    payload = response.json()
    assert set(payload["blackboard"]) == {"fetch_history", "compute_risk", "compute_health", "check_alerts"}
    assert 0 <= payload["blackboard"]["compute_health"]["health"] <= 100
    assert payload["events"][0]["status"] == "starting"
    assert payload["insights"]


@pytest.mark.parametrize(
    "body, message",
    [
        ({"portfolio": {}}, "Invalid portfolio data"),
        ({"holdings": [{"symbol": "BTC", "amount": "-1"}]}, "Invalid amount for BTC"),
        ({"holdings": []}, "No holdings provided"),
        ({"holdings": HOLDINGS, "pnlPct": "a lot"}, "pnlPct must be numeric"),
        ({"holdings": HOLDINGS, "policy": [1]}, "'policy' must be an object"),
    ],
)
def test_analyze_endpoint_validation_errors(body, message) -> None:
    response = _client().post("/api/analyze", json=body)

    assert response.status_code == 400
    assert message in response.json()["error"]


def test_invalid_json_payload_is_rejected() -> None:
    response = _client().post(
        "/api/analyze", content=b"{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON payload"}


def test_non_object_payload_is_rejected() -> None:
    response = _client().post("/api/analyze/rebalance", json=[1, 2, 3])

    assert response.status_code == 400
    assert response.json() == {"error": "Payload must be an object"}


def test_rebalance_endpoint() -> None:
    response = _client().post(
        "/api/analyze/rebalance",
        json={"holdings": HOLDINGS, "constraints": {"minTradeUSD": 10, "maxTurnoverPct": 50}},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["rebalance"]["method"] == "risk_parity"
    assert isinstance(payload["alerts"], list)
    assert payload["risk"]["volPct"] > 0
    assert [event["step"] for event in payload["events"] if event["status"] == "completed"] == [
        "fetch_prices",
        "fetch_history",
        "compute_risk",
        "generate_rebalance",
        "check_alerts",
    ]


def test_rebalance_endpoint_requires_holdings() -> None:
    response = _client().post("/api/analyze/rebalance", json={"constraints": {}})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid portfolio data"}


def test_rebalance_stream_emits_progress_then_complete() -> None:
    response = _client().post("/api/analyze/rebalance/stream", json={"portfolio": {"holdings": HOLDINGS}})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(response.text)
    assert events[0]["step"] == "start"
    assert events[0]["type"] == "progress"
    progress = events[1:-1]
    assert all(event["type"] == "progress" for event in progress)
    assert {event["status"] for event in progress} == {"starting", "completed"}
    assert events[-1]["type"] == "complete"
    assert events[-1]["data"]["rebalance"]["actions"] is not None


def test_rebalance_stream_reports_validation_errors() -> None:
    response = _client().post(
        "/api/analyze/rebalance/stream", json={"holdings": [{"symbol": "BTC", "amount": "abc"}]}
    )

    events = _sse_events(response.text)
    assert events[0]["step"] == "start"
    assert events[-1]["type"] == "error"
    assert events[-1]["step"] == "validation"
    assert "INVALID_QTY" in events[-1]["message"]


def test_metrics_endpoint_reports_plan_activity() -> None:
    client = _client()
    client.post("/api/analyze", json={"holdings": HOLDINGS})

    response = client.get("/metrics")

    assert response.status_code == 200
    payload = response.json()
    counter_names = {entry["name"] for entry in payload["counters"]}
    assert "plan_steps_total" in counter_names
    plan_latency = [entry for entry in payload["histograms"] if entry["name"] == "plan_latency_seconds"]
    assert plan_latency[0]["count"] == 1


def test_opportunities_stream_emits_ranked_results() -> None:
    market_data = StaticMarketData(
        history={
            "SOL": {"prices": [100 * 1.02**index for index in range(60)]},
            "BTC": {"prices": [30000.0] * 60},
        }
    )
    config = AdvisorConfig()
    client = TestClient(create_app(config, service=AdvisorService(config, market_data)))

    response = client.post("/api/opportunities", json={"symbols": ["BTC", "SOL"]})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(response.text)
    assert events[0]["message"] == "Scanning for opportunities..."
    assert events[-1]["type"] == "complete"
    assert events[-1]["message"] == "Opportunity scan complete"
    assert [item["symbol"] for item in events[-1]["data"]["opportunities"]] == ["SOL"]


def test_opportunities_stream_rejects_missing_symbols() -> None:
    response = _client().post("/api/opportunities", json={"symbols": []})

    events = _sse_events(response.text)
    assert events[-1]["type"] == "error"
    assert events[-1]["step"] == "validation"
    assert events[-1]["message"] == "Symbols array is required"


class BrokenPlanService(AdvisorService):
    async def analyze(self, holdings: Any, **kwargs: Any) -> Dict[str, Any]:
        raise PlanDefinitionError("Plan 'analyze' contains a cycle")

    async def rebalance(self, holdings: Any, **kwargs: Any) -> Dict[str, Any]:
        raise PlanDefinitionError("Plan 'rebalance' contains a cycle")


def _broken_client() -> TestClient:
    config = AdvisorConfig()
    return TestClient(create_app(config, service=BrokenPlanService(config, StaticMarketData())))


@pytest.mark.parametrize(
    "path, message",
    [
        ("/api/analyze", "Plan 'analyze' contains a cycle"),
        ("/api/analyze/rebalance", "Plan 'rebalance' contains a cycle"),
    ],
)
def test_plan_definition_errors_are_server_errors(path, message) -> None:
    response = _broken_client().post(path, json={"holdings": HOLDINGS})

    assert response.status_code == 500
    assert response.json() == {"error": message}


def test_stream_labels_plan_definition_errors_as_plan_failures() -> None:
    response = _broken_client().post("/api/analyze/rebalance/stream", json={"holdings": HOLDINGS})

    events = _sse_events(response.text)
    assert events[-1]["type"] == "error"
    assert events[-1]["step"] == "plan"
