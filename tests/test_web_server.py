"""Tests for the advisor web server entry point."""

from __future__ import annotations

import json
import types
from pathlib import Path

import pytest

pytest.importorskip("fastapi")

from portfolio_advisor import web_server  # noqa: E402


def test_determine_uvicorn_logging_defaults_when_not_debugging() -> None:
    log_config, log_level = web_server._determine_uvicorn_logging(1)

    assert log_config is None
    assert log_level == "info"


def test_determine_uvicorn_logging_uses_uvicorn_config() -> None:
    uvicorn_config = pytest.importorskip("uvicorn.config")

    log_config, log_level = web_server._determine_uvicorn_logging(2)

    assert log_level == "debug"
    assert log_config["loggers"]["portfolio_advisor"]["level"] == "DEBUG"
    assert log_config["loggers"]["portfolio_advisor"]["handlers"]
    assert "portfolio_advisor" not in uvicorn_config.LOGGING_CONFIG.get("loggers", {})


def test_parser_defaults() -> None:
    args = web_server.build_parser().parse_args([])

    assert args.config is None
    assert args.host == "127.0.0.1"
    assert args.port == 8000
    assert args.debug is None


def test_parser_rejects_unknown_debug_level() -> None:
    with pytest.raises(SystemExit):
        web_server.build_parser().parse_args(["--debug", "5"])


def test_main_runs_uvicorn_with_configured_app(tmp_path: Path, monkeypatch) -> None:
    fixtures = tmp_path / "fixtures.json"
    fixtures.write_text(json.dumps({"prices": {"BTC": 30000}}), encoding="utf-8")
    config_path = tmp_path / "advisor.json"
    config_path.write_text(
        json.dumps({"market_data": {"static_fixtures": "fixtures.json"}, "execution_mode": "graph"}),
        encoding="utf-8",
    )
    for name in ("ADVISOR_CONFIG", "ADVISOR_EXECUTION_MODE", "ADVISOR_MARKET_DATA_FIXTURES"):
        monkeypatch.delenv(name, raising=False)

    calls = []
    fake_uvicorn = types.SimpleNamespace(run=lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setattr(web_server, "_import_uvicorn", lambda: fake_uvicorn)

    web_server.main(["--config", str(config_path), "--port", "9100", "--debug", "0"])

    assert len(calls) == 1
    app, kwargs = calls[0]
    assert kwargs == {"host": "127.0.0.1", "port": 9100, "log_level": "info"}
    assert app.state.config.execution_mode == "graph"
    assert app.title == "Portfolio Advisor"
