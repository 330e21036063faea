"""Tests for advisor configuration loading and environment overrides."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from portfolio_advisor.config.models import AdvisorConfig
from portfolio_advisor.configuration import Settings, load_advisor_config, validate_advisor_config


def _write_config(tmp_path: Path, payload) -> Path:
    config_path = tmp_path / "configs" / "advisor.json"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(payload), encoding="utf-8")
    return config_path


def test_load_advisor_config_defaults(tmp_path: Path) -> None:
    config = load_advisor_config(_write_config(tmp_path, {}))

    assert config.policy.max_weight == 0.35
    assert config.policy.min_stable_pct == 0.15
    assert config.window_days == 90
    assert config.benchmark == "BTC"
    assert config.execution_mode == "sequential"
    assert config.failure_policy == "abort"
    assert config.market_data.exchange == "binance"
    assert config.config_root == (tmp_path / "configs").resolve()


def test_partial_policy_keeps_remaining_defaults(tmp_path: Path) -> None:
    payload = {"policy": {"maxWeight": 0.5, "max_vol_pct": None}, "constraints": {"minTradeUSD": 250}}

    config = load_advisor_config(_write_config(tmp_path, payload))

    assert config.policy.max_weight == 0.5
    assert config.policy.max_vol_pct is None
    assert config.policy.min_stable_pct == 0.15
    assert config.constraints.min_trade_usd == 250


def test_relative_paths_resolve_against_config_file(tmp_path: Path) -> None:
    payload = {
        "plans": ["plans/custom.json", str(tmp_path / "abs.json")],
        "market_data": {"static_fixtures": "../fixtures/prices.json", "exchange": "OKX", "quote": "usdc"},
    }
    config_path = _write_config(tmp_path, payload)

    config = load_advisor_config(config_path)

    assert config.plan_paths == [
        (config_path.parent / "plans" / "custom.json").resolve(),
        (tmp_path / "abs.json").resolve(),
    ]
    assert config.market_data.static_fixtures == (tmp_path / "fixtures" / "prices.json").resolve()
    assert config.market_data.exchange == "okx"
    assert config.market_data.quote == "USDC"


def test_execution_settings_are_validated(tmp_path: Path) -> None:
    config = load_advisor_config(
        _write_config(tmp_path, {"execution_mode": "Graph", "failure_policy": "retry", "max_attempts": 3})
    )

    assert config.execution_mode == "graph"
    assert config.failure_policy == "retry"
    assert config.max_attempts == 3


@pytest.mark.parametrize(
    "payload, error, message",
    [
        ({"window_days": 1}, ValueError, "'window_days' must be at least 2"),
        ({"execution_mode": "parallel"}, ValueError, "'execution_mode' must be one of"),
        ({"failure_policy": "ignore"}, ValueError, "'failure_policy' must be one of"),
        ({"max_attempts": 0}, ValueError, "'max_attempts' must be at least 1"),
        ({"policy": ["maxWeight"]}, TypeError, "'policy' must be a JSON object"),
        ({"plans": "plan.json"}, TypeError, "'plans' must be an array"),
    ],
)
def test_invalid_values_are_rejected(tmp_path: Path, payload, error, message) -> None:
    with pytest.raises(error, match=message):
        load_advisor_config(_write_config(tmp_path, payload))


def test_load_advisor_config_requires_object_top_level(tmp_path: Path) -> None:
    with pytest.raises(TypeError, match="Advisor configuration must be a JSON object"):
        load_advisor_config(_write_config(tmp_path, []))


def test_load_advisor_config_reports_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "broken.json"
    config_path.write_text("{", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid JSON in configuration file"):
        load_advisor_config(config_path)
    with pytest.raises(FileNotFoundError, match="Configuration file not found"):
        load_advisor_config(tmp_path / "missing.json")


def test_settings_apply_environment_overrides() -> None:
    config = validate_advisor_config({"policy": {"maxWeight": 0.4}})
    env = {
        "ADVISOR_MAX_VOL_PCT": "80",
        "ADVISOR_MIN_TRADE_USD": "50",
        "ADVISOR_MAX_TURNOVER_PCT": "25",
        "ADVISOR_WINDOW_DAYS": "30",
        "ADVISOR_BENCHMARK": "eth",
        "ADVISOR_EXECUTION_MODE": "graph",
        "ADVISOR_FAILURE_POLICY": "skip",
        "ADVISOR_EXCHANGE": "Kraken",
        "ADVISOR_QUOTE": "usd",
        "ADVISOR_DEBUG": "2",
        "ADVISOR_KEY_COINGECKO": "cg-123",
        "ADVISOR_KEY_EMPTY": "",
    }

    settings = Settings.from_environment(config=config, env=env)

    assert settings.config.policy.max_weight == 0.4
    assert settings.config.policy.max_vol_pct == 80
    assert settings.config.constraints.min_trade_usd == 50
    assert settings.config.constraints.max_turnover_pct == 25
    assert settings.config.window_days == 30
    assert settings.config.benchmark == "ETH"
    assert settings.config.execution_mode == "graph"
    assert settings.config.failure_policy == "skip"
    assert settings.config.market_data.exchange == "kraken"
    assert settings.config.market_data.quote == "USD"
    assert settings.config.debug == 2
    assert settings.user_keys == {"COINGECKO": "cg-123"}
    assert "cg-123" not in repr(settings)

    assert config.policy.max_vol_pct == 60.0
    assert config.window_days == 90


def test_settings_ignore_unparsable_numbers() -> None:
    settings = Settings.from_environment(
        config=AdvisorConfig(), env={"ADVISOR_MAX_WEIGHT": "lots", "ADVISOR_WINDOW_DAYS": "1"}
    )

    assert settings.config.policy.max_weight == 0.35
    assert settings.config.window_days == 90


def test_settings_reject_unknown_execution_mode() -> None:
    with pytest.raises(ValueError, match="ADVISOR_EXECUTION_MODE"):
        Settings.from_environment(config=AdvisorConfig(), env={"ADVISOR_EXECUTION_MODE": "turbo"})


def test_settings_load_config_file_from_environment(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path, {"benchmark": "sol", "window_days": 45})

    settings = Settings.from_environment(env={"ADVISOR_CONFIG": str(config_path)})

    assert settings.config.benchmark == "SOL"
    assert settings.config.window_days == 45
