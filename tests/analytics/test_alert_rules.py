from __future__ import annotations

from portfolio_advisor.analytics.alert_rules import evaluate_alerts, weights_from_holdings
from portfolio_advisor.config.models import DEFAULT_POLICY, RiskPolicy
from portfolio_advisor.models import AlertCode, AlertLevel, RiskMetrics


def _risk(vol_pct: float | None = 20.0, max_dd_pct: float = -5.0) -> RiskMetrics:
    return RiskMetrics(
        window_days=90,
        vol_pct=vol_pct,
        sharpe=1.0,
        sortino=1.0,
        max_dd_pct=max_dd_pct,
        beta_btc=1.0,
        var95_pct=-2.0,
        cvar95_pct=-3.0,
    )


def test_single_concentration_alert_for_max_weight_policy() -> None:
    policy = RiskPolicy.from_mapping({"maxWeight": 0.35})

    alerts = evaluate_alerts(RiskMetrics.neutral(90), {"BTC": 0.40, "ETH": 0.35, "SOL": 0.25}, policy)

    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.code is AlertCode.HIGH_CONCENTRATION
    assert alert.level is AlertLevel.HIGH
    assert "BTC" in alert.message
    assert "40.0%" in alert.message
    assert alert.message == "BTC allocation 40.0% exceeds 35% threshold"


def test_weight_equal_to_limit_does_not_fire() -> None:
    policy = RiskPolicy.from_mapping({"maxWeight": 0.5})

    assert evaluate_alerts(_risk(), {"BTC": 0.5, "ETH": 0.5}, policy) == []


def test_default_policy_flags_missing_stablecoins() -> None:
    alerts = evaluate_alerts(_risk(), {"BTC": 0.3, "ETH": 0.3, "SOL": 0.3, "USDC": 0.1}, DEFAULT_POLICY)

    codes = [alert.code for alert in alerts]
    assert codes == [AlertCode.LOW_STABLE]
    assert alerts[0].level is AlertLevel.MEDIUM
    assert alerts[0].message == "Stablecoin 10.0% below 15% minimum"


def test_volatility_and_drawdown_rules() -> None:
    alerts = evaluate_alerts(
        _risk(vol_pct=75.0, max_dd_pct=-20.0),
        {"BTC": 0.3, "ETH": 0.3, "USDT": 0.4},
        DEFAULT_POLICY,
    )

    by_code = {alert.code: alert for alert in alerts}
    assert set(by_code) == {AlertCode.HIGH_VOL, AlertCode.HIGH_DRAWDOWN, AlertCode.HIGH_CONCENTRATION}
    assert by_code[AlertCode.HIGH_VOL].message == "Volatility 75.0% exceeds 60% limit"
    assert by_code[AlertCode.HIGH_DRAWDOWN].message == "Max drawdown -20.0% exceeds 12% limit"
    assert by_code[AlertCode.HIGH_DRAWDOWN].level is AlertLevel.HIGH


def test_volatility_rule_skipped_without_estimate() -> None:
    policy = RiskPolicy.from_mapping({"maxVolPct": 1})

    assert evaluate_alerts(RiskMetrics.neutral(90), {"BTC": 1.0}, policy) == []


def test_empty_weights_never_raise_concentration() -> None:
    policy = RiskPolicy.from_mapping({"maxWeight": 0.1})

    assert evaluate_alerts(_risk(), {}, policy) == []


def test_weights_from_holdings_normalises_usd_values() -> None:
    weights = weights_from_holdings(
        [
            {"symbol": "btc", "amount": 1, "value": 600},
            {"symbol": "ETH", "amount": 2, "value": 300},
            {"symbol": "USDT", "amount": 100, "value": 100},
        ]
    )

    assert weights == {"BTC": 0.6, "ETH": 0.3, "USDT": 0.1}


def test_weights_from_holdings_with_zero_total() -> None:
    assert weights_from_holdings([{"symbol": "BTC", "value": 0}]) == {"BTC": 0.0}
