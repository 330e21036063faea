"""Plain-language insights derived from plan results.

Summaries are additive: a failing summarizer never blocks the numeric
results it would have described.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Protocol

from .models import RiskMetrics

logger = logging.getLogger(__name__)

FALLBACK_INSIGHTS = (
    "Portfolio analysis completed using quantitative metrics",
    "Review the risk metrics and alerts for detailed insights",
)


class NarrativeSummarizer(Protocol):
    def summarize(self, blackboard: Mapping[str, Any]) -> List[str]:
        ...


class RuleBasedSummarizer:
    """Derive insights from the risk, health, alert and rebalance step outputs."""

    def __init__(
        self,
        *,
        risk_key: str = "compute_risk",
        health_key: str = "compute_health",
        alerts_key: str = "check_alerts",
        rebalance_key: str = "generate_rebalance",
    ) -> None:
        self.risk_key = risk_key
        self.health_key = health_key
        self.alerts_key = alerts_key
        self.rebalance_key = rebalance_key

    def summarize(self, blackboard: Mapping[str, Any]) -> List[str]:
        insights: List[str] = []
        insights.extend(self._risk(blackboard.get(self.risk_key)))
        insights.extend(self._health(blackboard.get(self.health_key)))
        insights.extend(self._alerts(blackboard.get(self.alerts_key)))
        insights.extend(self._rebalance(blackboard.get(self.rebalance_key)))
        return insights or list(FALLBACK_INSIGHTS)

    def _risk(self, payload: Any) -> List[str]:
        if not isinstance(payload, Mapping):
            return []
        risk = RiskMetrics.from_mapping(payload)
        if risk.vol_pct is None:
            return ["Not enough aligned price history to estimate risk; metrics show neutral defaults"]
        lines = [
            f"Annualised volatility is {risk.vol_pct:.1f}% with a Sharpe ratio of {risk.sharpe:.2f}",
            f"Worst drawdown over the window was {risk.max_dd_pct:.1f}%; "
            f"95% one-day VaR is {risk.var95_pct:.1f}%",
        ]
        if "betaBTC" not in risk.defaults:
            if risk.beta_btc > 1.2:
                lines.append(f"The portfolio amplifies BTC moves (beta {risk.beta_btc:.2f})")
            elif risk.beta_btc < 0.8:
                lines.append(f"The portfolio is less sensitive than BTC (beta {risk.beta_btc:.2f})")
        return lines

    def _health(self, payload: Any) -> List[str]:
        if not isinstance(payload, Mapping):
            return []
        lines: List[str] = []
        diversification = payload.get("diversification")
        if isinstance(diversification, (int, float)) and diversification < 50:
            lines.append(f"Diversification score is low ({int(diversification)}/100); consider spreading exposure")
        health = payload.get("health")
        if isinstance(health, (int, float)):
            lines.append(f"Overall health score is {int(health)}/100")
        return lines

    def _alerts(self, payload: Any) -> List[str]:
        if not isinstance(payload, list):
            return []
        high = [alert for alert in payload if isinstance(alert, Mapping) and alert.get("level") == "high"]
        if high:
            return [f"{len(high)} high-severity alert(s): " + "; ".join(str(alert.get("message")) for alert in high)]
        if payload:
            return [f"{len(payload)} medium-severity alert(s) to review"]
        return ["No policy thresholds are breached"]

    def _rebalance(self, payload: Any) -> List[str]:
        if not isinstance(payload, Mapping):
            return []
        actions = payload.get("actions") or []
        if not actions:
            return ["No rebalancing trades are required"]
        turnover = sum(float(action.get("valueUSD") or 0) for action in actions if isinstance(action, Mapping))
        return [f"{len(actions)} trade(s) totalling ${turnover:,.0f} move the portfolio to its risk-parity targets"]


def summarize_safely(summarizer: NarrativeSummarizer, blackboard: Mapping[str, Any]) -> List[str]:
    try:
        insights = summarizer.summarize(blackboard)
    except Exception:
        logger.exception("Narrative summarizer failed", extra={"summarizer": type(summarizer).__name__})
        return []
    return [str(line) for line in insights or []]
