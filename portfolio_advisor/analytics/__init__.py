"""Pure portfolio analytics.

Every function in this package is a side-effect free transform over price
histories, weights and policy thresholds. Degenerate inputs yield neutral
results rather than exceptions, and neutral values are listed in the result's
``defaults`` so callers can tell computed figures from substituted ones.
"""

from .alert_rules import evaluate_alerts
from .health import compute_health_scores, momentum_score
from .opportunities import scan_opportunities
from .rebalance import build_rebalance_plan, risk_parity_weights
from .returns import align_histories, portfolio_returns, simple_returns
from .risk_metrics import compute_risk_metrics

__all__ = [
    "align_histories",
    "build_rebalance_plan",
    "compute_health_scores",
    "compute_risk_metrics",
    "evaluate_alerts",
    "momentum_score",
    "portfolio_returns",
    "risk_parity_weights",
    "scan_opportunities",
    "simple_returns",
]
