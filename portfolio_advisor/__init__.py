"""Crypto portfolio analytics and advisory engine.

The package exposes pure analytics (risk metrics, health scores, alert rules,
risk-parity rebalancing), a plan runner that orchestrates them as tools over a
run-scoped blackboard, and the service/HTTP layers that wire market data into
those plans.
"""

from .models import (
    Alert,
    AlertCode,
    AlertLevel,
    HealthScores,
    PriceSeries,
    RebalanceAction,
    RebalancePlan,
    RiskMetrics,
)

__all__ = [
    "Alert",
    "AlertCode",
    "AlertLevel",
    "HealthScores",
    "PriceSeries",
    "RebalanceAction",
    "RebalancePlan",
    "RiskMetrics",
]

__version__ = "0.1.0"
