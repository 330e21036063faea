"""Configuration dataclasses for the portfolio advisor."""

from .models import (
    DEFAULT_POLICY,
    AdvisorConfig,
    MarketDataSettings,
    RebalanceConstraints,
    RiskPolicy,
)

__all__ = [
    "DEFAULT_POLICY",
    "AdvisorConfig",
    "MarketDataSettings",
    "RebalanceConstraints",
    "RiskPolicy",
]
