from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from services.telemetry import ResiliencePolicy


def _optional_float(payload: Mapping[str, Any], key: str, fallback: Optional[float]) -> Optional[float]:
    if key not in payload:
        return fallback
    value = payload.get(key)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return fallback


def _symbols(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple, set)):
        return []
    return [str(item).upper() for item in value if str(item).strip()]


@dataclass()
class RiskPolicy:
    """Thresholds consulted by the alert rules.

    A threshold set to ``None`` disables the corresponding rule.
    """

    max_weight: Optional[float] = 0.35
    min_stable_pct: Optional[float] = 0.15
    max_vol_pct: Optional[float] = 60.0
    max_drawdown_day_pct: Optional[float] = 12.0
    blacklist: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, payload: Any, *, base: Optional["RiskPolicy"] = None) -> "RiskPolicy":
        """Build a policy from camelCase or snake_case keys.

        Keys missing from ``payload`` take their value from ``base``; without a
        base they are left unset, which disables the rule.
        """

        if isinstance(payload, RiskPolicy):
            return payload
        payload = payload if isinstance(payload, Mapping) else {}
        fallback = base or cls(None, None, None, None)
        normalised = {_snake(key): value for key, value in payload.items()}
        return cls(
            max_weight=_optional_float(normalised, "max_weight", fallback.max_weight),
            min_stable_pct=_optional_float(normalised, "min_stable_pct", fallback.min_stable_pct),
            max_vol_pct=_optional_float(normalised, "max_vol_pct", fallback.max_vol_pct),
            max_drawdown_day_pct=_optional_float(
                normalised, "max_drawdown_day_pct", fallback.max_drawdown_day_pct
            ),
            blacklist=_symbols(normalised["blacklist"]) if "blacklist" in normalised else list(fallback.blacklist),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "maxWeight": self.max_weight,
            "minStablePct": self.min_stable_pct,
            "maxVolPct": self.max_vol_pct,
            "maxDrawdownDayPct": self.max_drawdown_day_pct,
            "blacklist": list(self.blacklist),
        }


DEFAULT_POLICY = RiskPolicy()


@dataclass()
class RebalanceConstraints:
    min_trade_usd: float = 100.0
    max_turnover_pct: Optional[float] = None
    blacklist: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, payload: Any) -> "RebalanceConstraints":
        if isinstance(payload, RebalanceConstraints):
            return payload
        payload = payload if isinstance(payload, Mapping) else {}
        normalised = {_snake(key): value for key, value in payload.items()}
        min_trade = _optional_float(normalised, "min_trade_usd", 100.0)
        max_turnover = _optional_float(normalised, "max_turnover_pct", None)
        return cls(
            min_trade_usd=100.0 if min_trade is None else min_trade,
            max_turnover_pct=max_turnover if max_turnover and max_turnover > 0 else None,
            blacklist=_symbols(normalised.get("blacklist")),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "minTradeUSD": self.min_trade_usd,
            "maxTurnoverPct": self.max_turnover_pct,
            "blacklist": list(self.blacklist),
        }


@dataclass()
class MarketDataSettings:
    """Settings for the exchange-backed history and price provider."""

    exchange: str = "binance"
    quote: str = "USDT"
    cache_ttl_seconds: float = 60.0
    history_ttl_seconds: float = 3600.0
    static_fixtures: Optional[Path] = None


@dataclass()
class AdvisorConfig:
    """Top level advisor configuration."""

    policy: RiskPolicy = field(default_factory=RiskPolicy)
    constraints: RebalanceConstraints = field(default_factory=RebalanceConstraints)
    window_days: int = 90
    benchmark: str = "BTC"
    execution_mode: str = "sequential"
    failure_policy: str = "abort"
    max_attempts: int = 1
    market_data: MarketDataSettings = field(default_factory=MarketDataSettings)
    resilience: ResiliencePolicy = field(default_factory=ResiliencePolicy)
    plan_paths: List[Path] = field(default_factory=list)
    debug: int = 1
    config_root: Optional[Path] = None
    config_path: Optional[Path] = None

    def with_policy(self, policy: RiskPolicy) -> "AdvisorConfig":
        return replace(self, policy=policy)


def _snake(key: Any) -> str:
    text = str(key)
    out: List[str] = []
    for index, char in enumerate(text):
        if char.isupper() and index and (text[index - 1].islower() or text[index - 1].isdigit()):
            out.append("_")
        out.append(char.lower())
    return "".join(out)


__all__ = [
    "DEFAULT_POLICY",
    "AdvisorConfig",
    "MarketDataSettings",
    "RebalanceConstraints",
    "RiskPolicy",
]
