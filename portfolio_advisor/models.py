"""Domain payloads exchanged between tools and returned to callers."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence


def _coerce_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def _coerce_timestamp(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _round(value: Optional[float], digits: int = 2) -> Optional[float]:
    if value is None:
        return None
    if not math.isfinite(value):
        return 0.0
    return round(value, digits)


class AlertLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"


class AlertCode(str, Enum):
    HIGH_CONCENTRATION = "HIGH_CONCENTRATION"
    LOW_STABLE = "LOW_STABLE"
    HIGH_VOL = "HIGH_VOL"
    HIGH_DRAWDOWN = "HIGH_DRAWDOWN"


@dataclass
class PriceSeries:
    """Daily closes for one symbol, oldest first."""

    timestamps: List[int] = field(default_factory=list)
    prices: List[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.prices)

    def tail(self, length: int) -> "PriceSeries":
        if length <= 0:
            return PriceSeries()
        return PriceSeries(timestamps=self.timestamps[-length:], prices=self.prices[-length:])

    def to_payload(self) -> Dict[str, Any]:
        return {"timestamps": list(self.timestamps), "prices": list(self.prices)}

    @classmethod
    def from_mapping(cls, payload: Any) -> "PriceSeries":
        if isinstance(payload, PriceSeries):
            return payload
        if not isinstance(payload, Mapping):
            return cls()
        raw_prices = payload.get("prices")
        if raw_prices is None:
            raw_prices = payload.get("p")
        raw_timestamps = payload.get("timestamps")
        if raw_timestamps is None:
            raw_timestamps = payload.get("t")
        raw_prices = list(raw_prices or [])
        raw_timestamps = list(raw_timestamps or [])
        paired = len(raw_timestamps) == len(raw_prices)
        prices: List[float] = []
        timestamps: List[int] = []
        for index, value in enumerate(raw_prices):
            price = _coerce_float(value)
            # Missing, non-finite and non-positive closes are dropped, not zeroed.
            if price is None or price <= 0:
                continue
            prices.append(price)
            if paired:
                timestamps.append(_coerce_timestamp(raw_timestamps[index]))
        if not paired:
            timestamps = [_coerce_timestamp(value) for value in raw_timestamps]
        return cls(timestamps=timestamps, prices=prices)


def coerce_history(payload: Any) -> Dict[str, PriceSeries]:
    """Return ``symbol -> PriceSeries`` from a history tool payload.

    Accepts the bare mapping as well as the ``{"data": {...}}`` envelope
    produced by the history tool.
    """

    if not isinstance(payload, Mapping):
        return {}
    data = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload
    history: Dict[str, PriceSeries] = {}
    for symbol, series in data.items():
        if not isinstance(series, (Mapping, PriceSeries)):
            continue
        history[str(symbol).upper()] = PriceSeries.from_mapping(series)
    return history


def coerce_weights(payload: Any) -> Dict[str, float]:
    if not isinstance(payload, Mapping):
        return {}
    weights: Dict[str, float] = {}
    for symbol, value in payload.items():
        weight = _coerce_float(value)
        if weight is None:
            continue
        weights[str(symbol).upper()] = weight
    return weights


def coerce_prices(payload: Any) -> Dict[str, Optional[float]]:
    """Return ``symbol -> price`` from a prices tool payload (envelope aware)."""

    if not isinstance(payload, Mapping):
        return {}
    data = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload
    return {str(symbol).upper(): _coerce_float(value) for symbol, value in data.items()}


@dataclass
class RiskMetrics:
    window_days: int
    vol_pct: Optional[float]
    sharpe: float
    sortino: float
    max_dd_pct: float
    beta_btc: float
    var95_pct: float
    cvar95_pct: float
    corr: Dict[str, Dict[str, float]] = field(default_factory=dict)
    defaults: List[str] = field(default_factory=list)

    @classmethod
    def neutral(cls, window_days: int) -> "RiskMetrics":
        return cls(
            window_days=window_days,
            vol_pct=None,
            sharpe=0.0,
            sortino=0.0,
            max_dd_pct=0.0,
            beta_btc=1.0,
            var95_pct=0.0,
            cvar95_pct=0.0,
            corr={},
            defaults=["volPct", "sharpe", "sortino", "maxDDPct", "betaBTC", "var95Pct", "cvar95Pct", "corr"],
        )

    @property
    def is_defaulted(self) -> bool:
        return bool(self.defaults)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "windowDays": self.window_days,
            "volPct": _round(self.vol_pct),
            "sharpe": _round(self.sharpe),
            "sortino": _round(self.sortino),
            "maxDDPct": _round(self.max_dd_pct),
            "betaBTC": _round(self.beta_btc),
            "var95Pct": _round(self.var95_pct),
            "cvar95Pct": _round(self.cvar95_pct),
            "corr": {symbol: dict(row) for symbol, row in self.corr.items()},
            "defaults": list(self.defaults),
        }

    @classmethod
    def from_mapping(cls, payload: Any) -> "RiskMetrics":
        if isinstance(payload, RiskMetrics):
            return payload
        if not isinstance(payload, Mapping):
            return cls.neutral(90)
        corr_raw = payload.get("corr")
        corr: Dict[str, Dict[str, float]] = {}
        if isinstance(corr_raw, Mapping):
            for symbol, row in corr_raw.items():
                if isinstance(row, Mapping):
                    corr[str(symbol)] = {str(k): _coerce_float(v) or 0.0 for k, v in row.items()}
        beta = _coerce_float(payload.get("betaBTC"))
        window = payload.get("windowDays")
        return cls(
            window_days=int(window) if isinstance(window, (int, float)) else 90,
            vol_pct=_coerce_float(payload.get("volPct")),
            sharpe=_coerce_float(payload.get("sharpe")) or 0.0,
            sortino=_coerce_float(payload.get("sortino")) or 0.0,
            max_dd_pct=_coerce_float(payload.get("maxDDPct")) or 0.0,
            beta_btc=1.0 if beta is None else beta,
            var95_pct=_coerce_float(payload.get("var95Pct")) or 0.0,
            cvar95_pct=_coerce_float(payload.get("cvar95Pct")) or 0.0,
            corr=corr,
            defaults=[str(item) for item in payload.get("defaults") or []],
        )


@dataclass
class HealthScores:
    health: int
    diversification: int
    momentum: int
    defaults: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "health": self.health,
            "diversification": self.diversification,
            "momentum": self.momentum,
            "defaults": list(self.defaults),
        }


@dataclass(frozen=True)
class Alert:
    level: AlertLevel
    code: AlertCode
    message: str

    def to_payload(self) -> Dict[str, str]:
        return {"level": self.level.value, "code": self.code.value, "message": self.message}


@dataclass
class RebalanceAction:
    symbol: str
    side: str
    value_usd: float

    def to_payload(self) -> Dict[str, Any]:
        return {"symbol": self.symbol, "side": self.side, "valueUSD": self.value_usd}


@dataclass
class RebalancePlan:
    target_weights: Dict[str, float] = field(default_factory=dict)
    actions: List[RebalanceAction] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    method: str = "none"
    defaults: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "targetWeights": dict(self.target_weights),
            "actions": [action.to_payload() for action in self.actions],
            "notes": list(self.notes),
            "method": self.method,
            "defaults": list(self.defaults),
        }


@dataclass
class Opportunity:
    symbol: str
    score: int
    reasons: List[str]
    momentum: float
    sentiment: float

    def to_payload(self) -> Dict[str, Any]:
        sign = "+" if self.momentum > 0 else ""
        return {
            "symbol": self.symbol,
            "name": self.symbol,
            "score": self.score,
            "reasons": list(self.reasons),
            "momentum": f"{sign}{self.momentum * 100:.1f}%",
            "sentiment": self.sentiment,
        }


def alerts_to_payload(alerts: Sequence[Alert]) -> List[Dict[str, str]]:
    return [alert.to_payload() for alert in alerts]


__all__ = [
    "Alert",
    "AlertCode",
    "AlertLevel",
    "HealthScores",
    "Opportunity",
    "PriceSeries",
    "RebalanceAction",
    "RebalancePlan",
    "RiskMetrics",
    "alerts_to_payload",
    "coerce_history",
    "coerce_prices",
    "coerce_weights",
]
