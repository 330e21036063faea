"""Validation of user-supplied holdings."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .models import PriceSeries

MIN_ASSETS = 3
MIN_HISTORY_POINTS = 60

_WHITESPACE = re.compile(r"\s+")


def normalize_quantity(value: Any) -> float:
    """Parse a holding amount, accepting ``,`` as the decimal separator.

    Raises ``ValueError`` for negative, non-finite or unparsable amounts.
    """

    if isinstance(value, bool):
        raise ValueError(f"INVALID_QTY: {value}")
    if isinstance(value, (int, float)):
        amount = float(value)
    else:
        cleaned = _WHITESPACE.sub("", str(value)).replace(",", ".", 1)
        try:
            amount = float(cleaned)
        except ValueError:
            raise ValueError(f"INVALID_QTY: {value}") from None
    if not math.isfinite(amount) or amount < 0:
        raise ValueError(f"INVALID_QTY: {value}")
    return amount


def normalize_holdings(holdings: Any) -> Dict[str, float]:
    """Return ``SYMBOL -> amount`` from a mapping or a ``[{symbol, amount}]`` list.

    Repeated symbols are summed.
    """

    if isinstance(holdings, Mapping):
        entries = list(holdings.items())
    elif isinstance(holdings, (list, tuple)):
        entries = []
        for entry in holdings:
            if not isinstance(entry, Mapping):
                raise ValueError(f"Holding entries must be objects, got {type(entry).__name__}")
            entries.append((entry.get("symbol"), entry.get("amount")))
    else:
        raise ValueError("Holdings must be an object or a list of {symbol, amount} entries")

    normalised: Dict[str, float] = {}
    for symbol, amount in entries:
        key = str(symbol or "").strip().upper()
        if not key:
            raise ValueError("Holding symbol must not be empty")
        try:
            quantity = normalize_quantity(amount)
        except ValueError as exc:
            raise ValueError(f"Invalid amount for {key}: {exc}") from exc
        normalised[key] = normalised.get(key, 0.0) + quantity
    return normalised


@dataclass
class AssetEligibility:
    eligible: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)

    @property
    def sufficient(self) -> bool:
        return not any(note.startswith("WARNING") for note in self.notes)


def validate_minimum_assets(
    symbols: Sequence[str],
    prices: Mapping[str, Optional[float]],
    history: Mapping[str, PriceSeries],
    *,
    min_assets: int = MIN_ASSETS,
    min_history_points: int = MIN_HISTORY_POINTS,
) -> AssetEligibility:
    """List symbols with a price and enough history for analysis."""

    result = AssetEligibility()
    for symbol in symbols:
        if prices.get(symbol) is None:
            result.notes.append(f"Ignored {symbol} - no price available")
            continue
        series = history.get(symbol)
        points = len(series) if series is not None else 0
        if points < min_history_points:
            result.notes.append(
                f"Ignored {symbol} - insufficient history ({points} < {min_history_points} points)"
            )
            continue
        result.eligible.append(symbol)

    if len(result.eligible) < min_assets:
        result.notes.append(
            f"WARNING: Only {len(result.eligible)} eligible assets (minimum {min_assets} recommended)"
        )
    return result
