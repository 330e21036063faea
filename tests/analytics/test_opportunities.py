from __future__ import annotations

import pytest

from portfolio_advisor.analytics.opportunities import (
    moving_average,
    scan_opportunities,
    score_candidate,
    windowed_momentum,
)
from portfolio_advisor.models import PriceSeries


def _growth(rate: float, length: int = 60) -> list[float]:
    return [100 * (1 + rate) ** index for index in range(length)]


def _drift(step: float, length: int = 60) -> list[float]:
    return [100 + step * index for index in range(length)]


def _history(**series: list[float]) -> dict[str, PriceSeries]:
    return {symbol: PriceSeries(prices=prices) for symbol, prices in series.items()}


def test_windowed_momentum_compares_recent_and_older_pairs() -> None:
    prices = [1.0] * 10 + [2.0, 2.0]

    assert windowed_momentum(prices) == pytest.approx(1.0)
    assert windowed_momentum(prices[:11]) == 0.0
    assert windowed_momentum([0.0] * 12) == 0.0


def test_moving_average_falls_back_to_last_close() -> None:
    assert moving_average([1.0, 2.0, 3.0], 2) == pytest.approx(2.5)
    assert moving_average([1.0, 2.0, 3.0], 5) == 3.0
    assert moving_average([], 5) == 0.0


def test_strong_uptrend_scores_momentum_and_crossover() -> None:
    candidate = score_candidate("SOL", _growth(0.02))

    assert candidate is not None
    assert candidate.score == 85
    assert candidate.reasons == ["Strong momentum (21.9%)", "MA crossover signal"]
    payload = candidate.to_payload()
    assert payload["momentum"] == "+21.9%"
    assert payload["name"] == "SOL"
    assert payload["sentiment"] == 0.5


def test_flat_series_is_not_an_opportunity() -> None:
    assert score_candidate("BTC", [100.0] * 60) is None
    assert score_candidate("BTC", [100.0] * 60, sentiment=0.9) is None


@pytest.mark.parametrize(
    "sentiment, reason",
    [(0.8, "Positive sentiment spike"), (0.1, "Oversold sentiment")],
)
def test_sentiment_extremes_complete_a_crossover(sentiment, reason) -> None:
    candidate = score_candidate("ETH", _drift(0.1), sentiment=sentiment)

    assert candidate is not None
    assert candidate.score == 80
    assert candidate.reasons == ["MA crossover signal", reason]


def test_short_history_cannot_cross_slow_average() -> None:
    candidate = score_candidate("ARB", _growth(0.02, length=35))

    assert candidate is not None
    assert candidate.score == 70
    assert candidate.reasons == ["Strong momentum (21.9%)"]


def test_scan_skips_short_series_and_ranks_by_score() -> None:
    history = _history(ARB=_growth(0.02, length=35), SOL=_growth(0.02), NEW=_growth(0.02, length=29))

    found = scan_opportunities(["ARB", "NEW", "SOL", "MISSING"], history)

    assert [item.symbol for item in found] == ["SOL", "ARB"]


def test_scan_keeps_top_five() -> None:
    symbols = [f"C{index}" for index in range(7)]
    history = _history(**{symbol: _growth(0.02) for symbol in symbols})

    found = scan_opportunities(symbols, history)

    assert [item.symbol for item in found] == symbols[:5]


def test_scan_uses_sentiment_readings_per_symbol() -> None:
    history = _history(ETH=_drift(0.1), BTC=_drift(0.1))

    found = scan_opportunities(["ETH", "BTC"], history, {"BTC": 0.95})

    assert [item.symbol for item in found] == ["BTC"]
    assert found[0].sentiment == 0.95
