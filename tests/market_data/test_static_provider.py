from __future__ import annotations

import asyncio
import json

import pytest

from services.market_data import StaticMarketData


def test_static_provider_serves_trailing_window() -> None:
    provider = StaticMarketData(history={"btc": {"prices": [1, 2, 3, 4, 5]}}, prices={"btc": "30000"})

    history = asyncio.run(provider.history(["BTC", "ETH"], 3))
    prices = asyncio.run(provider.prices(["btc", "eth"]))

    assert history["BTC"].prices == [3.0, 4.0, 5.0]
    assert len(history["ETH"]) == 0
    assert prices == {"BTC": 30000.0, "ETH": None}


def test_static_provider_from_json(tmp_path) -> None:
    path = tmp_path / "fixtures.json"
    path.write_text(
        json.dumps({"history": {"SOL": {"timestamps": [1, 2], "prices": [20, 21]}}, "prices": {"SOL": 21}}),
        encoding="utf-8",
    )

    provider = StaticMarketData.from_json(path)

    assert asyncio.run(provider.history(["SOL"], 90))["SOL"].timestamps == [1, 2]
    assert asyncio.run(provider.prices(["SOL"])) == {"SOL": 21.0}


def test_static_provider_from_json_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError, match="fixture not found"):
        StaticMarketData.from_json(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid JSON"):
        StaticMarketData.from_json(broken)

    listing = tmp_path / "list.json"
    listing.write_text("[]", encoding="utf-8")
    with pytest.raises(TypeError, match="must be a JSON object"):
        StaticMarketData.from_json(listing)
