"""Tests for the candidate universe and the CoinGecko market cap source."""

import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from hedger.config import UniverseSettings
from hedger.market_data.market_cap import MarketCapService
from hedger.market_data.universe import CandidateUniverse, dedupe


def test_dedupe_keeps_first_seen_order() -> None:
    assert dedupe(["BTCUSDT", "ethusdt", "BTCUSDT", " ", "SOLUSDT", "ETHUSDT"]) == [
        "BTCUSDT",
        "ETHUSDT",
        "SOLUSDT",
    ]


@pytest.mark.asyncio
async def test_static_universe_returns_configured_pairs() -> None:
    settings = UniverseSettings(source="static", pairs=["ETHUSDT", "BTCUSDT", "ETHUSDT"])
    universe = CandidateUniverse(settings)
    assert await universe.candidates() == ["ETHUSDT", "BTCUSDT"]


@pytest.mark.asyncio
async def test_market_cap_universe_uses_service() -> None:
    service = MagicMock(spec=MarketCapService)
    service.top_symbols.return_value = ["BTCUSDT", "ETHUSDT", "BTCUSDT"]
    settings = UniverseSettings(source="market_cap", market_cap_count=3)

    universe = CandidateUniverse(settings, service)

    assert await universe.candidates() == ["BTCUSDT", "ETHUSDT"]
    service.top_symbols.assert_called_once_with(3)


@pytest.mark.asyncio
async def test_market_cap_universe_falls_back_to_static() -> None:
    service = MagicMock(spec=MarketCapService)
    service.top_symbols.return_value = []
    settings = UniverseSettings(source="market_cap", pairs=["SOLUSDT"])

    universe = CandidateUniverse(settings, service)

    assert await universe.candidates() == ["SOLUSDT"]


def _response(payload: list[dict]) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = json.dumps(payload).encode()
    resp.__enter__.return_value = resp
    return resp


def test_market_cap_service_maps_and_filters_stablecoins() -> None:
    payload = [{"symbol": "btc"}, {"symbol": "usdt"}, {"symbol": "eth"}, {"symbol": "sol"}]
    service = MarketCapService()

    with patch("urllib.request.urlopen", return_value=_response(payload)) as urlopen:
        assert service.top_symbols(2) == ["BTCUSDT", "ETHUSDT"]
        # second call is served from cache
        assert service.top_symbols(2) == ["BTCUSDT", "ETHUSDT"]

    assert urlopen.call_count == 1


def test_market_cap_service_network_error_returns_empty() -> None:
    service = MarketCapService()
    with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("down")):
        assert service.top_symbols(5) == []
