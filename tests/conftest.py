"""Shared test fixtures for the hedge reconciler."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from hedger.config import (
    AppSettings,
    BalanceSettings,
    ExchangeSettings,
    FeeSettings,
    PositionSettings,
    TradingSettings,
)
from hedger.data.store import FundingScoreLog, TradeGroupStore, UnsupportedSymbolSet
from hedger.exchange.paper_exchange import PaperExchange
from hedger.market_data.settlement import SettlementClock
from hedger.models import TradeGroup, WeightedScore


class InMemoryStore(TradeGroupStore, UnsupportedSymbolSet, FundingScoreLog):
    """Dict-backed store used where SQLite is beside the point."""

    def __init__(self) -> None:
        self.groups: list[TradeGroup] = []
        self.unsupported: dict[str, str] = {}
        self.scores: list[WeightedScore] = []

    async def store_trade_group(self, exchange_id, symbol, spot_order_id, futures_order_id, leverage):  # type: ignore[no-untyped-def]
        group = TradeGroup(exchange_id, symbol, spot_order_id, futures_order_id, leverage)
        self.groups.append(group)
        return group

    async def get_active_trade_groups(self) -> list[str]:
        return [g.identifier for g in self.groups if g.active]

    async def deactivate_trade_groups(self, symbol: str) -> int:
        count = 0
        for i, g in enumerate(self.groups):
            if g.symbol == symbol and g.active:
                self.groups[i] = TradeGroup(
                    g.exchange_id, g.symbol, g.spot_order_id, g.futures_order_id,
                    g.leverage, g.created_at, active=False,
                )
                count += 1
        return count

    async def get_trade_groups(self, symbol: str | None = None) -> list[TradeGroup]:
        return [g for g in self.groups if symbol is None or g.symbol == symbol]

    async def get_unsupported(self) -> set[str]:
        return set(self.unsupported)

    async def add_unsupported(self, symbol: str, reason: str = "") -> bool:
        if symbol in self.unsupported:
            return False
        self.unsupported[symbol] = reason
        return True

    async def record_funding_scores(self, scores: list[WeightedScore]) -> int:
        self.scores.extend(scores)
        return len(scores)


def fixed_clock(hour: int, minute: int = 0):  # type: ignore[no-untyped-def]
    """Return a now() callable pinned to a UTC time of day."""
    moment = datetime(2024, 1, 1, hour, minute, tzinfo=timezone.utc)
    return lambda: moment


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (paper mode, dummy API keys)."""
    return AppSettings(
        log_level="DEBUG",
        exchange=ExchangeSettings(
            api_key="test-api-key",  # type: ignore[arg-type]
            api_secret="test-api-secret",  # type: ignore[arg-type]
            testnet=True,
            demo_trading=False,
        ),
        trading=TradingSettings(mode="paper"),
        fees=FeeSettings(),
    )


@pytest.fixture
def position_settings() -> PositionSettings:
    return PositionSettings(
        min_position_value=Decimal("50"),
        max_position_value=Decimal("500"),
        position_scaling=True,
        scaling_factor=Decimal("2"),
        min_scaling_rate=Decimal("0.0001"),
        max_scaling_rate=Decimal("0.01"),
    )


@pytest.fixture
def balance_settings() -> BalanceSettings:
    return BalanceSettings()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def paper_exchange() -> PaperExchange:
    """Paper exchange with zero fees and plenty of quote balance."""
    exchange = PaperExchange(
        fee_settings=FeeSettings(spot_taker=Decimal("0"), perp_taker=Decimal("0")),
        initial_quote_balance=Decimal("100000"),
    )
    return exchange


@pytest.fixture
def far_from_settlement() -> SettlementClock:
    """Clock sitting at 04:00 UTC, four hours from any default settlement."""
    return SettlementClock(["00:00", "08:00", "16:00"], 30, now=fixed_clock(4))


@pytest.fixture
def near_settlement() -> SettlementClock:
    """Clock sitting at 07:50 UTC, ten minutes before the 08:00 settlement."""
    return SettlementClock(["00:00", "08:00", "16:00"], 30, now=fixed_clock(7, 50))


@pytest.fixture
def clock_at():  # type: ignore[no-untyped-def]
    """Factory for now() callables pinned to a UTC time of day."""
    return fixed_clock
