"""Shared data models for the hedge reconciler.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, rates or fees.

Symbols are exchange ids such as "BTCUSDT"; the same id names both the spot
market and the linear perpetual of a hedge pair.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class OrderSide(str, Enum):
    """Order direction."""

    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    """Order type."""

    MARKET = "market"
    LIMIT = "limit"


class Market(str, Enum):
    """Which leg of a hedge pair an order targets."""

    SPOT = "spot"
    LINEAR = "linear"


# symbol -> funding-rate samples, most recent first
FundingHistory = dict[str, list[Decimal]]


@dataclass(frozen=True)
class WeightedScore:
    """Weighted funding score for one symbol.

    ``period_averages`` holds one mean per configured lookback period, or
    None where that period had no valid samples.
    """

    symbol: str
    score: Decimal
    period_averages: tuple[Decimal | None, ...]
    latest_rate: Decimal


@dataclass(frozen=True)
class RankedSymbol:
    """One entry of the ranked target set.

    ``latest_rate`` is the most recent funding sample seen when ranking.
    """

    symbol: str
    score: Decimal
    latest_rate: Decimal = Decimal("0")


RankedSet = list[RankedSymbol]


@dataclass
class Holding:
    """Current spot and contract quantities for one symbol.

    ``contract_qty`` is the size of the short perpetual leg (positive).
    ``contract_value`` is the exchange-reported position value in USD.
    """

    spot_qty: Decimal = Decimal("0")
    contract_qty: Decimal = Decimal("0")
    contract_value: Decimal = Decimal("0")


PositionSnapshot = dict[str, Holding]


@dataclass(frozen=True)
class BalanceCheckResult:
    """Outcome of a balance evaluation. Not persisted."""

    need_balance: bool
    price_diff: Decimal = Decimal("0")
    depth_impact: Decimal = Decimal("0")
    estimated_cost: Decimal = Decimal("0")
    expected_profit: Decimal = Decimal("0")
    size_balanced: bool = True
    value_in_range: bool = False


@dataclass(frozen=True)
class SizedTarget:
    """Target pair value and per-leg quantity for a hedge pair.

    ``value`` is measured like BalanceEvaluator's pair value (leg sum, or
    leg average with spot margin netting). A ``value`` of zero means the pair
    is not worth opening.
    """

    value: Decimal
    quantity: Decimal
    price: Decimal

    @property
    def leg_value(self) -> Decimal:
        return self.quantity * self.price


@dataclass(frozen=True)
class OrderBookLevel:
    """A single price level of an order book side."""

    price: Decimal
    quantity: Decimal


@dataclass(frozen=True)
class ContractPosition:
    """An open linear perpetual position as reported by the exchange."""

    symbol: str
    side: OrderSide
    size: Decimal
    avg_price: Decimal = Decimal("0")
    unrealized_pnl: Decimal = Decimal("0")
    position_value: Decimal = Decimal("0")


@dataclass(frozen=True)
class OrderResult:
    """Result of an order request. ``order_id`` is set only on success."""

    success: bool
    order_id: str = ""
    error: str = ""


@dataclass(frozen=True)
class TradeGroup:
    """Audit record of an opened hedge pair."""

    exchange_id: str
    symbol: str
    spot_order_id: str
    futures_order_id: str
    leverage: int
    created_at: str = ""
    active: bool = True

    @property
    def identifier(self) -> str:
        """Identifier in the EXCHANGE:SYMBOL:SPOT_FUTURES_LEVERAGE form."""
        return (
            f"{self.exchange_id}:{self.symbol}:"
            f"{self.spot_order_id}_{self.futures_order_id}_{self.leverage}"
        )


@dataclass
class CycleReport:
    """What one reconciliation cycle did, for logging and tests."""

    ranked: list[str] = field(default_factory=list)
    closed: list[str] = field(default_factory=list)
    opened: list[str] = field(default_factory=list)
    rebuilt: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    partial_failures: list[str] = field(default_factory=list)
    unsupported_added: list[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
