"""Abstract exchange capability consumed by the reconciliation core.

Defines the contract for all exchange implementations. Ranking, sizing,
balance evaluation and reconciliation depend only on this interface, keeping
Bybit-specific details isolated in the concrete implementation.

Failure convention: implementations do not raise for exchange-side errors.
Reads return ``Decimal("0")`` or an empty container, writes return False or
an unsuccessful ``OrderResult``, and the message is kept for
``get_last_error()``. A zero or negative price means "unavailable".
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from hedger.models import (
    ContractPosition,
    FundingHistory,
    Market,
    OrderBookLevel,
    OrderResult,
    OrderSide,
    OrderType,
)


class Exchange(ABC):
    """Abstract base class for exchange capabilities."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection and load markets."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...

    @abstractmethod
    async def get_funding_history(self, symbols: list[str]) -> FundingHistory:
        """Fetch historical funding rates, newest first, per symbol.

        Symbols whose fetch fails are absent from the result.
        """
        ...

    @abstractmethod
    async def get_spot_price(self, symbol: str) -> Decimal:
        """Last spot price, or 0 if unavailable."""
        ...

    @abstractmethod
    async def get_contract_price(self, symbol: str) -> Decimal:
        """Mark price of the linear perpetual, or 0 if unavailable."""
        ...

    @abstractmethod
    async def get_current_funding_rate(self, symbol: str) -> Decimal:
        """Current (next settlement) funding rate, or 0 if unavailable."""
        ...

    @abstractmethod
    async def get_total_equity(self) -> Decimal:
        """Total account equity in the quote currency, or 0 if unavailable."""
        ...

    @abstractmethod
    async def get_positions(self, symbol: str | None = None) -> list[ContractPosition]:
        """Open linear positions, optionally for a single symbol."""
        ...

    @abstractmethod
    async def get_spot_balances(self) -> dict[str, Decimal]:
        """Wallet balance per coin (e.g. {"BTC": Decimal("0.5")})."""
        ...

    @abstractmethod
    async def get_spot_balance(self, symbol: str) -> Decimal:
        """Wallet balance of the base coin of ``symbol``."""
        ...

    @abstractmethod
    async def get_spot_order_book(self, symbol: str) -> list[OrderBookLevel]:
        """Spot ask levels, best first."""
        ...

    @abstractmethod
    async def get_contract_order_book(self, symbol: str) -> list[OrderBookLevel]:
        """Linear perpetual ask levels, best first."""
        ...

    @abstractmethod
    async def get_spot_fee_rate(self) -> Decimal:
        """Spot taker fee rate."""
        ...

    @abstractmethod
    async def get_contract_fee_rate(self) -> Decimal:
        """Linear perpetual taker fee rate."""
        ...

    @abstractmethod
    async def create_spot_order(
        self, symbol: str, side: OrderSide, quantity: Decimal
    ) -> bool:
        """Place a spot market order. Returns True on success."""
        ...

    @abstractmethod
    async def create_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        market: Market = Market.LINEAR,
        order_type: OrderType = OrderType.MARKET,
        reduce_only: bool = False,
    ) -> OrderResult:
        """Place an order and return its result (with order id on success).

        ``reduce_only`` applies to the linear market only.
        """
        ...

    @abstractmethod
    async def close_position(self, symbol: str) -> bool:
        """Flatten the linear position for ``symbol`` with an opposite order."""
        ...

    @abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> bool:
        """Set buy and sell leverage for the linear market of ``symbol``."""
        ...

    @abstractmethod
    def get_last_error(self) -> str:
        """Most recent error message recorded by this exchange."""
        ...
