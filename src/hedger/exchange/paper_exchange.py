"""In-memory paper exchange with simulated fills.

Holds virtual wallet balances and linear positions locally and fills market
orders instantly at the current price with taker fees applied. Market data
(prices, funding, order books) comes from locally seeded values first and
falls back to an optional delegate exchange, so paper mode can trade against
live Bybit data without touching the real account.

Order failures can be injected per (symbol, market) for exercising partial
fills and unsupported-symbol handling.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

from hedger.config import FeeSettings
from hedger.exchange.client import Exchange
from hedger.exchange.types import base_coin
from hedger.logging import get_logger
from hedger.models import (
    ContractPosition,
    FundingHistory,
    Market,
    OrderBookLevel,
    OrderResult,
    OrderSide,
    OrderType,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaperOrder:
    """A filled paper order."""

    order_id: str
    symbol: str
    market: Market
    side: OrderSide
    quantity: Decimal
    price: Decimal
    fee: Decimal


@dataclass
class _PaperPosition:
    # signed: negative is short
    size: Decimal = Decimal("0")
    entry_price: Decimal = Decimal("0")


class PaperExchange(Exchange):
    """Simulated exchange for paper trading and tests.

    Args:
        fee_settings: Taker fees applied to simulated fills.
        market_data: Optional exchange used for reads not seeded locally.
        quote_currency: Wallet coin that pays for spot buys and fees.
        initial_quote_balance: Starting quote balance.
    """

    def __init__(
        self,
        fee_settings: FeeSettings | None = None,
        market_data: Exchange | None = None,
        quote_currency: str = "USDT",
        initial_quote_balance: Decimal = Decimal("10000"),
    ) -> None:
        fees = fee_settings or FeeSettings()
        self._market_data = market_data
        self._quote = quote_currency
        self._spot_fee = fees.spot_taker
        self._contract_fee = fees.perp_taker

        self._balances: dict[str, Decimal] = {quote_currency: initial_quote_balance}
        self._positions: dict[str, _PaperPosition] = {}
        self._leverage: dict[str, int] = {}

        self._spot_prices: dict[str, Decimal] = {}
        self._contract_prices: dict[str, Decimal] = {}
        self._funding_rates: dict[str, Decimal] = {}
        self._histories: FundingHistory = {}
        self._books: dict[tuple[str, Market], list[OrderBookLevel]] = {}
        self._equity_override: Decimal | None = None

        self._order_failures: dict[tuple[str, Market], str] = {}
        self._leverage_failures: dict[str, str] = {}
        self._last_error = ""
        self.orders: list[PaperOrder] = []

    # ──────────────────────────────────────────────
    # Seeding and failure injection
    # ──────────────────────────────────────────────

    def set_prices(
        self, symbol: str, spot: Decimal, contract: Decimal | None = None
    ) -> None:
        """Seed spot and contract prices (contract defaults to spot)."""
        self._spot_prices[symbol] = spot
        self._contract_prices[symbol] = spot if contract is None else contract

    def set_funding_history(self, symbol: str, rates: list[Decimal]) -> None:
        """Seed funding samples, newest first. Also sets the current rate."""
        self._histories[symbol] = list(rates)
        if rates:
            self._funding_rates.setdefault(symbol, rates[0])

    def set_current_funding_rate(self, symbol: str, rate: Decimal) -> None:
        self._funding_rates[symbol] = rate

    def set_order_book(
        self, symbol: str, market: Market, levels: list[OrderBookLevel]
    ) -> None:
        self._books[(symbol, market)] = list(levels)

    def set_balance(self, coin: str, amount: Decimal) -> None:
        self._balances[coin] = amount

    def set_position(
        self,
        symbol: str,
        side: OrderSide,
        size: Decimal,
        entry_price: Decimal = Decimal("0"),
    ) -> None:
        """Seed a linear position (size is positive; side picks the sign)."""
        signed = -size if side is OrderSide.SELL else size
        self._positions[symbol] = _PaperPosition(size=signed, entry_price=entry_price)

    def set_fee_rates(self, spot: Decimal, contract: Decimal) -> None:
        self._spot_fee = spot
        self._contract_fee = contract

    def set_equity(self, equity: Decimal | None) -> None:
        """Pin total equity to a fixed value (None restores the computed value)."""
        self._equity_override = equity

    def fail_orders(self, symbol: str, market: Market, message: str) -> None:
        """Reject every subsequent order on (symbol, market) with ``message``."""
        self._order_failures[(symbol, market)] = message

    def fail_leverage(self, symbol: str, message: str) -> None:
        self._leverage_failures[symbol] = message

    def clear_failures(self) -> None:
        self._order_failures.clear()
        self._leverage_failures.clear()

    def get_leverage(self, symbol: str) -> int | None:
        return self._leverage.get(symbol)

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def connect(self) -> None:
        if self._market_data is not None:
            await self._market_data.connect()
        logger.info(
            "paper_exchange_ready",
            quote_balance=str(self._balances.get(self._quote, Decimal("0"))),
            live_market_data=self._market_data is not None,
        )

    async def close(self) -> None:
        if self._market_data is not None:
            await self._market_data.close()

    def get_last_error(self) -> str:
        return self._last_error

    # ──────────────────────────────────────────────
    # Market data
    # ──────────────────────────────────────────────

    async def get_funding_history(self, symbols: list[str]) -> FundingHistory:
        history: FundingHistory = {
            s: list(self._histories[s]) for s in symbols if s in self._histories
        }
        remaining = [s for s in symbols if s not in history]
        if remaining and self._market_data is not None:
            history.update(await self._market_data.get_funding_history(remaining))
        return history

    async def get_spot_price(self, symbol: str) -> Decimal:
        if symbol in self._spot_prices:
            return self._spot_prices[symbol]
        if self._market_data is not None:
            return await self._market_data.get_spot_price(symbol)
        return Decimal("0")

    async def get_contract_price(self, symbol: str) -> Decimal:
        if symbol in self._contract_prices:
            return self._contract_prices[symbol]
        if self._market_data is not None:
            return await self._market_data.get_contract_price(symbol)
        return Decimal("0")

    async def get_current_funding_rate(self, symbol: str) -> Decimal:
        if symbol in self._funding_rates:
            return self._funding_rates[symbol]
        if self._market_data is not None:
            return await self._market_data.get_current_funding_rate(symbol)
        return Decimal("0")

    async def get_spot_order_book(self, symbol: str) -> list[OrderBookLevel]:
        return await self._order_book(symbol, Market.SPOT)

    async def get_contract_order_book(self, symbol: str) -> list[OrderBookLevel]:
        return await self._order_book(symbol, Market.LINEAR)

    async def _order_book(self, symbol: str, market: Market) -> list[OrderBookLevel]:
        if (symbol, market) in self._books:
            return list(self._books[(symbol, market)])
        if self._market_data is not None:
            if market is Market.SPOT:
                return await self._market_data.get_spot_order_book(symbol)
            return await self._market_data.get_contract_order_book(symbol)
        return []

    async def get_spot_fee_rate(self) -> Decimal:
        return self._spot_fee

    async def get_contract_fee_rate(self) -> Decimal:
        return self._contract_fee

    # ──────────────────────────────────────────────
    # Account
    # ──────────────────────────────────────────────

    async def get_total_equity(self) -> Decimal:
        """Quote balance plus marked coin balances plus unrealized PnL."""
        if self._equity_override is not None:
            return self._equity_override

        equity = self._balances.get(self._quote, Decimal("0"))
        for coin, amount in self._balances.items():
            if coin == self._quote or amount == 0:
                continue
            equity += amount * await self.get_spot_price(coin + self._quote)
        for symbol, pos in self._positions.items():
            if pos.size == 0:
                continue
            price = await self.get_contract_price(symbol)
            if price > 0:
                equity += (price - pos.entry_price) * pos.size
        return equity

    async def get_positions(self, symbol: str | None = None) -> list[ContractPosition]:
        positions = []
        for sym, pos in self._positions.items():
            if symbol is not None and sym != symbol:
                continue
            if pos.size == 0:
                continue
            price = await self.get_contract_price(sym)
            mark = price if price > 0 else pos.entry_price
            size = abs(pos.size)
            positions.append(
                ContractPosition(
                    symbol=sym,
                    side=OrderSide.SELL if pos.size < 0 else OrderSide.BUY,
                    size=size,
                    avg_price=pos.entry_price,
                    unrealized_pnl=(mark - pos.entry_price) * pos.size,
                    position_value=size * mark,
                )
            )
        return positions

    async def get_spot_balances(self) -> dict[str, Decimal]:
        return {coin: amount for coin, amount in self._balances.items() if amount > 0}

    async def get_spot_balance(self, symbol: str) -> Decimal:
        return self._balances.get(base_coin(symbol, self._quote), Decimal("0"))

    # ──────────────────────────────────────────────
    # Trading
    # ──────────────────────────────────────────────

    async def create_spot_order(
        self, symbol: str, side: OrderSide, quantity: Decimal
    ) -> bool:
        result = await self.create_order(symbol, side, quantity, market=Market.SPOT)
        return result.success

    async def create_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        market: Market = Market.LINEAR,
        order_type: OrderType = OrderType.MARKET,
        reduce_only: bool = False,
    ) -> OrderResult:
        """Fill a market order instantly at the current price.

        Limit orders are filled the same way; paper mode has no resting book.
        """
        injected = self._order_failures.get((symbol, market))
        if injected is not None:
            return self._reject(symbol, market, injected)
        if quantity <= 0:
            return self._reject(symbol, market, f"invalid quantity {quantity}")

        if market is Market.SPOT:
            price = await self.get_spot_price(symbol)
        else:
            price = await self.get_contract_price(symbol)
        if price <= 0:
            return self._reject(symbol, market, f"no price available for {symbol}")

        if market is Market.SPOT:
            error, fee = self._fill_spot(symbol, side, quantity, price)
        else:
            error, fee = self._fill_linear(symbol, side, quantity, price, reduce_only)
        if error:
            return self._reject(symbol, market, error)

        order = PaperOrder(
            order_id=f"paper_{uuid4().hex[:12]}",
            symbol=symbol,
            market=market,
            side=side,
            quantity=quantity,
            price=price,
            fee=fee,
        )
        self.orders.append(order)
        logger.info(
            "paper_order_filled",
            order_id=order.order_id,
            symbol=symbol,
            market=market.value,
            side=side.value,
            quantity=str(quantity),
            price=str(price),
            fee=str(fee),
        )
        return OrderResult(success=True, order_id=order.order_id)

    def _fill_spot(
        self, symbol: str, side: OrderSide, quantity: Decimal, price: Decimal
    ) -> tuple[str, Decimal]:
        coin = base_coin(symbol, self._quote)
        quote_balance = self._balances.get(self._quote, Decimal("0"))
        coin_balance = self._balances.get(coin, Decimal("0"))
        notional = quantity * price

        if side is OrderSide.BUY:
            if notional > quote_balance:
                return "insufficient balance", Decimal("0")
            # Spot buy fees are charged in the received coin.
            fee_qty = quantity * self._spot_fee
            self._balances[self._quote] = quote_balance - notional
            self._balances[coin] = coin_balance + quantity - fee_qty
            return "", fee_qty * price

        if quantity > coin_balance:
            return "insufficient balance", Decimal("0")
        fee = notional * self._spot_fee
        self._balances[coin] = coin_balance - quantity
        self._balances[self._quote] = quote_balance + notional - fee
        return "", fee

    def _fill_linear(
        self,
        symbol: str,
        side: OrderSide,
        quantity: Decimal,
        price: Decimal,
        reduce_only: bool,
    ) -> tuple[str, Decimal]:
        pos = self._positions.setdefault(symbol, _PaperPosition())
        delta = quantity if side is OrderSide.BUY else -quantity

        reducing = pos.size != 0 and (pos.size > 0) != (delta > 0)
        if reduce_only:
            if not reducing:
                return "reduce-only order would increase position", Decimal("0")
            if abs(delta) > abs(pos.size):
                delta = -pos.size

        fee = abs(delta) * price * self._contract_fee
        realized = Decimal("0")
        new_size = pos.size + delta

        if reducing:
            closed = min(abs(delta), abs(pos.size))
            direction = Decimal("1") if pos.size > 0 else Decimal("-1")
            realized = (price - pos.entry_price) * closed * direction
            if new_size == 0:
                pos.entry_price = Decimal("0")
            elif (new_size > 0) != (pos.size > 0):
                pos.entry_price = price
        elif new_size != 0:
            pos.entry_price = (
                pos.entry_price * abs(pos.size) + price * abs(delta)
            ) / abs(new_size)
        pos.size = new_size

        quote_balance = self._balances.get(self._quote, Decimal("0"))
        self._balances[self._quote] = quote_balance + realized - fee
        return "", fee

    async def close_position(self, symbol: str) -> bool:
        pos = self._positions.get(symbol)
        if pos is None or pos.size == 0:
            return True
        side = OrderSide.BUY if pos.size < 0 else OrderSide.SELL
        result = await self.create_order(
            symbol, side, abs(pos.size), market=Market.LINEAR, reduce_only=True
        )
        return result.success

    async def set_leverage(self, symbol: str, leverage: int) -> bool:
        injected = self._leverage_failures.get(symbol)
        if injected is not None:
            self._last_error = injected
            logger.warning("paper_set_leverage_failed", symbol=symbol, error=injected)
            return False
        self._leverage[symbol] = leverage
        return True

    def _reject(self, symbol: str, market: Market, message: str) -> OrderResult:
        self._last_error = message
        logger.warning(
            "paper_order_rejected",
            symbol=symbol,
            market=market.value,
            error=message,
        )
        return OrderResult(success=False, error=message)
