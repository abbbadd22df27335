"""Bybit exchange implementation via ccxt async.

Wraps ccxt.async_support.bybit with market loading, symbol mapping and
Decimal conversion. Every call is bounded by the ccxt request timeout; ccxt
errors and timeouts are caught here, logged, and turned into return values
so the reconciler never has to unwind through network failures.
"""

import asyncio
from collections.abc import Awaitable
from decimal import Decimal
from typing import TypeVar

import ccxt.async_support as ccxt_async

from hedger.config import ExchangeSettings, FeeSettings
from hedger.exchange.client import Exchange
from hedger.exchange.types import (
    base_coin,
    linear_market_symbol,
    spot_market_symbol,
    to_decimal,
)
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

T = TypeVar("T")

# Bybit answers "leverage not modified" when the requested leverage is already set.
_LEVERAGE_UNCHANGED = "leverage not modified"

_ORDER_BOOK_DEPTH = 50


class BybitExchange(Exchange):
    """Concrete Bybit exchange using ccxt async.

    Args:
        settings: Connection settings (keys, timeout, quote currency).
        fee_settings: Fallback taker fees when fee lookups fail.
        history_limit: Number of funding samples fetched per symbol.
        max_concurrent_requests: Bound on parallel per-symbol reads.
    """

    def __init__(
        self,
        settings: ExchangeSettings,
        fee_settings: FeeSettings | None = None,
        history_limit: int = 200,
        max_concurrent_requests: int = 5,
    ) -> None:
        self._settings = settings
        self._fees = fee_settings or FeeSettings()
        self._history_limit = history_limit
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent_requests))
        self._quote = settings.quote_currency
        self._last_error = ""
        self._fee_cache: dict[Market, Decimal] = {}

        config: dict = {
            "apiKey": settings.api_key.get_secret_value(),
            "secret": settings.api_secret.get_secret_value(),
            "enableRateLimit": True,
            "timeout": settings.request_timeout_ms,
            "options": {
                "defaultType": "swap",
                "createMarketBuyOrderRequiresPrice": False,
            },
        }

        # Override URLs for Bybit Demo Trading API
        if settings.demo_trading:
            config["urls"] = {
                "api": {
                    "public": "https://api-demo.bybit.com",
                    "private": "https://api-demo.bybit.com",
                },
            }

        self._exchange = ccxt_async.bybit(config)
        if settings.testnet:
            self._exchange.set_sandbox_mode(True)
        self._markets: dict = {}

    @property
    def exchange(self) -> ccxt_async.bybit:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        """Initialize connection by loading markets."""
        logger.info(
            "connecting_to_bybit",
            demo=self._settings.demo_trading,
            testnet=self._settings.testnet,
        )
        self._markets = await self._exchange.load_markets()
        logger.info("bybit_connected", market_count=len(self._markets))

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        await self._exchange.close()
        logger.info("bybit_connection_closed")

    def get_last_error(self) -> str:
        return self._last_error

    async def _guard(
        self, call: Awaitable[T], operation: str, symbol: str | None = None
    ) -> T | None:
        """Await an exchange call, converting ccxt errors and timeouts to None."""
        try:
            return await call
        except (ccxt_async.BaseError, asyncio.TimeoutError) as exc:
            self._last_error = str(exc) or type(exc).__name__
            logger.warning(
                "exchange_call_failed",
                operation=operation,
                symbol=symbol,
                error_type=type(exc).__name__,
                error=self._last_error,
            )
            return None

    # ──────────────────────────────────────────────
    # Market data
    # ──────────────────────────────────────────────

    async def get_funding_history(self, symbols: list[str]) -> FundingHistory:
        """Fetch funding history for many symbols concurrently (bounded).

        ccxt returns records oldest first; they are re-sorted newest first.
        """

        async def _fetch(symbol: str) -> tuple[str, list[Decimal] | None]:
            async with self._semaphore:
                records = await self._guard(
                    self._exchange.fetch_funding_rate_history(
                        linear_market_symbol(symbol, self._quote),
                        limit=self._history_limit,
                    ),
                    "fetch_funding_rate_history",
                    symbol,
                )
            if records is None:
                return symbol, None
            ordered = sorted(records, key=lambda r: r.get("timestamp") or 0, reverse=True)
            rates = [
                to_decimal(r.get("fundingRate"), Decimal("NaN"))
                for r in ordered
            ]
            return symbol, rates

        results = await asyncio.gather(*(_fetch(s) for s in symbols))
        history: FundingHistory = {}
        for symbol, rates in results:
            if rates is not None:
                history[symbol] = rates
        logger.debug(
            "funding_history_fetched",
            requested=len(symbols),
            received=len(history),
        )
        return history

    async def get_spot_price(self, symbol: str) -> Decimal:
        ticker = await self._guard(
            self._exchange.fetch_ticker(spot_market_symbol(symbol, self._quote)),
            "fetch_spot_ticker",
            symbol,
        )
        if not ticker:
            return Decimal("0")
        return to_decimal(ticker.get("last"))

    async def get_contract_price(self, symbol: str) -> Decimal:
        ticker = await self._guard(
            self._exchange.fetch_ticker(linear_market_symbol(symbol, self._quote)),
            "fetch_contract_ticker",
            symbol,
        )
        if not ticker:
            return Decimal("0")
        info = ticker.get("info") or {}
        mark = ticker.get("markPrice") or info.get("markPrice")
        return to_decimal(mark if mark is not None else ticker.get("last"))

    async def get_current_funding_rate(self, symbol: str) -> Decimal:
        data = await self._guard(
            self._exchange.fetch_funding_rate(linear_market_symbol(symbol, self._quote)),
            "fetch_funding_rate",
            symbol,
        )
        if not data:
            return Decimal("0")
        return to_decimal(data.get("fundingRate"))

    async def get_spot_order_book(self, symbol: str) -> list[OrderBookLevel]:
        return await self._order_book(spot_market_symbol(symbol, self._quote), symbol)

    async def get_contract_order_book(self, symbol: str) -> list[OrderBookLevel]:
        return await self._order_book(linear_market_symbol(symbol, self._quote), symbol)

    async def _order_book(self, market_symbol: str, symbol: str) -> list[OrderBookLevel]:
        book = await self._guard(
            self._exchange.fetch_order_book(market_symbol, limit=_ORDER_BOOK_DEPTH),
            "fetch_order_book",
            symbol,
        )
        if not book:
            return []
        levels = []
        for entry in book.get("asks", []):
            price, quantity = to_decimal(entry[0]), to_decimal(entry[1])
            if price > 0 and quantity > 0:
                levels.append(OrderBookLevel(price=price, quantity=quantity))
        return levels

    # ──────────────────────────────────────────────
    # Account
    # ──────────────────────────────────────────────

    async def get_total_equity(self) -> Decimal:
        balance = await self._guard(
            self._exchange.fetch_balance(params={"type": "UNIFIED"}),
            "fetch_balance",
        )
        if not balance:
            return Decimal("0")
        result_list = balance.get("info", {}).get("result", {}).get("list", [])
        if not result_list:
            return Decimal("0")
        return to_decimal(result_list[0].get("totalEquity"))

    async def get_positions(self, symbol: str | None = None) -> list[ContractPosition]:
        symbols = [linear_market_symbol(symbol, self._quote)] if symbol else None
        raw = await self._guard(
            self._exchange.fetch_positions(
                symbols, params={"category": "linear", "settleCoin": self._quote}
            ),
            "fetch_positions",
            symbol,
        )
        if not raw:
            return []

        positions = []
        for pos in raw:
            size = to_decimal(pos.get("contracts"))
            if size <= 0:
                continue
            side = OrderSide.SELL if pos.get("side") == "short" else OrderSide.BUY
            positions.append(
                ContractPosition(
                    symbol=self._exchange_id(pos.get("symbol", "")),
                    side=side,
                    size=size,
                    avg_price=to_decimal(pos.get("entryPrice")),
                    unrealized_pnl=to_decimal(pos.get("unrealizedPnl")),
                    position_value=abs(to_decimal(pos.get("notional"))),
                )
            )
        return positions

    async def get_spot_balances(self) -> dict[str, Decimal]:
        balance = await self._guard(
            self._exchange.fetch_balance(params={"type": "UNIFIED"}),
            "fetch_balance",
        )
        if not balance:
            return {}
        totals = balance.get("total") or {}
        return {
            coin: to_decimal(amount)
            for coin, amount in totals.items()
            if to_decimal(amount) > 0
        }

    async def get_spot_balance(self, symbol: str) -> Decimal:
        balances = await self.get_spot_balances()
        return balances.get(base_coin(symbol, self._quote), Decimal("0"))

    async def get_spot_fee_rate(self) -> Decimal:
        return await self._fee_rate(Market.SPOT)

    async def get_contract_fee_rate(self) -> Decimal:
        return await self._fee_rate(Market.LINEAR)

    async def _fee_rate(self, market: Market) -> Decimal:
        """Taker fee for a market type, cached; falls back to configured fees."""
        if market in self._fee_cache:
            return self._fee_cache[market]

        reference = "BTC" + self._quote
        market_symbol = (
            spot_market_symbol(reference, self._quote)
            if market is Market.SPOT
            else linear_market_symbol(reference, self._quote)
        )
        fee = await self._guard(
            self._exchange.fetch_trading_fee(market_symbol), "fetch_trading_fee"
        )
        fallback = self._fees.spot_taker if market is Market.SPOT else self._fees.perp_taker
        rate = to_decimal(fee.get("taker"), fallback) if fee else fallback
        if fee:
            self._fee_cache[market] = rate
        return rate

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
        if market is Market.SPOT:
            market_symbol = spot_market_symbol(symbol, self._quote)
            # Market buys are sized in the base coin, not quote value.
            params: dict = {"category": "spot", "marketUnit": "baseCoin"}
        else:
            market_symbol = linear_market_symbol(symbol, self._quote)
            params = {"category": "linear"}
            if reduce_only:
                params["reduceOnly"] = True

        logger.info(
            "creating_order",
            symbol=symbol,
            market=market.value,
            side=side.value,
            quantity=str(quantity),
            reduce_only=reduce_only,
        )
        order = await self._guard(
            self._exchange.create_order(
                market_symbol,
                order_type.value,
                side.value,
                float(quantity),
                None,
                params=params,
            ),
            "create_order",
            symbol,
        )
        if order is None:
            return OrderResult(success=False, error=self._last_error)
        return OrderResult(success=True, order_id=str(order.get("id", "")))

    async def close_position(self, symbol: str) -> bool:
        positions = await self.get_positions(symbol)
        if not positions:
            return True
        ok = True
        for pos in positions:
            close_side = OrderSide.BUY if pos.side is OrderSide.SELL else OrderSide.SELL
            result = await self.create_order(
                symbol, close_side, pos.size, market=Market.LINEAR, reduce_only=True
            )
            ok = ok and result.success
        return ok

    async def set_leverage(self, symbol: str, leverage: int) -> bool:
        try:
            await self._exchange.set_leverage(
                leverage,
                linear_market_symbol(symbol, self._quote),
                params={"category": "linear"},
            )
            return True
        except (ccxt_async.BaseError, asyncio.TimeoutError) as exc:
            message = str(exc)
            if _LEVERAGE_UNCHANGED in message.lower():
                return True
            self._last_error = message or type(exc).__name__
            logger.warning(
                "set_leverage_failed",
                symbol=symbol,
                leverage=leverage,
                error=self._last_error,
            )
            return False

    def _exchange_id(self, market_symbol: str) -> str:
        """Map a ccxt unified symbol back to the exchange id ("BTC/USDT:USDT" -> "BTCUSDT")."""
        market = self._markets.get(market_symbol)
        if market and market.get("id"):
            return market["id"]
        return market_symbol.split(":")[0].replace("/", "")
