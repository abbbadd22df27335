"""Hedge reconciliation: one level-triggered pass over the account.

Each cycle:
1. Rank candidates by funding score (FundingRanker)
2. Snapshot holdings from the exchange (short contracts + spot coins)
3. Close phase: flatten every held symbol that is no longer ranked
4. Balance phase: for each ranked symbol, evaluate -> size -> exposure cap
   -> tear down existing pair -> open spot buy -> open contract short
   -> compensate the spot leg if the contract leg fails
   -> record a trade group

Exchange calls report failures as return values; this module branches on
them. Order placement is strictly sequential so a compensating sell can
never race a new open for the same symbol.
"""

from decimal import Decimal

from hedger.config import TradingSettings
from hedger.data.store import TradeGroupStore, UnsupportedSymbolSet
from hedger.exceptions import is_unsupported_symbol_error
from hedger.exchange.client import Exchange
from hedger.logging import get_logger
from hedger.market_data.funding_ranker import FundingRanker
from hedger.market_data.universe import CandidateUniverse
from hedger.models import (
    CycleReport,
    Holding,
    Market,
    OrderResult,
    OrderSide,
    PositionSnapshot,
    RankedSymbol,
    SizedTarget,
)
from hedger.position.balance import BalanceEvaluator
from hedger.position.precision import PrecisionRules
from hedger.position.sizing import PositionSizer

logger = get_logger(__name__)

_ZERO = Decimal("0")
_ONE = Decimal("1")


class HedgeReconciler:
    """Keeps the account's hedge pairs in line with the ranked target set.

    Args:
        exchange: Exchange capability (live or paper).
        universe: Source of candidate symbols.
        ranker: Funding ranker producing the target set.
        sizer: Target notional and quantity per pair.
        evaluator: Decides whether a pair is worth rebuilding.
        precision: Quantity rounding rules.
        trade_groups: Audit trail of opened pairs.
        unsupported: Persisted set of rejected symbols.
        settings: Leverage and account policy.
        unsupported_error_patterns: Error substrings marking a symbol unsupported.
        exchange_id: Exchange name recorded on trade groups.
        quote_currency: Quote coin of every pair.
        min_position_value: Lower bound of a valid target value.
        max_position_value: Upper bound of a valid target value.
    """

    def __init__(
        self,
        exchange: Exchange,
        universe: CandidateUniverse,
        ranker: FundingRanker,
        sizer: PositionSizer,
        evaluator: BalanceEvaluator,
        precision: PrecisionRules,
        trade_groups: TradeGroupStore,
        unsupported: UnsupportedSymbolSet,
        settings: TradingSettings,
        unsupported_error_patterns: list[str],
        exchange_id: str = "BYBIT",
        quote_currency: str = "USDT",
        min_position_value: Decimal = Decimal("50"),
        max_position_value: Decimal = Decimal("500"),
    ) -> None:
        self._exchange = exchange
        self._universe = universe
        self._ranker = ranker
        self._sizer = sizer
        self._evaluator = evaluator
        self._precision = precision
        self._trade_groups = trade_groups
        self._unsupported = unsupported
        self._settings = settings
        self._error_patterns = unsupported_error_patterns
        self._exchange_id = exchange_id
        self._quote = quote_currency
        self._min_value = min_position_value
        self._max_value = max_position_value

    async def run_cycle(self) -> CycleReport:
        """Run one full reconciliation pass."""
        report = CycleReport()

        candidates = await self._universe.candidates()
        ranked = await self._ranker.rank(candidates)
        report.ranked = [r.symbol for r in ranked]

        snapshot = await self.snapshot(candidates)
        logger.info(
            "cycle_snapshot",
            ranked=report.ranked,
            held=sorted(snapshot),
        )

        await self._close_phase(snapshot, {r.symbol for r in ranked}, report)
        await self._balance_phase(ranked, snapshot, report)
        await self._log_portfolio_status()

        logger.info(
            "cycle_complete",
            closed=report.closed,
            opened=report.opened,
            rebuilt=report.rebuilt,
            skipped=len(report.skipped),
            failures=report.failures,
            partial_failures=report.partial_failures,
            unsupported_added=report.unsupported_added,
        )
        return report

    async def snapshot(self, candidates: list[str]) -> PositionSnapshot:
        """Current holdings from the exchange.

        Includes every short contract position, and every spot balance whose
        pair is a candidate or already has a contract position.
        """
        snapshot: PositionSnapshot = {}
        for pos in await self._exchange.get_positions():
            if pos.side is not OrderSide.SELL or pos.size <= 0:
                continue
            holding = snapshot.setdefault(pos.symbol, Holding())
            holding.contract_qty += pos.size
            holding.contract_value += pos.position_value

        candidate_set = set(candidates)
        balances = await self._exchange.get_spot_balances()
        for coin, amount in balances.items():
            if coin == self._quote or amount <= 0:
                continue
            symbol = f"{coin}{self._quote}"
            if symbol in candidate_set or symbol in snapshot:
                snapshot.setdefault(symbol, Holding()).spot_qty = amount
        return snapshot

    # ──────────────────────────────────────────────
    # Close phase
    # ──────────────────────────────────────────────

    async def _close_phase(
        self,
        snapshot: PositionSnapshot,
        ranked_symbols: set[str],
        report: CycleReport,
    ) -> None:
        for symbol in [s for s in snapshot if s not in ranked_symbols]:
            holding = snapshot.pop(symbol)
            try:
                closed = await self._close_pair(symbol, holding, report)
            except Exception as exc:
                logger.error("close_pair_error", symbol=symbol, exc_info=True)
                report.failures[symbol] = f"close: {exc}"
                continue
            if closed:
                report.closed.append(symbol)

    async def _close_pair(
        self, symbol: str, holding: Holding, report: CycleReport
    ) -> bool:
        """Close both legs independently. Returns True if neither leg failed."""
        logger.info(
            "closing_pair",
            symbol=symbol,
            spot_qty=str(holding.spot_qty),
            contract_qty=str(holding.contract_qty),
        )
        spot_ok = await self._close_spot_leg(symbol, holding.spot_qty, report)
        contract_ok = await self._close_contract_leg(symbol, holding.contract_qty, report)

        if spot_ok and contract_ok:
            await self._trade_groups.deactivate_trade_groups(symbol)
            logger.info("pair_closed", symbol=symbol)
            return True
        logger.warning(
            "pair_close_incomplete",
            symbol=symbol,
            spot_ok=spot_ok,
            contract_ok=contract_ok,
        )
        return False

    async def _close_spot_leg(
        self, symbol: str, quantity: Decimal, report: CycleReport
    ) -> bool:
        if quantity <= 0:
            return True
        price = await self._exchange.get_spot_price(symbol)
        if price <= 0:
            logger.warning("close_spot_no_price", symbol=symbol)
            return False

        sell_qty = self._precision.quantize_spot(quantity, price)
        if sell_qty < self._precision.min_order_size(price):
            logger.debug("close_spot_dust_skipped", symbol=symbol, quantity=str(quantity))
            return True

        result = await self._exchange.create_order(
            symbol, OrderSide.SELL, sell_qty, market=Market.SPOT
        )
        if not result.success:
            await self._handle_order_failure(symbol, "close_spot", result, report)
            return False
        return True

    async def _close_contract_leg(
        self, symbol: str, quantity: Decimal, report: CycleReport
    ) -> bool:
        if quantity <= 0:
            return True
        price = await self._exchange.get_contract_price(symbol)
        if price <= 0:
            logger.warning("close_contract_no_price", symbol=symbol)
            return False

        buy_qty = self._precision.quantize_contract(quantity, price)
        if buy_qty <= 0:
            return True

        result = await self._exchange.create_order(
            symbol, OrderSide.BUY, buy_qty, market=Market.LINEAR, reduce_only=True
        )
        if not result.success:
            await self._handle_order_failure(symbol, "close_contract", result, report)
            return False
        return True

    # ──────────────────────────────────────────────
    # Balance phase
    # ──────────────────────────────────────────────

    async def _balance_phase(
        self,
        ranked: list[RankedSymbol],
        snapshot: PositionSnapshot,
        report: CycleReport,
    ) -> None:
        if not ranked:
            return
        equity = await self._exchange.get_total_equity()
        if equity <= 0:
            logger.warning("balance_phase_no_equity", equity=str(equity))

        for entry in ranked:
            try:
                await self._balance_symbol(entry, snapshot, equity, report)
            except Exception as exc:
                logger.error("balance_symbol_error", symbol=entry.symbol, exc_info=True)
                report.failures[entry.symbol] = f"balance: {exc}"

    async def _balance_symbol(
        self,
        entry: RankedSymbol,
        snapshot: PositionSnapshot,
        equity: Decimal,
        report: CycleReport,
    ) -> None:
        symbol = entry.symbol
        holding = snapshot.get(symbol, Holding())

        check = await self._evaluator.evaluate(
            symbol, holding.spot_qty, holding.contract_qty, latest_rate=entry.latest_rate
        )
        if not check.need_balance:
            report.skipped[symbol] = "balanced_or_not_worth_it"
            return

        if equity <= 0:
            report.skipped[symbol] = "no_equity"
            return

        target = await self._sizer.size(symbol, entry.score)
        if target.value <= 0 or not (self._min_value <= target.value <= self._max_value):
            logger.info("balance_skipped_size", symbol=symbol, target=str(target.value))
            report.skipped[symbol] = "size_out_of_range"
            return

        exposure = sum(
            (h.contract_value for s, h in snapshot.items() if s != symbol),
            _ZERO,
        )
        cap = equity * self._settings.default_leverage
        if exposure + target.leg_value > cap:
            logger.info(
                "balance_skipped_exposure_cap",
                symbol=symbol,
                exposure=str(exposure),
                target=str(target.leg_value),
                cap=str(cap),
            )
            report.skipped[symbol] = "exposure_cap"
            return

        rebuilding = holding.contract_qty > 0 or (
            holding.spot_qty >= self._precision.min_order_size(target.price)
        )
        if rebuilding:
            if not await self._close_pair(symbol, holding, report):
                logger.warning("rebuild_aborted_teardown_failed", symbol=symbol)
                report.failures.setdefault(symbol, "teardown_failed")
                return
            snapshot.pop(symbol, None)

        opened = await self._open_pair(symbol, target, report)
        if not opened:
            return

        snapshot[symbol] = Holding(
            spot_qty=target.quantity,
            contract_qty=target.quantity,
            contract_value=target.leg_value,
        )
        if rebuilding:
            report.rebuilt.append(symbol)
        else:
            report.opened.append(symbol)

    async def _open_pair(
        self, symbol: str, target: SizedTarget, report: CycleReport
    ) -> bool:
        """Open spot long then contract short, compensating on partial failure."""
        leverage = self._settings.default_leverage
        if not await self._exchange.set_leverage(symbol, leverage):
            logger.warning(
                "set_leverage_failed_continuing",
                symbol=symbol,
                leverage=leverage,
                error=self._exchange.get_last_error(),
            )

        # Dust too small to sell counts toward the spot leg.
        held = await self._exchange.get_spot_balance(symbol)
        if held >= self._precision.min_order_size(target.price):
            held = _ZERO

        spot_fee = await self._exchange.get_spot_fee_rate()
        buy_qty = self._precision.spot_buy_quantity(
            target.quantity - held, target.price, spot_fee
        )

        spot_result = await self._exchange.create_order(
            symbol, OrderSide.BUY, buy_qty, market=Market.SPOT
        )
        if not spot_result.success:
            await self._handle_order_failure(symbol, "open_spot", spot_result, report)
            return False

        # Spot buy fees are taken in the base coin.
        on_hand = held + buy_qty * (_ONE - spot_fee)
        contract_price = await self._exchange.get_contract_price(symbol)
        if contract_price <= 0:
            contract_price = target.price
        contract_qty = self._precision.quantize_contract(on_hand, contract_price)

        if contract_qty > 0:
            contract_result = await self._exchange.create_order(
                symbol, OrderSide.SELL, contract_qty, market=Market.LINEAR
            )
        else:
            contract_result = OrderResult(
                success=False, error=f"contract quantity rounds to zero ({on_hand})"
            )

        if not contract_result.success:
            await self._compensate_spot(symbol, on_hand, target.price)
            report.partial_failures.append(symbol)
            await self._handle_order_failure(symbol, "open_contract", contract_result, report)
            return False

        group = await self._trade_groups.store_trade_group(
            self._exchange_id,
            symbol,
            spot_result.order_id,
            contract_result.order_id,
            leverage,
        )
        logger.info(
            "pair_opened",
            symbol=symbol,
            spot_qty=str(buy_qty),
            contract_qty=str(contract_qty),
            value=str(target.value),
            trade_group=group.identifier,
        )
        return True

    async def _compensate_spot(self, symbol: str, on_hand: Decimal, price: Decimal) -> None:
        sell_qty = self._precision.quantize_spot(on_hand, price)
        logger.error(
            "partial_failure_compensating",
            symbol=symbol,
            sell_qty=str(sell_qty),
        )
        result = await self._exchange.create_order(
            symbol, OrderSide.SELL, sell_qty, market=Market.SPOT
        )
        if result.success:
            logger.info("compensation_success", symbol=symbol, quantity=str(sell_qty))
            return
        logger.critical(
            "residual_risk",
            symbol=symbol,
            unhedged_spot_qty=str(sell_qty),
            error=result.error or self._exchange.get_last_error(),
            action="MANUAL INTERVENTION REQUIRED",
        )

    async def _handle_order_failure(
        self,
        symbol: str,
        leg: str,
        result: OrderResult,
        report: CycleReport,
    ) -> None:
        message = result.error or self._exchange.get_last_error()
        logger.warning("order_failed", symbol=symbol, leg=leg, error=message)
        report.failures.setdefault(symbol, f"{leg}: {message}")

        if is_unsupported_symbol_error(message, self._error_patterns):
            if await self._unsupported.add_unsupported(symbol, message):
                report.unsupported_added.append(symbol)
            self._ranker.invalidate()

    async def _log_portfolio_status(self) -> None:
        positions = await self._exchange.get_positions()
        shorts = [p for p in positions if p.side is OrderSide.SELL]
        total_value = sum((p.position_value for p in shorts), Decimal("0"))
        total_pnl = sum((p.unrealized_pnl for p in shorts), Decimal("0"))
        equity = await self._exchange.get_total_equity()
        capacity = equity * self._settings.default_leverage
        utilization = total_value / capacity if capacity > 0 else Decimal("0")
        logger.info(
            "portfolio_status",
            pairs=len(shorts),
            symbols=sorted(p.symbol for p in shorts),
            total_contract_value=str(total_value),
            unrealized_pnl=str(total_pnl),
            equity=str(equity),
            utilization=str(utilization.quantize(Decimal("0.0001"))),
        )
