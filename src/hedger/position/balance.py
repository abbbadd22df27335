"""Balance evaluation for a hedge pair.

Decides whether rebuilding a pair is worth it. A pair that is out of balance
(quantity drift or value outside the configured range) is only rebuilt when
the market is calm enough and the expected funding income beats the
round-trip cost by the configured margin:

    need_balance = (not size_balanced or not value_in_range)
                   and price_diff <= max_price_diff
                   and depth_impact <= max_depth_impact
                   and expected_profit > estimated_cost * min_profit_ratio

Costs and depth are measured with a fixed probe of min_position_value
notional, so the gate does not depend on the eventual target size.

With PrecisionRules supplied, drift and range checks allow for what the
opener cannot trade away: a spot leg may exceed the contract leg by less than
one spot step after the fee-covering buy, and the two legs are marked at
different prices.
"""

from dataclasses import dataclass
from decimal import Decimal

from hedger.config import BalanceSettings, PositionSettings
from hedger.exchange.client import Exchange
from hedger.logging import get_logger
from hedger.models import BalanceCheckResult, OrderBookLevel
from hedger.position.precision import PrecisionRules

logger = get_logger(__name__)

_ZERO = Decimal("0")
_DAYS_PER_YEAR = Decimal("365")


@dataclass(frozen=True)
class DepthEstimate:
    """Result of walking one side of an order book."""

    impact: Decimal
    average_price: Decimal
    unfilled: Decimal


def estimate_depth(levels: list[OrderBookLevel], quantity: Decimal) -> DepthEstimate | None:
    """Walk ask levels to fill ``quantity``.

    Impact is the size-weighted mean of (level price - best ask) / best ask
    over the consumed levels. Returns None for an empty book.
    """
    if not levels or quantity <= 0:
        return None

    best = levels[0].price
    remaining = quantity
    filled = _ZERO
    weighted_deviation = _ZERO
    notional = _ZERO

    for level in levels:
        if remaining <= 0:
            break
        take = min(remaining, level.quantity)
        weighted_deviation += take * (level.price - best) / best
        notional += take * level.price
        filled += take
        remaining -= take

    if filled <= 0:
        return None
    return DepthEstimate(
        impact=weighted_deviation / filled,
        average_price=notional / filled,
        unfilled=max(remaining, _ZERO),
    )


class BalanceEvaluator:
    """Evaluates whether a hedge pair needs rebalancing.

    Args:
        exchange: Prices, order books, fees and funding rates.
        settings: Balance gate thresholds.
        position_settings: Min/max pair value.
        spot_margin_netting: Average spot and contract value instead of summing.
        precision: Spot lot sizes used as the drift and range tolerance.
    """

    def __init__(
        self,
        exchange: Exchange,
        settings: BalanceSettings,
        position_settings: PositionSettings,
        spot_margin_netting: bool = False,
        precision: PrecisionRules | None = None,
    ) -> None:
        self._exchange = exchange
        self._settings = settings
        self._position = position_settings
        self._netting = spot_margin_netting
        self._precision = precision

    def is_size_balanced(
        self, spot_qty: Decimal, contract_qty: Decimal, tolerance: Decimal = _ZERO
    ) -> bool:
        """Drift within size_threshold_ratio of the smaller leg, or within ``tolerance``."""
        size_diff = abs(spot_qty - contract_qty)
        allowed = self._settings.size_threshold_ratio * min(spot_qty, contract_qty)
        return size_diff <= max(allowed, tolerance)

    def _lot_tolerance(self, spot_price: Decimal) -> Decimal:
        if self._precision is None:
            return _ZERO
        return self._precision.spot_step(spot_price)

    async def evaluate(
        self,
        symbol: str,
        spot_qty: Decimal,
        contract_qty: Decimal,
        latest_rate: Decimal | None = None,
    ) -> BalanceCheckResult:
        """Evaluate one pair.

        Args:
            symbol: Exchange id, e.g. "BTCUSDT".
            spot_qty: Current spot holding.
            contract_qty: Current short contract size.
            latest_rate: Most recent funding sample; fetched when omitted.

        Returns:
            BalanceCheckResult. Missing prices or an empty book fail closed
            (need_balance=False).
        """
        spot_price = await self._exchange.get_spot_price(symbol)
        contract_price = await self._exchange.get_contract_price(symbol)
        if spot_price <= 0 or contract_price <= 0:
            size_balanced = self.is_size_balanced(spot_qty, contract_qty)
            logger.warning(
                "balance_check_no_price",
                symbol=symbol,
                spot_price=str(spot_price),
                contract_price=str(contract_price),
            )
            return BalanceCheckResult(need_balance=False, size_balanced=size_balanced)

        lot = self._lot_tolerance(spot_price)
        size_balanced = self.is_size_balanced(spot_qty, contract_qty, tolerance=lot)

        spot_value = spot_qty * spot_price
        contract_value = contract_qty * contract_price
        # Spot lot residue plus the basis between the two marks.
        slack = lot * spot_price + abs(contract_price - spot_price) * contract_qty
        if self._netting:
            pair_value = (spot_value + contract_value) / 2
            slack = slack / 2
        else:
            pair_value = spot_value + contract_value
        value_in_range = (
            self._position.min_position_value - slack
            <= pair_value
            <= self._position.max_position_value + slack
        )

        price_diff = abs(spot_price - contract_price) / spot_price

        probe_notional = self._position.min_position_value
        probe_qty = probe_notional / spot_price
        spot_depth = estimate_depth(
            await self._exchange.get_spot_order_book(symbol), probe_qty
        )
        contract_depth = estimate_depth(
            await self._exchange.get_contract_order_book(symbol), probe_qty
        )
        if spot_depth is None or contract_depth is None:
            logger.warning(
                "balance_check_empty_order_book",
                symbol=symbol,
                spot_book=spot_depth is not None,
                contract_book=contract_depth is not None,
            )
            return BalanceCheckResult(
                need_balance=False,
                price_diff=price_diff,
                size_balanced=size_balanced,
                value_in_range=value_in_range,
            )
        if spot_depth.unfilled > 0 or contract_depth.unfilled > 0:
            logger.warning(
                "order_book_too_thin",
                symbol=symbol,
                probe_qty=str(probe_qty),
                spot_unfilled=str(spot_depth.unfilled),
                contract_unfilled=str(contract_depth.unfilled),
            )
        depth_impact = max(spot_depth.impact, contract_depth.impact)

        spot_notional = probe_qty * spot_depth.average_price
        contract_notional = probe_qty * contract_depth.average_price
        spot_fee = await self._exchange.get_spot_fee_rate()
        contract_fee = await self._exchange.get_contract_fee_rate()
        estimated_cost = (
            spot_notional * spot_fee
            + contract_notional * contract_fee
            + (spot_notional + contract_notional) * self._settings.slippage
        )

        if latest_rate is None:
            latest_rate = await self._exchange.get_current_funding_rate(symbol)
        annualized = abs(
            latest_rate * self._settings.settlements_per_day * _DAYS_PER_YEAR
        )
        expected_profit = (
            probe_notional
            * annualized
            * self._settings.funding_holding_days
            / _DAYS_PER_YEAR
        )

        need_balance = (
            (not size_balanced or not value_in_range)
            and price_diff <= self._settings.max_price_diff
            and depth_impact <= self._settings.max_depth_impact
            and expected_profit > estimated_cost * self._settings.min_profit_ratio
        )

        logger.debug(
            "balance_evaluated",
            symbol=symbol,
            need_balance=need_balance,
            size_balanced=size_balanced,
            value_in_range=value_in_range,
            pair_value=str(pair_value),
            price_diff=str(price_diff),
            depth_impact=str(depth_impact),
            estimated_cost=str(estimated_cost),
            expected_profit=str(expected_profit),
        )
        return BalanceCheckResult(
            need_balance=need_balance,
            price_diff=price_diff,
            depth_impact=depth_impact,
            estimated_cost=estimated_cost,
            expected_profit=expected_profit,
            size_balanced=size_balanced,
            value_in_range=value_in_range,
        )
