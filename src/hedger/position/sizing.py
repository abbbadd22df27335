"""Funding-score-scaled position sizing.

Maps a funding score to a USD pair value, then converts it to a per-leg
quantity at the current spot price and checks that the quantized pair is still
worth opening.

The pair value is measured the same way BalanceEvaluator measures it: the sum
of both legs, or their average when the account nets spot against contract
margin. A freshly opened pair therefore lands inside [min, max].

Sizing flow:
1. Base target = min_position_value
2. If scaling: x = clamp(|score|, min_scaling_rate, max_scaling_rate) * scaling_factor
   target = base * (1 + ln(1 + x)), capped at max_position_value
3. per_leg = target / legs (legs = 1 with netting, else 2)
4. quantity = quantize_contract(per_leg / spot_price); the contract step is
   the coarser one, so both legs can hold exactly this quantity
5. value = quantity * spot_price * legs; below min_position_value -> 0
"""

from decimal import Decimal

from hedger.config import PositionSettings
from hedger.exchange.client import Exchange
from hedger.logging import get_logger
from hedger.models import SizedTarget
from hedger.position.precision import PrecisionRules

logger = get_logger(__name__)

_ZERO = Decimal("0")


class PositionSizer:
    """Calculates the target notional and quantity for a hedge pair.

    Args:
        exchange: Source of spot prices.
        settings: Min/max position value and scaling parameters.
        precision: Price-tier quantity rounding.
        spot_margin_netting: Pair value is the leg average instead of the sum.
    """

    def __init__(
        self,
        exchange: Exchange,
        settings: PositionSettings,
        precision: PrecisionRules,
        spot_margin_netting: bool = False,
    ) -> None:
        self._exchange = exchange
        self._settings = settings
        self._precision = precision
        self._legs = Decimal("1") if spot_margin_netting else Decimal("2")

    def scaled_value(self, score: Decimal) -> Decimal:
        """Target USD pair value for a score before price and rounding.

        Non-decreasing in |score| and never above max_position_value.
        """
        base = self._settings.min_position_value
        if not self._settings.position_scaling:
            return min(base, self._settings.max_position_value)

        rate = min(
            max(abs(score), self._settings.min_scaling_rate),
            self._settings.max_scaling_rate,
        )
        x = rate * self._settings.scaling_factor
        multiplier = Decimal("1") + (Decimal("1") + x).ln()
        return min(base * multiplier, self._settings.max_position_value)

    async def size(self, symbol: str, score: Decimal) -> SizedTarget:
        """Size a hedge pair at the current spot price.

        Returns:
            SizedTarget with value 0 when the pair should not be opened
            (no price, or the quantized value falls under the minimum).
        """
        price = await self._exchange.get_spot_price(symbol)
        if price <= 0:
            logger.warning("sizing_skipped_no_price", symbol=symbol)
            return SizedTarget(value=_ZERO, quantity=_ZERO, price=price)

        target = self.scaled_value(score)
        quantity = self._precision.quantize_contract(target / self._legs / price, price)
        value = quantity * price * self._legs

        if value < self._settings.min_position_value:
            logger.info(
                "sizing_below_minimum",
                symbol=symbol,
                target=str(target),
                quantized_value=str(value),
                min_position_value=str(self._settings.min_position_value),
            )
            return SizedTarget(value=_ZERO, quantity=_ZERO, price=price)

        logger.debug(
            "position_sized",
            symbol=symbol,
            score=str(score),
            target=str(target),
            quantity=str(quantity),
            value=str(value),
        )
        return SizedTarget(value=value, quantity=quantity, price=price)

    async def target_value(self, symbol: str, score: Decimal) -> Decimal:
        """USD value to hold for ``symbol`` (0 means do not trade)."""
        return (await self.size(symbol, score)).value
