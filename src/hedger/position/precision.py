"""Price-tiered quantity rounding for spot and linear orders.

Step sizes shrink as price rises. The contract table is never finer than the
spot table at the same price, so a quantity valid for the contract leg is
always valid for the spot leg too.

All rounding goes through exchange/types.py helpers and stays in Decimal.
"""

from decimal import Decimal

from hedger.exceptions import InvalidPriceError
from hedger.exchange.types import round_to_step, round_up_to_step

# (minimum price, step), checked top to bottom
SPOT_STEP_TIERS: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("10000"), Decimal("0.00001")),
    (Decimal("1000"), Decimal("0.0001")),
    (Decimal("10"), Decimal("0.01")),
    (Decimal("0.1"), Decimal("0.1")),
)
SPOT_FALLBACK_STEP = Decimal("1")

CONTRACT_STEP_TIERS: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("10000"), Decimal("0.001")),
    (Decimal("1000"), Decimal("0.01")),
    (Decimal("10"), Decimal("0.1")),
    (Decimal("0.1"), Decimal("1")),
)
CONTRACT_FALLBACK_STEP = Decimal("100")


def _step_for(
    price: Decimal,
    tiers: tuple[tuple[Decimal, Decimal], ...],
    fallback: Decimal,
) -> Decimal:
    if price <= 0:
        raise InvalidPriceError(f"price must be positive, got {price}")
    for min_price, step in tiers:
        if price >= min_price:
            return step
    return fallback


class PrecisionRules:
    """Quantizes order quantities by price tier.

    Args:
        min_order_notional: Smallest order worth placing, in quote units.
    """

    def __init__(self, min_order_notional: Decimal = Decimal("5")) -> None:
        self._min_order_notional = min_order_notional

    def spot_step(self, price: Decimal) -> Decimal:
        return _step_for(price, SPOT_STEP_TIERS, SPOT_FALLBACK_STEP)

    def contract_step(self, price: Decimal) -> Decimal:
        return _step_for(price, CONTRACT_STEP_TIERS, CONTRACT_FALLBACK_STEP)

    def quantize_spot(self, quantity: Decimal, price: Decimal) -> Decimal:
        """Floor a spot quantity to its price-tier step.

        Raises:
            InvalidPriceError: If price <= 0.
        """
        return round_to_step(quantity, self.spot_step(price))

    def quantize_contract(self, quantity: Decimal, price: Decimal) -> Decimal:
        """Floor a contract quantity to its price-tier step.

        Raises:
            InvalidPriceError: If price <= 0.
        """
        return round_to_step(quantity, self.contract_step(price))

    def spot_buy_quantity(
        self, contract_qty: Decimal, price: Decimal, fee_rate: Decimal
    ) -> Decimal:
        """Spot buy size whose post-fee fill still covers ``contract_qty``.

        Bybit charges spot buy fees in the received coin, so the order is
        grossed up by ``1 / (1 - fee_rate)`` and rounded up to the spot step.
        The post-fee fill exceeds ``contract_qty`` by less than one spot step.
        """
        step = self.spot_step(price)
        if fee_rate >= 1:
            raise ValueError(f"fee rate must be below 1, got {fee_rate}")
        return round_up_to_step(contract_qty / (Decimal("1") - fee_rate), step)

    def min_order_size(self, price: Decimal) -> Decimal:
        """Smallest quantity worth ordering at ``price`` on either leg."""
        step = max(self.spot_step(price), self.contract_step(price))
        return round_up_to_step(self._min_order_notional / price, step)
