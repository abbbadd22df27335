"""Exchange-specific helpers: step rounding, symbol mapping, Decimal parsing.

All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from decimal import ROUND_CEILING, Decimal, InvalidOperation


def round_to_step(value: Decimal, step: Decimal) -> Decimal:
    """Round a value down to the nearest step increment.

    Uses integer division to ensure we always round DOWN (never up),
    which prevents exceeding available balance or position limits.

    Args:
        value: The raw quantity to round (non-negative).
        step: The minimum increment (e.g., 0.001 for BTC).

    Returns:
        The value rounded down to the nearest step.
    """
    return (value // step) * step


def round_up_to_step(value: Decimal, step: Decimal) -> Decimal:
    """Round a value up to the nearest step increment."""
    return (value / step).to_integral_value(rounding=ROUND_CEILING) * step


def to_decimal(value: object, default: Decimal = Decimal("0")) -> Decimal:
    """Convert an exchange payload value to Decimal via str().

    Returns ``default`` for None, empty strings and unparseable values.
    """
    if value is None or value == "":
        return default
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default
    if not result.is_finite():
        return default
    return result


def base_coin(symbol: str, quote: str = "USDT") -> str:
    """Return the base coin of an exchange id ("BTCUSDT" -> "BTC")."""
    if symbol.endswith(quote) and len(symbol) > len(quote):
        return symbol[: -len(quote)]
    return symbol


def spot_market_symbol(symbol: str, quote: str = "USDT") -> str:
    """Map an exchange id to a ccxt unified spot symbol ("BTCUSDT" -> "BTC/USDT")."""
    return f"{base_coin(symbol, quote)}/{quote}"


def linear_market_symbol(symbol: str, quote: str = "USDT") -> str:
    """Map an exchange id to a ccxt unified linear perpetual ("BTCUSDT" -> "BTC/USDT:USDT")."""
    return f"{base_coin(symbol, quote)}/{quote}:{quote}"
