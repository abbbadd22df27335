"""Exchange layer -- Bybit integration via ccxt plus an in-memory paper exchange."""

from hedger.exchange.bybit_client import BybitExchange
from hedger.exchange.client import Exchange
from hedger.exchange.paper_exchange import PaperExchange, PaperOrder
from hedger.exchange.types import round_to_step, round_up_to_step

__all__ = [
    "BybitExchange",
    "Exchange",
    "PaperExchange",
    "PaperOrder",
    "round_to_step",
    "round_up_to_step",
]
