"""Persistence layer.

SQLite database management plus the trade-group, unsupported-symbol and
funding-score stores the reconciler writes to.
"""

from hedger.data.database import HedgeDatabase
from hedger.data.store import (
    FundingScoreLog,
    SqliteHedgeStore,
    TradeGroupStore,
    UnsupportedSymbolSet,
)

__all__ = [
    "FundingScoreLog",
    "HedgeDatabase",
    "SqliteHedgeStore",
    "TradeGroupStore",
    "UnsupportedSymbolSet",
]
