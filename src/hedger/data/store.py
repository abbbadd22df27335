"""Storage capabilities and their SQLite implementation.

The reconciler depends on three small capabilities:
- TradeGroupStore: append-only audit trail of opened hedge pairs
- UnsupportedSymbolSet: symbols the exchange rejected, excluded from ranking
- FundingScoreLog: record of each recomputed ranking

SqliteHedgeStore implements all three over HedgeDatabase. Exchange queries,
not trade groups, are the source of truth for current holdings.

CRITICAL: Rates are stored as TEXT in SQLite, restored as Decimal on read.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal

from hedger.data.database import HedgeDatabase
from hedger.logging import get_logger
from hedger.models import TradeGroup, WeightedScore

logger = get_logger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class TradeGroupStore(ABC):
    """Append-only record of opened hedge pairs."""

    @abstractmethod
    async def store_trade_group(
        self,
        exchange_id: str,
        symbol: str,
        spot_order_id: str,
        futures_order_id: str,
        leverage: int,
    ) -> TradeGroup:
        ...

    @abstractmethod
    async def get_active_trade_groups(self) -> list[str]:
        """Identifiers of active groups, "EXCHANGE:SYMBOL:SPOT_FUTURES_LEVERAGE"."""
        ...

    @abstractmethod
    async def deactivate_trade_groups(self, symbol: str) -> int:
        """Mark every active group for ``symbol`` inactive. Returns rows changed."""
        ...

    @abstractmethod
    async def get_trade_groups(self, symbol: str | None = None) -> list[TradeGroup]:
        ...


class UnsupportedSymbolSet(ABC):
    """Persisted, append-only set of symbols the exchange does not support."""

    @abstractmethod
    async def get_unsupported(self) -> set[str]:
        ...

    @abstractmethod
    async def add_unsupported(self, symbol: str, reason: str = "") -> bool:
        """Add a symbol. Returns True if it was not already present."""
        ...


class FundingScoreLog(ABC):
    """Audit sink for ranked funding scores."""

    @abstractmethod
    async def record_funding_scores(self, scores: list[WeightedScore]) -> int:
        ...


class SqliteHedgeStore(TradeGroupStore, UnsupportedSymbolSet, FundingScoreLog):
    """SQLite-backed implementation of every storage capability.

    All SQL access goes through self._database.db (the aiosqlite Connection).

    Usage:
        async with HedgeDatabase("data/hedger.db") as database:
            store = SqliteHedgeStore(database)
            await store.add_unsupported("FOOUSDT", "symbol invalid")
    """

    def __init__(self, database: HedgeDatabase) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Trade groups
    # ──────────────────────────────────────────────

    async def store_trade_group(
        self,
        exchange_id: str,
        symbol: str,
        spot_order_id: str,
        futures_order_id: str,
        leverage: int,
    ) -> TradeGroup:
        created_at = _now_iso()
        await self._database.db.execute(
            "INSERT INTO trade_groups "
            "(exchange_id, symbol, spot_order_id, futures_order_id, leverage, active, created_at) "
            "VALUES (?, ?, ?, ?, ?, 1, ?)",
            (exchange_id, symbol, spot_order_id, futures_order_id, leverage, created_at),
        )
        await self._database.db.commit()

        group = TradeGroup(
            exchange_id=exchange_id,
            symbol=symbol,
            spot_order_id=spot_order_id,
            futures_order_id=futures_order_id,
            leverage=leverage,
            created_at=created_at,
        )
        logger.info("trade_group_stored", identifier=group.identifier)
        return group

    async def get_active_trade_groups(self) -> list[str]:
        groups = await self._select_groups("WHERE active = 1", ())
        return [g.identifier for g in groups]

    async def deactivate_trade_groups(self, symbol: str) -> int:
        cursor = await self._database.db.execute(
            "UPDATE trade_groups SET active = 0 WHERE symbol = ? AND active = 1",
            (symbol,),
        )
        await self._database.db.commit()
        if cursor.rowcount:
            logger.info("trade_groups_deactivated", symbol=symbol, count=cursor.rowcount)
        return cursor.rowcount

    async def get_trade_groups(self, symbol: str | None = None) -> list[TradeGroup]:
        if symbol is None:
            return await self._select_groups("", ())
        return await self._select_groups("WHERE symbol = ?", (symbol,))

    async def _select_groups(self, where: str, params: tuple) -> list[TradeGroup]:
        cursor = await self._database.db.execute(
            "SELECT exchange_id, symbol, spot_order_id, futures_order_id, "
            "leverage, created_at, active "
            f"FROM trade_groups {where} ORDER BY id",
            params,
        )
        rows = await cursor.fetchall()
        return [
            TradeGroup(
                exchange_id=row[0],
                symbol=row[1],
                spot_order_id=row[2],
                futures_order_id=row[3],
                leverage=row[4],
                created_at=row[5],
                active=bool(row[6]),
            )
            for row in rows
        ]

    # ──────────────────────────────────────────────
    # Unsupported symbols
    # ──────────────────────────────────────────────

    async def get_unsupported(self) -> set[str]:
        cursor = await self._database.db.execute("SELECT symbol FROM unsupported_symbols")
        rows = await cursor.fetchall()
        return {row[0] for row in rows}

    async def add_unsupported(self, symbol: str, reason: str = "") -> bool:
        cursor = await self._database.db.execute(
            "INSERT OR IGNORE INTO unsupported_symbols (symbol, reason, added_at) "
            "VALUES (?, ?, ?)",
            (symbol, reason, _now_iso()),
        )
        await self._database.db.commit()
        added = cursor.rowcount > 0
        if added:
            logger.warning("unsupported_symbol_added", symbol=symbol, reason=reason)
        return added

    # ──────────────────────────────────────────────
    # Funding scores
    # ──────────────────────────────────────────────

    async def record_funding_scores(self, scores: list[WeightedScore]) -> int:
        if not scores:
            return 0

        recorded_at = _now_iso()
        data = [
            (
                s.symbol,
                recorded_at,
                str(s.score),
                str(s.latest_rate),
                json.dumps([None if a is None else str(a) for a in s.period_averages]),
            )
            for s in scores
        ]
        cursor = await self._database.db.executemany(
            "INSERT OR IGNORE INTO funding_scores "
            "(symbol, recorded_at, score, latest_rate, period_averages) "
            "VALUES (?, ?, ?, ?, ?)",
            data,
        )
        await self._database.db.commit()
        logger.debug("funding_scores_recorded", count=len(scores))
        return cursor.rowcount

    async def get_funding_scores(self, symbol: str) -> list[WeightedScore]:
        """Recorded scores for ``symbol``, oldest first."""
        cursor = await self._database.db.execute(
            "SELECT symbol, score, latest_rate, period_averages "
            "FROM funding_scores WHERE symbol = ? ORDER BY recorded_at",
            (symbol,),
        )
        rows = await cursor.fetchall()
        return [
            WeightedScore(
                symbol=row[0],
                score=Decimal(row[1]),
                latest_rate=Decimal(row[2]),
                period_averages=tuple(
                    None if a is None else Decimal(a) for a in json.loads(row[3])
                ),
            )
            for row in rows
        ]
