"""Tests for HedgeDatabase and SqliteHedgeStore.

Uses a temporary SQLite file per test.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from hedger.data.database import SCHEMA_VERSION, HedgeDatabase
from hedger.data.store import SqliteHedgeStore
from hedger.exceptions import StorageError
from hedger.models import WeightedScore


@pytest_asyncio.fixture
async def database(tmp_path):  # type: ignore[no-untyped-def]
    db = HedgeDatabase(str(tmp_path / "nested" / "hedger.db"))
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def sqlite_store(database: HedgeDatabase) -> SqliteHedgeStore:
    return SqliteHedgeStore(database)


@pytest.mark.asyncio
async def test_schema_created(database: HedgeDatabase) -> None:
    cursor = await database.db.execute("SELECT version FROM schema_version")
    assert await cursor.fetchone() == (SCHEMA_VERSION,)

    cursor = await database.db.execute("PRAGMA journal_mode")
    assert (await cursor.fetchone())[0] == "wal"


def test_unconnected_database_raises_storage_error(tmp_path) -> None:  # type: ignore[no-untyped-def]
    db = HedgeDatabase(str(tmp_path / "x.db"))
    with pytest.raises(StorageError):
        _ = db.db


@pytest.mark.asyncio
async def test_context_manager(tmp_path) -> None:  # type: ignore[no-untyped-def]
    async with HedgeDatabase(str(tmp_path / "ctx.db")) as db:
        store = SqliteHedgeStore(db)
        assert await store.get_unsupported() == set()
    with pytest.raises(StorageError):
        _ = db.db


@pytest.mark.asyncio
async def test_trade_group_identifiers(sqlite_store: SqliteHedgeStore) -> None:
    group = await sqlite_store.store_trade_group("BYBIT", "BTCUSDT", "s1", "f1", 2)

    assert group.identifier == "BYBIT:BTCUSDT:s1_f1_2"
    assert group.created_at
    assert await sqlite_store.get_active_trade_groups() == ["BYBIT:BTCUSDT:s1_f1_2"]


@pytest.mark.asyncio
async def test_deactivate_keeps_history(sqlite_store: SqliteHedgeStore) -> None:
    await sqlite_store.store_trade_group("BYBIT", "BTCUSDT", "s1", "f1", 1)
    await sqlite_store.store_trade_group("BYBIT", "ETHUSDT", "s2", "f2", 1)

    assert await sqlite_store.deactivate_trade_groups("BTCUSDT") == 1
    assert await sqlite_store.deactivate_trade_groups("BTCUSDT") == 0

    assert await sqlite_store.get_active_trade_groups() == ["BYBIT:ETHUSDT:s2_f2_1"]
    history = await sqlite_store.get_trade_groups("BTCUSDT")
    assert len(history) == 1
    assert history[0].active is False
    assert len(await sqlite_store.get_trade_groups()) == 2


@pytest.mark.asyncio
async def test_unsupported_set_is_idempotent(sqlite_store: SqliteHedgeStore) -> None:
    assert await sqlite_store.add_unsupported("FOOUSDT", "symbol invalid") is True
    assert await sqlite_store.add_unsupported("FOOUSDT", "again") is False
    assert await sqlite_store.get_unsupported() == {"FOOUSDT"}


@pytest.mark.asyncio
async def test_unsupported_set_survives_reconnect(tmp_path) -> None:  # type: ignore[no-untyped-def]
    path = str(tmp_path / "persist.db")
    async with HedgeDatabase(path) as db:
        await SqliteHedgeStore(db).add_unsupported("FOOUSDT")
    async with HedgeDatabase(path) as db:
        assert await SqliteHedgeStore(db).get_unsupported() == {"FOOUSDT"}


@pytest.mark.asyncio
async def test_funding_scores_round_trip_decimals(sqlite_store: SqliteHedgeStore) -> None:
    score = WeightedScore(
        symbol="BTCUSDT",
        score=Decimal("0.000123"),
        period_averages=(Decimal("0.0002"), None, Decimal("0.0001")),
        latest_rate=Decimal("0.00015"),
    )
    assert await sqlite_store.record_funding_scores([score]) == 1
    assert await sqlite_store.record_funding_scores([]) == 0

    assert await sqlite_store.get_funding_scores("BTCUSDT") == [score]
