"""Tests for funding-rate scoring and ranking."""

import random
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from hedger.config import ScoringSettings
from hedger.exchange.client import Exchange
from hedger.market_data.funding_ranker import FundingRanker, is_eligible, weighted_score
from hedger.market_data.settlement import SettlementClock
from hedger.models import WeightedScore

PERIODS = [8, 24, 72]
WEIGHTS = [Decimal("0.5"), Decimal("0.3"), Decimal("0.2")]
NAN = Decimal("NaN")


def _rates(*pairs: tuple[str, int]) -> list[Decimal]:
    """Build a newest-first history from (rate, count) runs."""
    history: list[Decimal] = []
    for rate, count in pairs:
        history.extend([Decimal(rate)] * count)
    return history


@pytest.fixture
def mock_exchange() -> AsyncMock:
    return AsyncMock(spec=Exchange)


def _ranker(
    exchange: AsyncMock,
    store,  # type: ignore[no-untyped-def]
    clock: SettlementClock,
    top_n: int = 5,
    reverse: bool = False,
) -> FundingRanker:
    return FundingRanker(
        exchange,
        ScoringSettings(periods=PERIODS, weights=WEIGHTS),
        unsupported=store,
        clock=clock,
        top_n=top_n,
        reverse_funding_rate=reverse,
        score_log=store,
    )


# ──────────────────────────────────────────────
# weighted_score / is_eligible
# ──────────────────────────────────────────────


def test_identical_samples_score_equals_rate() -> None:
    score = weighted_score("AUSDT", _rates(("0.001", 8)), PERIODS, WEIGHTS)
    assert score is not None
    assert score.score == Decimal("0.001")
    assert score.latest_rate == Decimal("0.001")
    assert is_eligible(score, reverse_funding_rate=False)


def test_weighted_average_over_periods() -> None:
    samples = _rates(("0.003", 8), ("0.001", 16))
    score = weighted_score("AUSDT", samples, PERIODS, WEIGHTS)
    assert score is not None
    p8 = Decimal("0.003")
    p24 = (Decimal("0.003") * 8 + Decimal("0.001") * 16) / 24
    expected = (Decimal("0.5") * p8 + Decimal("0.3") * p24 + Decimal("0.2") * p24) / 1
    assert abs(score.score - expected) < Decimal("1e-20")
    assert score.period_averages[0] == p8


def test_empty_period_does_not_dilute_score() -> None:
    samples = [NAN] * 8 + _rates(("0.002", 16))
    score = weighted_score("AUSDT", samples, PERIODS, WEIGHTS)
    assert score is not None
    assert score.period_averages[0] is None
    assert score.score == Decimal("0.002")
    assert score.latest_rate == Decimal("0.002")


def test_no_valid_samples_has_no_score() -> None:
    assert weighted_score("AUSDT", [], PERIODS, WEIGHTS) is None
    assert weighted_score("AUSDT", [NAN, NAN], PERIODS, WEIGHTS) is None


def _score(score: str, latest: str) -> WeightedScore:
    return WeightedScore("AUSDT", Decimal(score), (Decimal(score),), Decimal(latest))


def test_negative_latest_rejected_unless_reverse_allowed() -> None:
    s = _score("-0.001", "-0.001")
    assert is_eligible(s, reverse_funding_rate=False) is False
    assert is_eligible(s, reverse_funding_rate=True) is True


@pytest.mark.parametrize(
    "score, latest, eligible",
    [
        ("0.001", "0.002", True),
        ("-0.001", "0.002", False),  # trend reversing
        ("0", "0.001", False),  # zero score with nonzero latest
        ("0.001", "0", False),  # zero latest requires zero score
        ("0", "0", True),
    ],
)
def test_sign_guard(score: str, latest: str, eligible: bool) -> None:
    assert is_eligible(_score(score, latest), reverse_funding_rate=True) is eligible


# ──────────────────────────────────────────────
# FundingRanker.rank
# ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_rank_sorts_by_abs_score_and_truncates(
    mock_exchange: AsyncMock, store, far_from_settlement: SettlementClock  # type: ignore[no-untyped-def]
) -> None:
    mock_exchange.get_funding_history.return_value = {
        "AUSDT": _rates(("0.0001", 72)),
        "BUSDT": _rates(("0.0005", 72)),
        "CUSDT": _rates(("0.0003", 72)),
        "DUSDT": _rates(("-0.001", 72)),
        "EUSDT": [],
    }
    ranker = _ranker(mock_exchange, store, far_from_settlement, top_n=2)

    ranked = await ranker.rank(["AUSDT", "BUSDT", "CUSDT", "DUSDT", "EUSDT"])

    assert [r.symbol for r in ranked] == ["BUSDT", "CUSDT"]
    assert ranked[0].latest_rate == Decimal("0.0005")
    assert [s.symbol for s in store.scores] == ["BUSDT", "CUSDT"]


@pytest.mark.asyncio
async def test_rank_with_reverse_funding_keeps_negative_symbols(
    mock_exchange: AsyncMock, store, far_from_settlement: SettlementClock  # type: ignore[no-untyped-def]
) -> None:
    mock_exchange.get_funding_history.return_value = {
        "AUSDT": _rates(("0.0001", 72)),
        "DUSDT": _rates(("-0.001", 72)),
    }
    ranker = _ranker(mock_exchange, store, far_from_settlement, reverse=True)

    ranked = await ranker.rank(["AUSDT", "DUSDT"])

    assert [r.symbol for r in ranked] == ["DUSDT", "AUSDT"]


@pytest.mark.asyncio
async def test_rank_excludes_unsupported_before_fetching(
    mock_exchange: AsyncMock, store, far_from_settlement: SettlementClock  # type: ignore[no-untyped-def]
) -> None:
    await store.add_unsupported("BUSDT", "symbol invalid")
    mock_exchange.get_funding_history.return_value = {"AUSDT": _rates(("0.0001", 8))}
    ranker = _ranker(mock_exchange, store, far_from_settlement)

    ranked = await ranker.rank(["AUSDT", "BUSDT"])

    mock_exchange.get_funding_history.assert_awaited_once_with(["AUSDT"])
    assert [r.symbol for r in ranked] == ["AUSDT"]


@pytest.mark.asyncio
async def test_rank_returns_cache_away_from_settlement(
    mock_exchange: AsyncMock, store, far_from_settlement: SettlementClock  # type: ignore[no-untyped-def]
) -> None:
    mock_exchange.get_funding_history.return_value = {
        "AUSDT": _rates(("0.0001", 8)),
        "BUSDT": _rates(("0.0002", 8)),
    }
    ranker = _ranker(mock_exchange, store, far_from_settlement)

    first = await ranker.rank(["AUSDT", "BUSDT"])
    mock_exchange.get_funding_history.return_value = {"CUSDT": _rates(("0.01", 8))}
    second = await ranker.rank(["CUSDT"])

    assert second == first
    assert mock_exchange.get_funding_history.await_count == 1


@pytest.mark.asyncio
async def test_cached_ranking_is_refiltered_against_unsupported(
    mock_exchange: AsyncMock, store, far_from_settlement: SettlementClock  # type: ignore[no-untyped-def]
) -> None:
    mock_exchange.get_funding_history.return_value = {
        "AUSDT": _rates(("0.0001", 8)),
        "BUSDT": _rates(("0.0002", 8)),
    }
    ranker = _ranker(mock_exchange, store, far_from_settlement)
    await ranker.rank(["AUSDT", "BUSDT"])

    await store.add_unsupported("BUSDT")
    ranked = await ranker.rank(["AUSDT", "BUSDT"])

    assert [r.symbol for r in ranked] == ["AUSDT"]


@pytest.mark.asyncio
async def test_rank_recomputes_near_settlement(
    mock_exchange: AsyncMock, store, near_settlement: SettlementClock  # type: ignore[no-untyped-def]
) -> None:
    mock_exchange.get_funding_history.return_value = {"AUSDT": _rates(("0.0001", 8))}
    ranker = _ranker(mock_exchange, store, near_settlement)

    await ranker.rank(["AUSDT"])
    await ranker.rank(["AUSDT"])

    assert mock_exchange.get_funding_history.await_count == 2


@pytest.mark.asyncio
async def test_invalidate_forces_recompute(
    mock_exchange: AsyncMock, store, far_from_settlement: SettlementClock  # type: ignore[no-untyped-def]
) -> None:
    mock_exchange.get_funding_history.return_value = {"AUSDT": _rates(("0.0001", 8))}
    ranker = _ranker(mock_exchange, store, far_from_settlement)

    await ranker.rank(["AUSDT"])
    ranker.invalidate()
    await ranker.rank(["AUSDT"])

    assert mock_exchange.get_funding_history.await_count == 2


@pytest.mark.asyncio
async def test_empty_ranking_is_not_cached(
    mock_exchange: AsyncMock, store, far_from_settlement: SettlementClock  # type: ignore[no-untyped-def]
) -> None:
    mock_exchange.get_funding_history.return_value = {}
    ranker = _ranker(mock_exchange, store, far_from_settlement)

    assert await ranker.rank(["AUSDT"]) == []
    await ranker.rank(["AUSDT"])

    assert mock_exchange.get_funding_history.await_count == 2


@pytest.mark.asyncio
async def test_ranking_invariants_over_random_histories(
    mock_exchange: AsyncMock, store, near_settlement: SettlementClock  # type: ignore[no-untyped-def]
) -> None:
    rng = random.Random(7)
    top_n = 4
    ranker = _ranker(mock_exchange, store, near_settlement, top_n=top_n)

    for _ in range(25):
        history = {}
        for i in range(10):
            length = rng.choice([0, 1, 5, 8, 30, 80])
            samples = [
                NAN if rng.random() < 0.1 else Decimal(rng.randint(-30, 30)) / 10000
                for _ in range(length)
            ]
            history[f"S{i}USDT"] = samples
        mock_exchange.get_funding_history.return_value = history

        ranked = await ranker.rank(list(history))

        assert len(ranked) <= top_n
        magnitudes = [abs(r.score) for r in ranked]
        assert magnitudes == sorted(magnitudes, reverse=True)
        for entry in ranked:
            finite = [s for s in history[entry.symbol] if s.is_finite()]
            assert finite, "ranked a symbol with no valid samples"
            assert finite[0] >= 0
