"""Funding-rate ranking of hedge candidates.

Scores each candidate by a weighted average of its mean funding rate over
several lookback windows, drops symbols whose recent direction disagrees
with that average, and keeps the top N by absolute score.

Scoring, for periods P_k with weights w_k over samples s_0 (newest) .. s_n:
  avg_k  = mean(finite samples in s_0 .. s_{P_k - 1})   (None if no samples)
  score  = sum(w_k * avg_k) / sum(w_k)                   (over k with avg_k)

The result is cached and only recomputed when the cache is empty or a
funding settlement is close, so positions are not churned between
settlements.
"""

from decimal import Decimal

from hedger.config import ScoringSettings
from hedger.data.store import FundingScoreLog, UnsupportedSymbolSet
from hedger.exchange.client import Exchange
from hedger.logging import get_logger
from hedger.market_data.settlement import SettlementClock
from hedger.models import RankedSet, RankedSymbol, WeightedScore

logger = get_logger(__name__)


def _sign(value: Decimal) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def weighted_score(
    symbol: str,
    samples: list[Decimal],
    periods: list[int],
    weights: list[Decimal],
) -> WeightedScore | None:
    """Compute the weighted funding score for one symbol.

    Args:
        symbol: Exchange id.
        samples: Funding rates, newest first. Non-finite values are ignored.
        periods: Lookback window lengths in samples.
        weights: One weight per period.

    Returns:
        WeightedScore, or None when no period has a valid sample.
    """
    finite = [s for s in samples if s.is_finite()]
    if not finite:
        return None

    averages: list[Decimal | None] = []
    weighted_sum = Decimal("0")
    realized_weight = Decimal("0")
    for period, weight in zip(periods, weights):
        window = [s for s in samples[:period] if s.is_finite()]
        if not window:
            averages.append(None)
            continue
        avg = sum(window, Decimal("0")) / len(window)
        averages.append(avg)
        weighted_sum += weight * avg
        realized_weight += weight

    if realized_weight == 0:
        return None

    return WeightedScore(
        symbol=symbol,
        score=weighted_sum / realized_weight,
        period_averages=tuple(averages),
        latest_rate=finite[0],
    )


def is_eligible(score: WeightedScore, reverse_funding_rate: bool) -> bool:
    """Filter a scored symbol.

    Rejects a negative latest rate unless reverse funding is allowed, and
    any score whose sign differs from the latest sample's sign.
    """
    if not reverse_funding_rate and score.latest_rate < 0:
        return False
    return _sign(score.score) == _sign(score.latest_rate)


class FundingRanker:
    """Ranks candidate symbols by weighted funding score.

    Args:
        exchange: Source of funding history.
        settings: Lookback periods and weights.
        unsupported: Persisted set of symbols the exchange rejected.
        clock: Settlement clock deciding when the cache may be refreshed.
        top_n: Maximum size of the ranked set.
        reverse_funding_rate: Allow symbols with a negative latest rate.
        score_log: Optional audit sink for each recomputed ranking.
    """

    def __init__(
        self,
        exchange: Exchange,
        settings: ScoringSettings,
        unsupported: UnsupportedSymbolSet,
        clock: SettlementClock,
        top_n: int,
        reverse_funding_rate: bool = False,
        score_log: FundingScoreLog | None = None,
    ) -> None:
        self._exchange = exchange
        self._settings = settings
        self._unsupported = unsupported
        self._clock = clock
        self._top_n = top_n
        self._reverse = reverse_funding_rate
        self._score_log = score_log
        self._cache: RankedSet = []

    @property
    def cached(self) -> RankedSet:
        return list(self._cache)

    def invalidate(self) -> None:
        """Force the next rank() call to recompute."""
        self._cache = []

    async def rank(self, candidates: list[str]) -> RankedSet:
        """Return the top-N symbols by |score|, from cache when allowed."""
        unsupported = await self._unsupported.get_unsupported()

        if self._cache and not self._clock.is_near_settlement():
            cached = [r for r in self._cache if r.symbol not in unsupported]
            logger.debug("ranking_from_cache", count=len(cached))
            return cached

        eligible = [s for s in candidates if s not in unsupported]
        history = await self._exchange.get_funding_history(eligible)

        scored: list[WeightedScore] = []
        for symbol in eligible:
            samples = history.get(symbol)
            if not samples:
                logger.debug("ranking_skipped_no_history", symbol=symbol)
                continue
            score = weighted_score(
                symbol, samples, self._settings.periods, self._settings.weights
            )
            if score is None:
                logger.debug("ranking_skipped_no_valid_samples", symbol=symbol)
                continue
            if not is_eligible(score, self._reverse):
                logger.debug(
                    "ranking_rejected",
                    symbol=symbol,
                    score=str(score.score),
                    latest_rate=str(score.latest_rate),
                )
                continue
            scored.append(score)

        scored.sort(key=lambda s: abs(s.score), reverse=True)
        top = scored[: self._top_n]
        ranked = [
            RankedSymbol(symbol=s.symbol, score=s.score, latest_rate=s.latest_rate)
            for s in top
        ]
        self._cache = ranked

        if self._score_log is not None and top:
            await self._score_log.record_funding_scores(top)

        logger.info(
            "ranking_complete",
            candidates=len(candidates),
            excluded_unsupported=len(candidates) - len(eligible),
            with_history=len(history),
            eligible=len(scored),
            ranked=[r.symbol for r in ranked],
        )
        return list(ranked)
