"""Market data layer -- candidate universe, funding ranking and settlement timing."""

from hedger.market_data.funding_ranker import FundingRanker, weighted_score
from hedger.market_data.market_cap import MarketCapService
from hedger.market_data.settlement import SettlementClock
from hedger.market_data.universe import CandidateUniverse

__all__ = [
    "CandidateUniverse",
    "FundingRanker",
    "MarketCapService",
    "SettlementClock",
    "weighted_score",
]
