"""Candidate symbol universe for ranking."""

import asyncio

from hedger.config import UniverseSettings
from hedger.logging import get_logger
from hedger.market_data.market_cap import MarketCapService

logger = get_logger(__name__)


def dedupe(symbols: list[str]) -> list[str]:
    """Drop duplicates and blanks, keeping first-seen order."""
    seen: set[str] = set()
    result = []
    for symbol in symbols:
        symbol = symbol.strip().upper()
        if symbol and symbol not in seen:
            seen.add(symbol)
            result.append(symbol)
    return result


class CandidateUniverse:
    """Produces the ordered list of symbols the ranker considers.

    Static mode returns the configured pairs. Market-cap mode asks CoinGecko
    for the top coins and falls back to the static pairs when that fails.

    Args:
        settings: Universe source and static pair list.
        market_cap: CoinGecko service, required for market-cap mode.
    """

    def __init__(
        self,
        settings: UniverseSettings,
        market_cap: MarketCapService | None = None,
    ) -> None:
        self._settings = settings
        self._market_cap = market_cap

    async def candidates(self) -> list[str]:
        if self._settings.source == "market_cap" and self._market_cap is not None:
            symbols = await asyncio.to_thread(
                self._market_cap.top_symbols, self._settings.market_cap_count
            )
            if symbols:
                return dedupe(symbols)
            logger.warning("market_cap_universe_empty_using_static")
        return dedupe(list(self._settings.pairs))
