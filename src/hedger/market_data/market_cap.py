"""CoinGecko top-by-market-cap source for the candidate universe.

Fetches the largest coins by market cap via the CoinGecko free API and maps
them to Bybit USDT pair ids ("bitcoin" -> "BTCUSDT"). Uses urllib.request
(stdlib), called from a worker thread by the async universe.

Results are cached in memory with a configurable TTL (default 1 hour)
since market cap rankings change slowly.
"""

import json
import time
import urllib.error
import urllib.request

import structlog

logger = structlog.get_logger(__name__)

# Stablecoins and wrapped assets never make sense as a funding hedge.
EXCLUDED_COINS = frozenset(
    {"USDT", "USDC", "DAI", "FDUSD", "TUSD", "USDE", "USDS", "PYUSD", "WBTC", "STETH", "WSTETH", "WETH"}
)

_COINGECKO_MARKETS_URL = "https://api.coingecko.com/api/v3/coins/markets"


class MarketCapService:
    """Fetches and caches the top coins by market cap from CoinGecko.

    Args:
        cache_ttl_seconds: How long to cache results (default 3600 = 1 hour).
        api_key: Optional CoinGecko demo API key for higher rate limits.
        quote_currency: Quote appended to each coin to form a pair id.
    """

    def __init__(
        self,
        cache_ttl_seconds: int = 3600,
        api_key: str | None = None,
        quote_currency: str = "USDT",
    ):
        self._cache: list[str] = []
        self._cache_count = 0
        self._cache_time: float = 0
        self._ttl = cache_ttl_seconds
        self._api_key = api_key
        self._quote = quote_currency

    def _is_cache_valid(self, count: int) -> bool:
        return (
            bool(self._cache)
            and self._cache_count >= count
            and time.time() - self._cache_time < self._ttl
        )

    def _fetch_coin_symbols(self, count: int) -> list[str]:
        """Fetch coin tickers ordered by market cap, largest first."""
        # over-fetch so excluded stablecoins do not shrink the result
        per_page = min(250, count + len(EXCLUDED_COINS))
        url = (
            f"{_COINGECKO_MARKETS_URL}"
            f"?vs_currency=usd&order=market_cap_desc&per_page={per_page}&page=1"
        )
        if self._api_key:
            url += f"&x_cg_demo_api_key={self._api_key}"

        headers = {"Accept": "application/json", "User-Agent": "FundingHedger/1.0"}
        req = urllib.request.Request(url, headers=headers)

        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                data = json.loads(resp.read())
        except (urllib.error.URLError, TimeoutError, ValueError) as e:
            logger.warning("coingecko_fetch_error", error=str(e))
            return []
        return [str(item.get("symbol", "")).upper() for item in data if item.get("symbol")]

    def top_symbols(self, count: int) -> list[str]:
        """Return up to ``count`` pair ids ordered by market cap.

        Returns the stale cache (or an empty list) if CoinGecko is unreachable.
        """
        if self._is_cache_valid(count):
            return self._cache[:count]

        coins = self._fetch_coin_symbols(count)
        if not coins:
            return self._cache[:count]

        pairs = [f"{coin}{self._quote}" for coin in coins if coin not in EXCLUDED_COINS]
        self._cache = pairs
        self._cache_count = count
        self._cache_time = time.time()

        logger.info("market_cap_ranking_loaded", total=len(pairs), requested=count)
        return pairs[:count]
