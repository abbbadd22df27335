"""Entry point for the funding-rate hedge reconciler.

Wires all components together and starts the orchestrator.
Handles SIGINT/SIGTERM for graceful shutdown.

Component wiring order (in _build_components):
1. Exchange (BybitExchange, wrapped by PaperExchange in paper mode)
2. HedgeDatabase + SqliteHedgeStore (trade groups, unsupported symbols)
3. SettlementClock
4. CandidateUniverse (static list or CoinGecko top market caps)
5. FundingRanker
6. PrecisionRules, PositionSizer, BalanceEvaluator
7. HedgeReconciler
8. Orchestrator
"""

import asyncio
import signal
from typing import Any

from hedger.config import AppSettings, load_settings
from hedger.data.database import HedgeDatabase
from hedger.data.store import SqliteHedgeStore
from hedger.exchange.bybit_client import BybitExchange
from hedger.exchange.client import Exchange
from hedger.exchange.paper_exchange import PaperExchange
from hedger.logging import get_logger, setup_logging
from hedger.market_data.funding_ranker import FundingRanker
from hedger.market_data.market_cap import MarketCapService
from hedger.market_data.settlement import SettlementClock
from hedger.market_data.universe import CandidateUniverse
from hedger.orchestrator import Orchestrator
from hedger.position.balance import BalanceEvaluator
from hedger.position.precision import PrecisionRules
from hedger.position.sizing import PositionSizer
from hedger.reconciler import HedgeReconciler


def _build_exchange(settings: AppSettings) -> Exchange:
    live = BybitExchange(
        settings.exchange,
        fee_settings=settings.fees,
        history_limit=max(settings.scoring.periods),
        max_concurrent_requests=settings.scoring.max_concurrent_requests,
    )
    if settings.trading.mode == "live":
        return live
    return PaperExchange(
        fee_settings=settings.fees,
        market_data=live,
        quote_currency=settings.exchange.quote_currency,
        initial_quote_balance=settings.trading.paper_virtual_equity,
    )


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all components from settings.

    Note: Does NOT connect the exchange or the database -- that happens in run().
    """
    exchange = _build_exchange(settings)
    database = HedgeDatabase(settings.storage.db_path)
    store = SqliteHedgeStore(database)

    clock = SettlementClock(
        settings.scoring.settlement_times_utc,
        settings.scoring.pre_settlement_minutes,
    )

    market_cap = None
    if settings.universe.source == "market_cap":
        market_cap = MarketCapService(
            api_key=settings.universe.coingecko_api_key,
            quote_currency=settings.exchange.quote_currency,
        )
    universe = CandidateUniverse(settings.universe, market_cap)

    ranker = FundingRanker(
        exchange,
        settings.scoring,
        unsupported=store,
        clock=clock,
        top_n=settings.trading.top_pairs_count,
        reverse_funding_rate=settings.trading.reverse_funding_rate,
        score_log=store,
    )

    precision = PrecisionRules(settings.position.min_order_notional)
    netting = settings.trading.spot_margin_netting
    sizer = PositionSizer(exchange, settings.position, precision, spot_margin_netting=netting)
    evaluator = BalanceEvaluator(
        exchange,
        settings.balance,
        settings.position,
        spot_margin_netting=netting,
        precision=precision,
    )

    reconciler = HedgeReconciler(
        exchange=exchange,
        universe=universe,
        ranker=ranker,
        sizer=sizer,
        evaluator=evaluator,
        precision=precision,
        trade_groups=store,
        unsupported=store,
        settings=settings.trading,
        unsupported_error_patterns=settings.universe.unsupported_error_patterns,
        exchange_id=settings.exchange.exchange_id,
        quote_currency=settings.exchange.quote_currency,
        min_position_value=settings.position.min_position_value,
        max_position_value=settings.position.max_position_value,
    )

    orchestrator = Orchestrator(
        reconciler,
        settings.trading,
        clock,
        pre_settlement_minutes=settings.scoring.pre_settlement_minutes,
    )

    return {
        "exchange": exchange,
        "database": database,
        "store": store,
        "ranker": ranker,
        "reconciler": reconciler,
        "orchestrator": orchestrator,
    }


def _setup_signal_handlers(orchestrator: Orchestrator) -> None:
    """Register SIGINT/SIGTERM for graceful stop.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("hedger.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        asyncio.create_task(orchestrator.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


async def _seed_unsupported(store: SqliteHedgeStore, symbols: list[str]) -> None:
    for symbol in symbols:
        await store.add_unsupported(symbol.strip().upper(), "configured")


async def run() -> None:
    """Run the hedge reconciler until signalled."""
    settings = load_settings()

    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("hedger.main")

    components = _build_components(settings)
    _setup_signal_handlers(components["orchestrator"])

    logger.info(
        "starting_hedger",
        mode=settings.trading.mode,
        top_pairs=settings.trading.top_pairs_count,
        leverage=settings.trading.default_leverage,
        universe=settings.universe.source,
        min_position_value=str(settings.position.min_position_value),
        max_position_value=str(settings.position.max_position_value),
    )

    try:
        await components["database"].connect()
        await _seed_unsupported(components["store"], settings.universe.unsupported_symbols)
        await components["exchange"].connect()
        await components["orchestrator"].start()
    finally:
        await components["exchange"].close()
        await components["database"].close()
        logger.info("hedger_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
