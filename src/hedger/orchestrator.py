"""Outer control loop for the hedge reconciler.

Runs one reconciliation cycle at a time under a lock, then sleeps for the
configured interval. A failing cycle is logged and the loop carries on.
Stopping does not touch open positions; the pairs stay hedged.
"""

import asyncio

from hedger.config import TradingSettings
from hedger.logging import bind_cycle, get_logger
from hedger.market_data.settlement import SettlementClock
from hedger.models import CycleReport
from hedger.reconciler import HedgeReconciler

logger = get_logger(__name__)

_ERROR_BACKOFF_SECONDS = 10.0
_MIN_GATED_SLEEP_SECONDS = 60.0


class Orchestrator:
    """Schedules reconciliation cycles.

    Args:
        reconciler: Performs one pass per cycle.
        settings: Check interval and settlement gating flag.
        clock: Settlement clock, used when cycles are gated to settlement windows.
        pre_settlement_minutes: Width of the settlement window.
    """

    def __init__(
        self,
        reconciler: HedgeReconciler,
        settings: TradingSettings,
        clock: SettlementClock,
        pre_settlement_minutes: int = 30,
    ) -> None:
        self._reconciler = reconciler
        self._settings = settings
        self._clock = clock
        self._window = pre_settlement_minutes
        self._running = False
        self._stop_event = asyncio.Event()
        self._cycle_lock = asyncio.Lock()
        self._cycle_count = 0
        self._last_report: CycleReport | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    async def start(self) -> None:
        """Run the loop until stop() is called."""
        logger.info(
            "orchestrator_starting",
            mode=self._settings.mode,
            interval_minutes=self._settings.check_interval_minutes,
            settlement_gated=self._settings.trade_only_near_settlement,
        )
        self._running = True
        self._stop_event.clear()
        try:
            await self._run_loop()
        finally:
            self._running = False
            logger.info("orchestrator_stopped", cycles=self._cycle_count)

    async def stop(self) -> None:
        """Signal the loop to stop after the current cycle."""
        logger.info("orchestrator_stopping_gracefully")
        self._running = False
        self._stop_event.set()

    async def run_once(self) -> CycleReport:
        """Run a single cycle under the cycle lock."""
        async with self._cycle_lock:
            self._cycle_count += 1
            bind_cycle(self._cycle_count)
            report = await self._reconciler.run_cycle()
            self._last_report = report
            return report

    async def _run_loop(self) -> None:
        while self._running:
            try:
                if self._settings.trade_only_near_settlement and not self._clock.is_near_settlement():
                    delay = self._seconds_until_window()
                    logger.info("cycle_deferred_until_settlement", sleep_seconds=delay)
                else:
                    await self.run_once()
                    delay = self._settings.check_interval_minutes * 60
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("orchestrator_cycle_error", error=str(e), exc_info=True)
                delay = _ERROR_BACKOFF_SECONDS
            await self._sleep(delay)

    def _seconds_until_window(self) -> float:
        minutes = self._clock.minutes_to_next_settlement() - self._window
        seconds = max(_MIN_GATED_SLEEP_SECONDS, minutes * 60.0)
        return min(seconds, self._settings.check_interval_minutes * 60.0)

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early if stop() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
