"""Funding settlement awareness.

Settlement times are "HH:MM" strings in UTC. Distances wrap around midnight,
so 23:50 is ten minutes from 00:00.
"""

from collections.abc import Callable
from datetime import datetime, timezone

from hedger.exceptions import ConfigurationError

MINUTES_PER_DAY = 1440


def parse_settlement_time(value: str) -> int:
    """Parse "HH:MM" into minutes after midnight.

    Raises:
        ConfigurationError: If the value is not a valid 24-hour time.
    """
    try:
        hours_text, minutes_text = value.strip().split(":")
        hours, minutes = int(hours_text), int(minutes_text)
    except ValueError as exc:
        raise ConfigurationError(f"invalid settlement time {value!r}") from exc
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ConfigurationError(f"invalid settlement time {value!r}")
    return hours * 60 + minutes


def circular_distance(a: int, b: int) -> int:
    """Minutes between two times of day, the short way around the clock."""
    delta = abs(a - b) % MINUTES_PER_DAY
    return min(delta, MINUTES_PER_DAY - delta)


def is_near_settlement(
    minute_of_day: int, settlement_minutes: list[int], window_minutes: int
) -> bool:
    return any(
        circular_distance(minute_of_day, s) <= window_minutes
        for s in settlement_minutes
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SettlementClock:
    """Answers "are we inside a pre-settlement window right now?".

    Args:
        settlement_times_utc: Settlement times as "HH:MM" strings.
        pre_settlement_minutes: Window on either side of each settlement.
        now: Clock returning an aware UTC datetime (injectable for tests).
    """

    def __init__(
        self,
        settlement_times_utc: list[str],
        pre_settlement_minutes: int,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._settlements = [parse_settlement_time(t) for t in settlement_times_utc]
        self._window = pre_settlement_minutes
        self._now = now

    def minute_of_day(self) -> int:
        current = self._now().astimezone(timezone.utc)
        return current.hour * 60 + current.minute

    def is_near_settlement(self) -> bool:
        return is_near_settlement(self.minute_of_day(), self._settlements, self._window)

    def minutes_to_next_settlement(self) -> int:
        """Minutes until the next settlement (0 if one is happening now)."""
        if not self._settlements:
            return MINUTES_PER_DAY
        current = self.minute_of_day()
        return min((s - current) % MINUTES_PER_DAY for s in self._settlements)
