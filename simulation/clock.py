"""GameClock: month/year counter for a compressed 20-year session.

Usage::

    clock = GameClock(start_calendar_year=2005, month_duration_ms=2000)
    while not clock.is_game_complete():
        clock.sleep_for_tick()
        clock.tick()
"""

from __future__ import annotations

import asyncio
import time


class GameClock:
    """Simulated clock that advances one game month per tick.

    Parameters
    ----------
    start_calendar_year : int
        Calendar year that game year 1 maps to.
    total_years : int
        Length of the game in years (default 20).
    month_duration_ms : int
        Wall-clock milliseconds per game month at speed 1.0.
    speed : float
        Wall-clock compression factor. Only affects ``sleep_for_tick()``;
        the clock always advances exactly one month per ``tick()``.
    """

    def __init__(
        self,
        start_calendar_year: int,
        total_years: int = 20,
        month_duration_ms: int = 2000,
        speed: float = 1.0,
    ) -> None:
        self.start_calendar_year = start_calendar_year
        self.total_years = total_years
        self.month_duration_ms = month_duration_ms
        self.speed = speed
        self._year = 1
        self._month = 1
        self._tick_count = 0

    # ------------------------------------------------------------------
    # Time accessors
    # ------------------------------------------------------------------

    @property
    def year(self) -> int:
        return self._year

    @property
    def month(self) -> int:
        return self._month

    @property
    def calendar_year(self) -> int:
        return self.start_calendar_year + self._year - 1

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def elapsed_months(self) -> int:
        return (self._year - 1) * 12 + (self._month - 1)

    @property
    def position(self) -> tuple[int, int]:
        return (self._year, self._month)

    # ------------------------------------------------------------------
    # Time control
    # ------------------------------------------------------------------

    def is_game_complete(self) -> bool:
        """True on the final month; the next tick would run past the end."""
        return (self._year, self._month) >= (self.total_years, 12)

    def tick(self) -> tuple[int, int]:
        """Advance one month and return the new (year, month)."""
        if self.is_game_complete():
            raise RuntimeError("clock is at the final month")
        if self._month == 12:
            self._year += 1
            self._month = 1
        else:
            self._month += 1
        self._tick_count += 1
        return self.position

    def restore(self, year: int, month: int, tick_count: int) -> None:
        """Jump to a known position (resync / resume from a snapshot)."""
        self._year, self._month, self._tick_count = year, month, tick_count

    @property
    def tick_seconds(self) -> float:
        return self.month_duration_ms / 1000.0 / self.speed

    def sleep_for_tick(self) -> None:
        """Sleep for the wall-clock duration of one tick (respects speed)."""
        time.sleep(self.tick_seconds)

    async def async_sleep_for_tick(self) -> None:
        await asyncio.sleep(self.tick_seconds)
