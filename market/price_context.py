"""Session-scoped view of current prices.

One ``PriceContext`` per session, passed explicitly to whoever needs
prices. It holds the latest price per symbol for the current calendar
month, remembers the last good value for each symbol so a failed refresh
never shows zero, and notifies subscribers on every update.

A disabled context (multiplayer before key exchange) answers ``None`` for
every symbol.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, Iterable

from market.price_feed import PriceSource

logger = logging.getLogger(__name__)

PriceListener = Callable[[dict[str, Decimal], int, int], None]


class Subscription:
    """Handle returned by :meth:`PriceContext.subscribe`. Call ``unsubscribe`` to detach."""

    def __init__(self, ctx: "PriceContext", listener: PriceListener):
        self._ctx = ctx
        self._listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._ctx._listeners.remove(self._listener)
            self.active = False


class PriceContext:
    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.calendar_year: int | None = None
        self.calendar_month: int | None = None
        self._current: dict[str, Decimal] = {}
        self._last_good: dict[str, Decimal] = {}
        self._listeners: list[PriceListener] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        """Stop serving prices and forget everything received so far."""
        self.enabled = False
        self._current.clear()
        self._last_good.clear()

    def subscribe(self, listener: PriceListener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(self, listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, symbol: str) -> Decimal | None:
        """Current price, else last good price, else None. Always None when disabled."""
        if not self.enabled:
            return None
        px = self._current.get(symbol)
        if px is not None:
            return px
        return self._last_good.get(symbol)

    def is_fresh(self, symbol: str) -> bool:
        """True when the symbol was priced for the current month (not carried over)."""
        return self.enabled and symbol in self._current

    def snapshot(self) -> dict[str, Decimal]:
        if not self.enabled:
            return {}
        merged = dict(self._last_good)
        merged.update(self._current)
        return merged

    __call__ = get

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update(self, prices: dict[str, Decimal | None], calendar_year: int, calendar_month: int) -> None:
        """Replace current prices for a new month. ``None`` entries keep the last good value."""
        if not self.enabled:
            logger.debug("Ignoring price update while disabled")
            return
        self.calendar_year, self.calendar_month = calendar_year, calendar_month
        self._current = {s: p for s, p in prices.items() if p is not None and p > 0}
        self._last_good.update(self._current)
        for listener in list(self._listeners):
            listener(dict(self._current), calendar_year, calendar_month)

    def refresh_from(
        self, source: PriceSource, symbols: Iterable[str], calendar_year: int, calendar_month: int,
    ) -> None:
        """Pull one month of prices directly from a local source (solo mode)."""
        prices = {s: source.get_price(s, calendar_year, calendar_month) for s in symbols}
        missing = sorted(s for s, p in prices.items() if p is None)
        if missing:
            logger.debug("No %d-%02d price for %s", calendar_year, calendar_month, missing)
        self.update(prices, calendar_year, calendar_month)
