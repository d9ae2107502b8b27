"""Unlock schedule: which instruments open to trading, and when.

Built once per session from the admin settings and a session seed. The
schedule is a frozen model; host and clients that build it from the same
inputs get byte-identical JSON, and clients receive the host's copy rather
than rebuilding it.

Game year ``g`` maps to calendar year ``game_start_year + g - 1`` and game
month equals calendar month, so every unlock has one (game_year, month)
and one (calendar_year, month).
"""

from __future__ import annotations

import logging
from collections import defaultdict

import numpy as np
from pydantic import BaseModel, Field

from gamecore.catalog import (
    ANCHOR_INDEX_FUND,
    CATEGORY_INSTRUMENTS,
    DIGITAL_GOLD,
    FIXED_DEPOSIT,
    INSTRUMENTS,
    PHYSICAL_GOLD,
    SAVINGS_ACCOUNT,
    AssetCategory,
    has_data,
    tradeable_symbols,
)
from gamecore.config import load_config
from gamecore.models import AdminSettings

logger = logging.getLogger(__name__)

# Game years (relative) for categories unlocked by progression
_GOLD_GAME_YEAR = 2
_COMMODITY_GAME_YEAR = 3
_STOCKS_GAME_YEAR = 4

# Calendar years for categories unlocked by market history
_DIGITAL_GOLD_CALENDAR_YEAR = 2012
_INDEX_FUND_CALENDAR_YEAR = 2009
_SECOND_INDEX_FUND_CALENDAR_YEAR = 2015
_MUTUAL_FUND_CALENDAR_YEAR = 2017

_STOCKS_WITH_DATA = 2
_STOCKS_ANY = 1
_MUTUAL_FUNDS = 2


class UnlockEvent(BaseModel):
    asset_type: str
    category: AssetCategory
    asset_names: list[str]
    calendar_year: int
    calendar_month: int = Field(ge=1, le=12)
    game_year: int = Field(ge=1)

    @property
    def game_month(self) -> int:
        return self.calendar_month

    @property
    def point(self) -> tuple[int, int]:
        return (self.game_year, self.calendar_month)

    class Config:
        frozen = True


class UnlockSchedule(BaseModel):
    """Immutable timetable of unlock events keyed by game year."""

    game_start_year: int
    seed: int
    events: dict[int, list[UnlockEvent]] = Field(default_factory=dict)

    class Config:
        frozen = True

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def all_events(self) -> list[UnlockEvent]:
        return [e for year in sorted(self.events) for e in self.events[year]]

    def unlock_point(self, category: AssetCategory) -> tuple[int, int] | None:
        """Earliest (game_year, month) at which ``category`` opens, or None."""
        points = [e.point for e in self.all_events() if e.category == category]
        return min(points) if points else None

    def instrument_point(self, symbol: str) -> tuple[int, int] | None:
        points = [e.point for e in self.all_events() if symbol in e.asset_names]
        return min(points) if points else None

    def categories(self) -> list[AssetCategory]:
        """Categories with at least one unlock, in unlock order."""
        seen: dict[AssetCategory, None] = {}
        for event in sorted(self.all_events(), key=lambda e: e.point):
            seen.setdefault(event.category, None)
        return list(seen)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_unlocked(self, category: AssetCategory, game_year: int, month: int) -> bool:
        point = self.unlock_point(category)
        return point is not None and (game_year, month) >= point

    def is_unlocking_now(self, category: AssetCategory, game_year: int, month: int) -> bool:
        return self.unlock_point(category) == (game_year, month)

    def categories_unlocking_at(self, game_year: int, month: int) -> list[AssetCategory]:
        return [c for c in self.categories() if self.unlock_point(c) == (game_year, month)]

    def is_instrument_unlocked(self, symbol: str, game_year: int, month: int) -> bool:
        point = self.instrument_point(symbol)
        return point is not None and (game_year, month) >= point

    def unlocked_instruments(self, game_year: int, month: int) -> list[str]:
        """Tradeable symbols open at (game_year, month), sorted."""
        return sorted(
            name
            for e in self.all_events()
            if (game_year, month) >= e.point
            for name in e.asset_names
            if INSTRUMENTS[name].tradeable
        )

    def selected_symbols(self) -> list[str]:
        """Every tradeable symbol that unlocks at some point this session."""
        return sorted(
            name for e in self.all_events() for name in e.asset_names
            if INSTRUMENTS[name].tradeable
        )

    def calendar_year_for(self, game_year: int) -> int:
        return self.game_start_year + game_year - 1


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def _pick(rng: np.random.Generator, pool: list[str], n: int) -> list[str]:
    """Draw ``n`` distinct symbols from a sorted pool."""
    n = min(n, len(pool))
    if n == 0:
        return []
    idx = rng.choice(len(pool), size=n, replace=False)
    return [pool[int(i)] for i in idx]


def build_unlock_schedule(
    settings: AdminSettings,
    seed: int,
    disabled: list[AssetCategory] | None = None,
    total_years: int | None = None,
    no_unlock_last_years: int | None = None,
) -> UnlockSchedule:
    """Deterministically build the session's unlock schedule.

    Each instrument unlocks at max(its trigger, its first month of price
    data). Instruments of one category unlocking in the same month are
    grouped into one event. Unlocks after ``total_years - no_unlock_last_years``
    are dropped, as are disabled categories.
    """
    cfg = load_config()
    game_cfg = cfg.get("game", {})
    if disabled is None:
        disabled = list(cfg.get("categories", {}).get("disabled", []))
    if total_years is None:
        total_years = game_cfg.get("total_years", 20)
    if no_unlock_last_years is None:
        no_unlock_last_years = game_cfg.get("no_unlock_last_years", 3)

    rng = np.random.default_rng(seed)
    start = settings.game_start_year
    selected = set(settings.selected_categories) - set(disabled)

    def game_year_trigger(game_year: int) -> tuple[int, int]:
        return (start + game_year - 1, 1)

    def calendar_trigger(calendar_year: int) -> tuple[int, int]:
        return max((calendar_year, 1), (start, 1))

    # (calendar_year, month), category, symbol
    placements: list[tuple[tuple[int, int], AssetCategory, str]] = []

    def place(trigger: tuple[int, int], category: AssetCategory, symbols: list[str]) -> None:
        for symbol in symbols:
            placements.append((max(trigger, INSTRUMENTS[symbol].first_data), category, symbol))

    # Enum order, not selection order, fixes the sequence of RNG draws
    for category in AssetCategory:
        if category not in selected:
            continue
        pool = list(tradeable_symbols(category))

        if category == AssetCategory.BANKING:
            place((start, 1), category, [SAVINGS_ACCOUNT, FIXED_DEPOSIT])

        elif category == AssetCategory.GOLD:
            place(game_year_trigger(_GOLD_GAME_YEAR), category, [PHYSICAL_GOLD])
            place(calendar_trigger(_DIGITAL_GOLD_CALENDAR_YEAR), category, [DIGITAL_GOLD])

        elif category == AssetCategory.COMMODITIES:
            place(game_year_trigger(_COMMODITY_GAME_YEAR), category, _pick(rng, pool, 1))

        elif category == AssetCategory.STOCKS:
            trigger = game_year_trigger(_STOCKS_GAME_YEAR)
            with_data = [s for s in pool if has_data(s, *trigger)]
            fixed = _pick(rng, with_data, _STOCKS_WITH_DATA)
            rest = [s for s in pool if s not in fixed]
            place(trigger, category, fixed + _pick(rng, rest, _STOCKS_ANY))

        elif category == AssetCategory.INDEX_FUND:
            place(calendar_trigger(_INDEX_FUND_CALENDAR_YEAR), category, [ANCHOR_INDEX_FUND])
            others = [s for s in pool if s != ANCHOR_INDEX_FUND]
            place(calendar_trigger(_SECOND_INDEX_FUND_CALENDAR_YEAR), category, _pick(rng, others, 1))

        elif category == AssetCategory.MUTUAL_FUND:
            place(calendar_trigger(_MUTUAL_FUND_CALENDAR_YEAR), category, _pick(rng, pool, _MUTUAL_FUNDS))

        elif category in (AssetCategory.REIT, AssetCategory.FOREX):
            place((start, 1), category, _pick(rng, pool, 1))

        elif category == AssetCategory.CRYPTO:
            place((start, 1), category, pool)

    last_unlock_year = total_years - no_unlock_last_years
    grouped: dict[tuple[tuple[int, int], AssetCategory], list[str]] = defaultdict(list)
    for when, category, symbol in placements:
        game_year = when[0] - start + 1
        if game_year > last_unlock_year:
            logger.debug(
                "Dropping %s unlock at %d-%02d (game year %d > %d)",
                symbol, when[0], when[1], game_year, last_unlock_year,
            )
            continue
        grouped[(when, category)].append(symbol)

    category_order = {c: i for i, c in enumerate(AssetCategory)}
    events: dict[int, list[UnlockEvent]] = {}
    for (when, category), symbols in sorted(grouped.items(), key=lambda kv: (kv[0][0], category_order[kv[0][1]])):
        names = sorted(symbols)
        event = UnlockEvent(
            asset_type=names[0] if len(names) == 1 else category.value,
            category=category,
            asset_names=names,
            calendar_year=when[0],
            calendar_month=when[1],
            game_year=when[0] - start + 1,
        )
        events.setdefault(event.game_year, []).append(event)

    schedule = UnlockSchedule(game_start_year=start, seed=seed, events=events)
    logger.info(
        "Built unlock schedule: start=%d seed=%d events=%d categories=%s",
        start, seed, len(schedule.all_events()), [c.value for c in schedule.categories()],
    )
    return schedule


def generate_quiz_indices(
    seed: int,
    questions_per_category: int | None = None,
    categories: list[AssetCategory] | None = None,
) -> dict[AssetCategory, int]:
    """Pick one question index per category. Called once per session by the host."""
    if questions_per_category is None:
        questions_per_category = load_config().get("game", {}).get("quiz_questions_per_category", 5)
    rng = np.random.default_rng([seed, 1])
    cats = list(AssetCategory) if categories is None else categories
    draws = rng.integers(0, questions_per_category, size=len(list(AssetCategory)))
    order = {c: i for i, c in enumerate(AssetCategory)}
    return {c: int(draws[order[c]]) for c in cats}
