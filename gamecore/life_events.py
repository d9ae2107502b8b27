"""Random life events: windfalls and emergencies that hit pocket cash.

Each player gets their own set, drawn once at session start from a seeded
generator. Events never land in a month that opens with an asset unlock and
never share a month with another event for the same player.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable

import numpy as np

from gamecore.models import LifeEvent

logger = logging.getLogger(__name__)

_LOSSES: list[tuple[str, int]] = [
    ("House robbery during Diwali", -30000),
    ("Family medical emergency", -75000),
    ("Vehicle repair after monsoon", -20000),
    ("Wedding shopping expenses", -50000),
    ("Health insurance deductible", -25000),
    ("Home repairs after flooding", -45000),
    ("Laptop suddenly stopped working", -50000),
    ("Legal fees for property dispute", -40000),
    ("AC breakdown in peak summer", -10000),
    ("Parent hospitalization costs", -80000),
    ("Car accident insurance excess", -22000),
    ("Stolen mobile phone", -12000),
    ("Urgent home appliance replacement", -28000),
    ("Child school fees increase", -50000),
    ("Unexpected tax liability", -30000),
    ("Emergency dental treatment", -18000),
    ("Bike accident repair", -14000),
    ("Flooding damaged furniture", -40000),
    ("Friend wedding gift expected", -10000),
    ("Pet medical emergency", -10000),
]

_GAINS: list[tuple[str, int]] = [
    ("Diwali bonus from company", 50000),
    ("Freelance project bonus", 40000),
    ("Side business profit", 35000),
    ("Performance bonus at work", 45000),
    ("Tax refund received", 25000),
    ("Sold old items online", 15000),
    ("Investment dividend received", 30000),
]

EVENT_POOL: list[tuple[str, int]] = _GAINS + _LOSSES


def generate_life_events(
    count: int,
    seed: int | list[int],
    unlock_points: Iterable[tuple[int, int]] = (),
    total_years: int = 20,
) -> list[LifeEvent]:
    """Draw ``count`` events (without repeating a message) sorted by date.

    ``unlock_points`` are (game_year, month) slots carrying an unlock; those
    slots are skipped so an event never collides with a quiz prompt.
    """
    rng = np.random.default_rng(seed)
    count = max(0, min(count, len(EVENT_POOL)))

    blocked = {(int(y), int(m)) for y, m in unlock_points}
    free_slots = [
        (year, month)
        for year in range(1, total_years + 1)
        for month in range(1, 13)
        # (1, 1) is the starting month and is never ticked into
        if (year, month) not in blocked and (year, month) != (1, 1)
    ]
    count = min(count, len(free_slots))

    picks = rng.choice(len(EVENT_POOL), size=count, replace=False)
    slots = rng.choice(len(free_slots), size=count, replace=False)

    events = []
    for pool_idx, slot_idx in zip(picks, slots):
        message, amount = EVENT_POOL[int(pool_idx)]
        year, month = free_slots[int(slot_idx)]
        events.append(LifeEvent(
            id="",
            message=message,
            amount=Decimal(amount),
            game_year=year,
            game_month=month,
        ))

    events.sort(key=lambda e: (e.game_year, e.game_month))
    for n, event in enumerate(events, start=1):
        event.id = f"LE-{n}"
    logger.debug("Generated %d life events (seed=%s)", len(events), seed)
    return events
