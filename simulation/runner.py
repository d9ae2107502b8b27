"""Solo session runner: drives one player through a full game headlessly.

Builds the same per-session inputs a multiplayer host would (unlock
schedule, quiz indices, life events), then steps the coordinator month by
month, refreshing prices from a local source and applying any scripted
operations. Quizzes are auto-completed so the clock never stalls.
"""

from __future__ import annotations

import logging
import time as wall_time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Callable

import pandas as pd

from gamecore.config import load_config
from gamecore.database import GameLogSink
from gamecore.error_types import GameError, PriceUnavailable
from gamecore.life_events import generate_life_events
from gamecore.models import AdminSettings, OperationKind, PlayerFinancialState, TradeOperation
from gamecore.networth import GameEndRecord, build_game_end_record, calculate_networth
from gamecore.portfolio_engine import (
    advance_month,
    apply_operation,
    close_game,
    mark_quiz_completed,
    new_player_state,
)
from gamecore.unlock_schedule import UnlockSchedule, build_unlock_schedule, generate_quiz_indices
from market.price_context import PriceContext
from market.price_feed import PriceSource
from simulation.clock import GameClock
from simulation.coordinator import PauseCoordinator, SessionPhase

logger = logging.getLogger(__name__)

SOLO_PLAYER = "solo"


@dataclass
class SessionContext:
    """Everything one solo session needs, passed explicitly instead of held globally."""
    settings: AdminSettings
    seed: int
    schedule: UnlockSchedule
    prices: PriceContext
    clock: GameClock
    coordinator: PauseCoordinator
    state: PlayerFinancialState
    source: PriceSource
    session_id: str = ""

    def refresh_prices(self) -> None:
        self.prices.refresh_from(
            self.source, self.schedule.selected_symbols(), self.clock.calendar_year, self.clock.month,
        )


@dataclass
class MonthSnapshot:
    """Recorded state at a single tick for post-game analysis."""
    tick: int
    game_year: int
    game_month: int
    calendar_year: int
    networth: str
    pocket_cash: str
    savings: str
    holdings: int
    phase: str


@dataclass
class SoloResult:
    seed: int
    final_state: PlayerFinancialState
    record: GameEndRecord
    snapshots: list[MonthSnapshot]
    rejected: list[tuple[int, TradeOperation, str]] = field(default_factory=list)
    wall_clock_seconds: float = 0.0

    def to_frame(self) -> pd.DataFrame:
        """Monthly snapshots as a DataFrame with numeric net worth and cash columns."""
        df = pd.DataFrame([asdict(s) for s in self.snapshots])
        if df.empty:
            return df
        for col in ("networth", "pocket_cash", "savings"):
            df[col] = pd.to_numeric(df[col])
        return df


def build_session(
    settings: AdminSettings,
    source: PriceSource,
    seed: int,
    player_name: str = "Player",
    total_years: int | None = None,
) -> SessionContext:
    """Freeze the session inputs and create the opening state at game month 1/1."""
    if total_years is None:
        total_years = load_config().get("game", {}).get("total_years", 20)
    schedule = build_unlock_schedule(settings, seed, total_years=total_years)
    unlock_points = [e.point for e in schedule.all_events()]
    events = generate_life_events(settings.events_count, [seed, 2, 0], unlock_points, total_years)
    state = new_player_state(
        settings,
        player_name=player_name,
        quiz_question_indices=generate_quiz_indices(seed),
        life_events=events,
    )
    clock = GameClock(settings.game_start_year, total_years=total_years, month_duration_ms=settings.month_duration_ms)
    ctx = SessionContext(
        settings=settings,
        seed=seed,
        schedule=schedule,
        prices=PriceContext(),
        clock=clock,
        coordinator=PauseCoordinator(clock, schedule, [SOLO_PLAYER], enable_quiz=settings.enable_quiz),
        state=state,
        source=source,
        session_id=f"solo-{uuid.uuid4().hex[:8]}",
    )
    ctx.refresh_prices()
    return ctx


def _complete_quizzes(ctx: SessionContext) -> None:
    while ctx.coordinator.phase == SessionPhase.PAUSED_QUIZ:
        category = ctx.coordinator.quiz_category
        ctx.state = mark_quiz_completed(ctx.state, category)
        ctx.coordinator.quiz_completed(SOLO_PLAYER, category)
        logger.debug("Auto-completed %s quiz", category.value)


def apply_scripted(ctx: SessionContext, op: TradeOperation) -> TradeOperation:
    """Apply one operation at the current tick. Trades are priced from the session's prices.

    Returns the operation as applied (with its fill price).
    """
    if op.kind in (OperationKind.BUY, OperationKind.SELL):
        year, month = ctx.clock.position
        if not ctx.schedule.is_instrument_unlocked(op.symbol, year, month):
            raise PriceUnavailable(f"{op.symbol} is not available at ({year}, {month})")
        px = ctx.prices.get(op.symbol)
        if px is None:
            raise PriceUnavailable(f"no price for {op.symbol}")
        op = op.model_copy(update={"price": px})
    ctx.state = apply_operation(ctx.state, op)
    return op


def run_solo(
    settings: AdminSettings,
    source: PriceSource,
    seed: int,
    ops: dict[int, list[TradeOperation]] | None = None,
    sink: GameLogSink | None = None,
    sleep: bool = False,
    player_name: str = "Player",
    total_years: int | None = None,
    callback: Callable[[MonthSnapshot, PlayerFinancialState], None] | None = None,
) -> SoloResult:
    """Run one player through the whole game.

    Parameters
    ----------
    ops : dict, optional
        Scripted operations keyed by tick number (0 is the opening month).
        Trades are priced at that tick's price; rejected operations are
        logged and collected on the result, never raised.
    sink : GameLogSink, optional
        Receives the end-of-game record and the activity upload.
    sleep : bool
        Wait ``month_duration_ms`` of wall time between ticks.
    """
    wall_start = wall_time.time()
    ops = ops or {}
    ctx = build_session(settings, source, seed, player_name, total_years)
    snapshots: list[MonthSnapshot] = []
    rejected: list[tuple[int, TradeOperation, str]] = []
    applied: list[TradeOperation] = []

    def settle_tick() -> None:
        _complete_quizzes(ctx)
        tick = ctx.clock.tick_count
        for op in ops.get(tick, []):
            try:
                applied.append(apply_scripted(ctx, op))
            except GameError as e:
                logger.warning("Scripted %s rejected at tick %d: %s", op.kind.value, tick, e)
                rejected.append((tick, op, str(e)))
        snap = MonthSnapshot(
            tick=tick,
            game_year=ctx.clock.year,
            game_month=ctx.clock.month,
            calendar_year=ctx.clock.calendar_year,
            networth=str(calculate_networth(ctx.state, ctx.prices.get)),
            pocket_cash=str(ctx.state.pocket_cash),
            savings=str(ctx.state.savings_account.balance),
            holdings=len(ctx.state.holdings),
            phase=ctx.coordinator.phase.value,
        )
        snapshots.append(snap)
        if callback:
            callback(snap, ctx.state)

    ctx.coordinator.start()
    settle_tick()

    while True:
        if sleep:
            ctx.clock.sleep_for_tick()
        result = ctx.coordinator.tick()
        if result is None:
            logger.warning("Coordinator stalled in %s; ending session", ctx.coordinator.phase.value)
            ctx.coordinator.end()
            break
        if result.ended:
            break
        ctx.state = advance_month(ctx.state, settings.recurring_income, total_years=ctx.clock.total_years)
        ctx.refresh_prices()
        settle_tick()

    ctx.state = close_game(ctx.state)
    wall_elapsed = wall_time.time() - wall_start
    record = build_game_end_record(
        ctx.state, ctx.prices.get, settings, "solo", wall_elapsed / 60.0, ctx.session_id,
    )
    logger.info(
        "Solo session %s finished: networth=%s cagr=%.2f%%",
        ctx.session_id, record.final_networth, record.cagr,
        extra={"record": asdict(record)},
    )
    if sink is not None:
        sink.record_game_end(record)
        sink.upload_activity(ctx.session_id, ctx.state.player_name, applied, ctx.state.cash_transactions)

    return SoloResult(
        seed=seed,
        final_state=ctx.state,
        record=record,
        snapshots=snapshots,
        rejected=rejected,
        wall_clock_seconds=wall_elapsed,
    )
