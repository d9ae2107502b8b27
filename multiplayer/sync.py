"""Host-side game loop for a started room.

The host owns the authoritative state of every player. Each step ticks the
coordinator, advances every state one month, prices the room's symbols for
the new calendar month and publishes one encrypted broadcast. Client trade
requests are re-priced at the host's tick price and applied here; the
resulting state travels back in the acknowledgement and wins over whatever
the client predicted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal
from typing import Any

from gamecore.database import GameLogSink
from gamecore.error_types import GameEnded, GameError, NotFound, PriceUnavailable, RoomError, ValidationError
from gamecore.models import OperationKind, TradeOperation
from gamecore.networth import PriceLookup, build_game_end_record, player_summary
from gamecore.portfolio_engine import advance_month, apply_operation, close_game, mark_quiz_completed
from gamecore.catalog import AssetCategory
from gamecore.config import load_config
from market.history_fetcher import HistoryFetcher
from market.price_feed import PriceSource
from multiplayer.channel import HostBroadcaster
from multiplayer.messages import BroadcastMessage, TradeAck, TradeRequest
from multiplayer.rooms import Room, RoomStatus
from multiplayer.transport import BroadcastHub
from simulation.coordinator import SessionPhase, TickResult

logger = logging.getLogger(__name__)

_PRICED_KINDS = (OperationKind.BUY, OperationKind.SELL)


class GameSyncManager:
    def __init__(
        self,
        room: Room,
        source: PriceSource,
        hub: BroadcastHub | None = None,
        sink: GameLogSink | None = None,
    ):
        if room.coordinator is None or room.schedule is None or room.clock is None:
            raise RoomError(f"room {room.code} has not started")
        self.room = room
        self.source = source
        self.hub = hub if hub is not None else BroadcastHub(room.code)
        self.sink = sink
        self.broadcaster = HostBroadcaster(self.hub, room.schedule.selected_symbols())
        self.broadcaster.state_provider = self.room.states.get
        self.broadcaster.trade_handler = self.handle_trade_request
        self.broadcaster.quiz_handler = self.complete_quiz
        self.operations: dict[str, list[TradeOperation]] = {pid: [] for pid in room.states}
        self.leaderboard: list[dict[str, Any]] = []
        self._prices: dict[str, Decimal | None] = {}
        self._prices_at: tuple[int, int] | None = None
        self.history = HistoryFetcher(source)
        self._started_at = time.time()

    @property
    def clock(self):
        return self.room.clock

    @property
    def coordinator(self):
        return self.room.coordinator

    @property
    def ended(self) -> bool:
        return self.coordinator.phase == SessionPhase.ENDED

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    def current_prices(self) -> dict[str, Decimal | None]:
        """Prices for the room's symbols at the clock's calendar month (cached per month)."""
        at = (self.clock.calendar_year, self.clock.month)
        if self._prices_at != at:
            self._prices = {s: self.source.get_price(s, *at) for s in self.broadcaster.symbols}
            self._prices_at = at
        return self._prices

    def price_lookup(self) -> PriceLookup:
        prices = self.current_prices()
        return lambda symbol: prices.get(symbol)

    async def price_history(self, symbol: str, months: int | None = None) -> list[Decimal]:
        """Trailing monthly prices for a chart, ending at the current calendar month."""
        if months is None:
            months = load_config().get("prices", {}).get("history_months", 12)
        return await self.history.fetch(symbol, self.clock.calendar_year, self.clock.month, months)

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    def _publish(self, quiz_categories: list[AssetCategory] | None = None, phase: str | None = None) -> BroadcastMessage:
        return self.broadcaster.publish_tick(
            tick=self.clock.tick_count,
            game_year=self.clock.year,
            game_month=self.clock.month,
            calendar_year=self.clock.calendar_year,
            calendar_month=self.clock.month,
            phase=phase or self.coordinator.phase.value,
            prices=self.current_prices(),
            quiz_categories=[c.value for c in quiz_categories or []],
        )

    def start(self) -> BroadcastMessage:
        """Begin the session and publish the opening tick (game month 1/1)."""
        quizzes = self.coordinator.start()
        self._started_at = time.time()
        return self._publish(quizzes)

    def step(self) -> TickResult | None:
        """One host tick. None while paused; the final call ends the game."""
        result = self.coordinator.tick()
        if result is None:
            return None
        if result.ended:
            self.end_game()
            return result

        income = self.room.settings.recurring_income
        for pid, state in list(self.room.states.items()):
            self.room.states[pid] = advance_month(state, income, total_years=self.clock.total_years)
        self.history.evict_before(self.clock.calendar_year, self.clock.month)
        self._publish(result.quiz_categories)
        logger.debug(
            "Room %s tick %d: %d-%02d phase=%s",
            self.room.code, result.tick, result.calendar_year, result.calendar_month,
            self.coordinator.phase.value,
        )
        return result

    # ------------------------------------------------------------------
    # Player actions
    # ------------------------------------------------------------------

    def _priced(self, op: TradeOperation) -> TradeOperation:
        year, month = self.clock.position
        if not self.room.schedule.is_instrument_unlocked(op.symbol, year, month):
            raise ValidationError(f"{op.symbol} is not available at ({year}, {month})")
        px = self.current_prices().get(op.symbol)
        if px is None:
            raise PriceUnavailable(f"no price for {op.symbol} at {self.clock.calendar_year}-{month:02d}")
        return op.model_copy(update={"price": px})

    def apply_trade(self, player_id: str, op: TradeOperation, request_id: str = "") -> TradeAck:
        """Apply one operation to the authoritative state and acknowledge it."""
        state = self.room.states.get(player_id)
        try:
            if state is None:
                raise NotFound(f"player {player_id} is not in room {self.room.code}")
            if self.ended:
                raise GameEnded("game has ended")
            if op.kind in _PRICED_KINDS:
                op = self._priced(op)
            new_state = apply_operation(state, op)
        except GameError as e:
            logger.warning(
                "Rejected %s from %s: %s", op.kind.value, player_id, e,
                extra={"room": self.room.code, "player": player_id, "error_type": type(e).__name__},
            )
            return TradeAck(
                request_id=request_id, accepted=False,
                error=str(e), error_type=type(e).__name__, state=state,
            )

        self.room.states[player_id] = new_state
        self.operations.setdefault(player_id, []).append(op)
        logger.info(
            "Applied %s for %s", op.kind.value, player_id,
            extra={"room": self.room.code, "player": player_id, "operation": op.model_dump(mode="json")},
        )
        return TradeAck(request_id=request_id, accepted=True, state=new_state)

    async def handle_trade_request(self, request: TradeRequest) -> TradeAck:
        return self.apply_trade(request.player, request.operation, request.request_id)

    def complete_quiz(self, player_id: str, category: AssetCategory) -> SessionPhase:
        """Record a finished quiz on the host. Re-publishes when the pause lifts."""
        state = self.room.states.get(player_id)
        if state is not None:
            self.room.states[player_id] = mark_quiz_completed(state, category)
        before = self.coordinator.phase
        phase = self.coordinator.quiz_completed(player_id, category)
        if phase != before:
            self._publish()
        return phase

    def toggle_pause(self) -> SessionPhase:
        phase = self.coordinator.toggle_host_pause()
        self._publish()
        return phase

    # ------------------------------------------------------------------
    # End of game
    # ------------------------------------------------------------------

    def end_game(self) -> list[dict[str, Any]]:
        """Close every player's state, store the records and announce the leaderboard."""
        if not self.ended:
            self.coordinator.end()
        for pid, state in list(self.room.states.items()):
            self.room.states[pid] = close_game(state)

        lookup = self.price_lookup()
        duration = (time.time() - self._started_at) / 60.0
        if self.sink is not None:
            for pid, state in self.room.states.items():
                record = build_game_end_record(
                    state, lookup, self.room.settings, "multiplayer", duration, self.room.session_id,
                )
                self.sink.record_game_end(record)
                self.sink.upload_activity(
                    self.room.session_id, state.player_name,
                    self.operations.get(pid, []), state.cash_transactions,
                )

        self.leaderboard = self._leaderboard(lookup)
        self.room.status = RoomStatus.ENDED
        self._publish(phase=SessionPhase.ENDED.value)
        self.broadcaster.publish_game_end(self.leaderboard)
        logger.info(
            "Room %s ended; winner %s", self.room.code,
            self.leaderboard[0]["player_name"] if self.leaderboard else "-",
        )
        return self.leaderboard

    def _leaderboard(self, lookup: PriceLookup) -> list[dict[str, Any]]:
        rows = []
        for pid, state in self.room.states.items():
            row = player_summary(state, lookup)
            rows.append({
                "player_id": pid,
                "player_name": row["player_name"],
                "networth": str(row["networth"]),
                "cagr": row["cagr"],
                "profit_loss": str(row["profit_loss"]),
            })
        rows.sort(key=lambda r: (-Decimal(r["networth"]), r["player_name"]))
        for rank, row in enumerate(rows, start=1):
            row["rank"] = rank
        return rows

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self, sleep: bool = True) -> list[dict[str, Any]]:
        """Drive the room to completion, serving client requests between ticks."""
        if self.coordinator.phase == SessionPhase.NOT_STARTED:
            self.start()
        while not self.ended:
            await self.broadcaster.drain()
            if sleep:
                await self.clock.async_sleep_for_tick()
            else:
                await asyncio.sleep(0)
            self.step()
        await self.broadcaster.drain()
        return self.leaderboard
