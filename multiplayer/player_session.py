"""Client replica of one player's state.

The session applies operations optimistically for instant feedback, then
sends them to the host. The host's acknowledgement carries the
authoritative state; when it differs from the local prediction the host
copy is adopted and the divergence is counted and logged.
"""

from __future__ import annotations

import asyncio
import logging

from gamecore.catalog import AssetCategory
from gamecore.error_types import ChannelUnavailable, GameEnded, PriceUnavailable
from gamecore.models import AdminSettings, OperationKind, PlayerFinancialState, TradeOperation
from gamecore.portfolio_engine import advance_month, apply_operation, close_game, mark_quiz_completed
from multiplayer.channel import ClientChannel
from multiplayer.messages import BroadcastMessage, ResyncPayload, TradeAck
from simulation.coordinator import SessionPhase

logger = logging.getLogger(__name__)


class PlayerSession:
    def __init__(
        self,
        player_id: str,
        channel: ClientChannel,
        state: PlayerFinancialState,
        settings: AdminSettings,
        total_years: int = 20,
    ):
        self.player_id = player_id
        self.channel = channel
        self.state = state
        self.settings = settings
        self.total_years = total_years
        self.phase: str = SessionPhase.NOT_STARTED.value
        self.last_tick: BroadcastMessage | None = None
        self.divergences = 0
        self.unconfirmed = 0
        self.leaderboard: list[dict] = []
        channel.on_tick = self._on_tick
        channel.on_resync = self._on_resync
        channel.on_game_end = self._on_game_end

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _on_tick(self, msg: BroadcastMessage) -> None:
        """Advance the replica month by month up to the broadcast position."""
        self.last_tick = msg
        self.phase = msg.phase
        self._advance_to((msg.game_year, msg.game_month))
        if msg.phase == SessionPhase.ENDED.value:
            self.state = close_game(self.state)

    def _advance_to(self, target: tuple[int, int]) -> None:
        while not self.state.game_over and (self.state.current_year, self.state.current_month) < target:
            self.state = advance_month(self.state, self.settings.recurring_income, self.total_years)

    def _on_resync(self, payload: ResyncPayload) -> None:
        if payload.tick is not None:
            self.last_tick = payload.tick
            self.phase = payload.tick.phase
        if payload.state is not None:
            self._adopt(payload.state, "resync")

    def _on_game_end(self, body: dict) -> None:
        self.leaderboard = list(body.get("leaderboard", []))
        logger.info("Game over for %s; %d players ranked", self.player_id, len(self.leaderboard))

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def price_for(self, symbol: str):
        return self.channel.get_price(symbol)

    async def submit(self, op: TradeOperation, timeout: float = 5.0) -> TradeAck:
        """Optimistically apply ``op`` and confirm it with the host.

        Local validation failures raise before anything is sent. The returned
        ack is the host's verdict; the local state already reflects it. If no
        ack arrives the prediction is rolled back and the host is asked for
        its copy.
        """
        self.channel.require_ready()
        if self.state.game_over:
            raise GameEnded("game has ended; state is read-only")
        if op.kind in (OperationKind.BUY, OperationKind.SELL):
            px = self.channel.get_price(op.symbol)
            if px is None:
                raise PriceUnavailable(f"no price for {op.symbol}")
            op = op.model_copy(update={"price": px})

        previous = self.state
        predicted = apply_operation(previous, op)
        self.state = predicted
        try:
            ack = await self.channel.request_trade(op, timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError, ChannelUnavailable):
            position = (self.state.current_year, self.state.current_month)
            self.state = previous
            self._advance_to(position)
            self.unconfirmed += 1
            logger.warning(
                "No ack for %s from %s; rolled back", op.kind.value, self.player_id,
                extra={"player": self.player_id, "unconfirmed": self.unconfirmed},
            )
            if self.channel.is_ready:
                self.channel.request_resync()
            raise
        self.reconcile(ack, predicted)
        return ack

    def complete_quiz(self, category: AssetCategory) -> None:
        """Mark a quiz done locally and report it so the host can lift the pause."""
        self.channel.require_ready()
        self.state = mark_quiz_completed(self.state, category)
        self.channel.send_quiz_complete(category)
        logger.info("%s completed the %s quiz", self.player_id, category.value)

    def reconcile(self, ack: TradeAck, predicted: PlayerFinancialState | None = None) -> None:
        """Adopt the host's state from an ack. The host always wins."""
        if not ack.accepted:
            logger.warning(
                "Host rejected op for %s: %s", self.player_id, ack.error,
                extra={"player": self.player_id, "error_type": ack.error_type},
            )
        if ack.state is None:
            return
        if predicted is not None and ack.state == predicted and ack.accepted:
            return
        self._adopt(ack.state, "ack")

    def _adopt(self, authoritative: PlayerFinancialState, reason: str) -> None:
        if authoritative != self.state:
            self.divergences += 1
            logger.info(
                "Adopting host state for %s (%s): cash %s -> %s", self.player_id, reason,
                self.state.pocket_cash, authoritative.pocket_cash,
                extra={"player": self.player_id, "divergences": self.divergences},
            )
        self.state = authoritative.model_copy(deep=True)
