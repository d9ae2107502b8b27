"""Session/pause coordinator for the shared game clock.

Phases::

    NOT_STARTED --start--> RUNNING
    RUNNING --category unlocks, quiz enabled--> PAUSED_QUIZ
    PAUSED_QUIZ --last waiting player completes--> RUNNING
    any live phase --host pause--> PAUSED_HOST
    PAUSED_HOST --host resume--> PAUSED_QUIZ (players still waiting) | RUNNING
    RUNNING --tick past final month--> ENDED  (terminal)

Host pause and quiz pause are tracked independently; the reported phase
gives the host priority, and the clock only advances when both are clear.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from gamecore.catalog import AssetCategory
from gamecore.unlock_schedule import UnlockSchedule
from simulation.clock import GameClock

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    PAUSED_HOST = "paused_host"
    PAUSED_QUIZ = "paused_quiz"
    ENDED = "ended"


@dataclass
class TickResult:
    """What happened on one clock advance."""
    tick: int
    game_year: int
    game_month: int
    calendar_year: int
    calendar_month: int
    quiz_categories: list[AssetCategory] = field(default_factory=list)
    ended: bool = False


class PauseCoordinator:
    def __init__(
        self,
        clock: GameClock,
        schedule: UnlockSchedule,
        players: list[str],
        enable_quiz: bool = True,
    ) -> None:
        self.clock = clock
        self.schedule = schedule
        self.enable_quiz = enable_quiz
        self.players: list[str] = list(dict.fromkeys(players))
        self.completed: dict[str, set[AssetCategory]] = {p: set() for p in self.players}
        self.host_paused = False
        self.quiz_category: AssetCategory | None = None
        self.waiting: set[str] = set()
        self._quiz_queue: deque[AssetCategory] = deque()
        self._started = False
        self._ended = False

    # ------------------------------------------------------------------
    # Phase
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SessionPhase:
        if self._ended:
            return SessionPhase.ENDED
        if not self._started:
            return SessionPhase.NOT_STARTED
        if self.host_paused:
            return SessionPhase.PAUSED_HOST
        if self.waiting:
            return SessionPhase.PAUSED_QUIZ
        return SessionPhase.RUNNING

    @property
    def is_paused(self) -> bool:
        return self.phase in (SessionPhase.PAUSED_HOST, SessionPhase.PAUSED_QUIZ)

    @property
    def seq(self) -> int:
        return self.clock.tick_count

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> list[AssetCategory]:
        """Begin the session. Categories open at (1, 1) may immediately pause for a quiz."""
        if self._started:
            return []
        self._started = True
        logger.info("Session started with %d player(s)", len(self.players))
        return self._queue_quizzes(*self.clock.position)

    def tick(self) -> TickResult | None:
        """Advance the clock one month if RUNNING. Returns None while paused or ended."""
        if self.phase != SessionPhase.RUNNING:
            return None
        if self.clock.is_game_complete():
            self._ended = True
            logger.info("Session ended at tick %d", self.clock.tick_count)
            return TickResult(
                tick=self.clock.tick_count,
                game_year=self.clock.year,
                game_month=self.clock.month,
                calendar_year=self.clock.calendar_year,
                calendar_month=self.clock.month,
                ended=True,
            )
        year, month = self.clock.tick()
        quizzes = self._queue_quizzes(year, month)
        return TickResult(
            tick=self.clock.tick_count,
            game_year=year,
            game_month=month,
            calendar_year=self.clock.calendar_year,
            calendar_month=month,
            quiz_categories=quizzes,
        )

    def end(self) -> None:
        self._ended = True
        self.waiting.clear()
        self._quiz_queue.clear()

    # ------------------------------------------------------------------
    # Host pause
    # ------------------------------------------------------------------

    def host_pause(self) -> SessionPhase:
        if self.phase not in (SessionPhase.NOT_STARTED, SessionPhase.ENDED):
            self.host_paused = True
            logger.info("Host paused (quiz waiting: %d)", len(self.waiting))
        return self.phase

    def host_resume(self) -> SessionPhase:
        if self.host_paused:
            self.host_paused = False
            logger.info("Host resumed -> %s", self.phase.value)
        return self.phase

    def toggle_host_pause(self) -> SessionPhase:
        return self.host_resume() if self.host_paused else self.host_pause()

    # ------------------------------------------------------------------
    # Quiz pause
    # ------------------------------------------------------------------

    def _queue_quizzes(self, year: int, month: int) -> list[AssetCategory]:
        if not self.enable_quiz:
            return []
        fired = []
        for category in self.schedule.categories_unlocking_at(year, month):
            if any(category not in self.completed[p] for p in self.players):
                self._quiz_queue.append(category)
                fired.append(category)
        if fired and not self.waiting:
            self._next_quiz()
        return fired

    def _next_quiz(self) -> None:
        while self._quiz_queue:
            category = self._quiz_queue.popleft()
            waiting = {p for p in self.players if category not in self.completed[p]}
            if waiting:
                self.quiz_category = category
                self.waiting = waiting
                logger.info("Quiz pause for %s: waiting on %s", category.value, sorted(waiting))
                return
        self.quiz_category = None
        self.waiting = set()

    def quiz_completed(self, player: str, category: AssetCategory) -> SessionPhase:
        """Record a completed quiz. Releases the pause when nobody is left waiting."""
        if player not in self.completed:
            logger.warning("Quiz completion from unknown player %s", player)
            return self.phase
        self.completed[player].add(category)
        if category == self.quiz_category:
            self.waiting.discard(player)
            if not self.waiting:
                self._next_quiz()
        return self.phase

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def add_player(self, player: str) -> None:
        if player not in self.completed:
            self.players.append(player)
            self.completed[player] = set()

    def remove_player(self, player: str) -> None:
        """A player who leaves no longer holds up a quiz pause."""
        if player in self.completed:
            self.players.remove(player)
            del self.completed[player]
        if player in self.waiting:
            self.waiting.discard(player)
            if not self.waiting:
                self._next_quiz()
