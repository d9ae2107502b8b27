"""Room lifecycle for multiplayer sessions.

A room is created by a host (who spectates, never trades), joined by
players with a six-character code, and started by the host once at least
one player has joined. Starting a room fixes everything that must be
identical for every participant: the seed, the unlock schedule, the quiz
question indices and each player's life events. The host keeps the
authoritative ``PlayerFinancialState`` for every player.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from gamecore.config import load_config
from gamecore.error_types import RoomError
from gamecore.life_events import generate_life_events
from gamecore.models import AdminSettings, PlayerFinancialState
from gamecore.networth import PriceLookup, player_summary
from gamecore.portfolio_engine import new_player_state
from gamecore.unlock_schedule import UnlockSchedule, build_unlock_schedule, generate_quiz_indices
from simulation.clock import GameClock
from simulation.coordinator import PauseCoordinator

logger = logging.getLogger(__name__)

ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH = 6
MIN_PLAYERS = 2  # host included


class RoomStatus(str, Enum):
    WAITING = "waiting"
    PLAYING = "playing"
    ENDED = "ended"


@dataclass
class RoomMember:
    player_id: str
    name: str
    is_host: bool = False
    joined_at: float = field(default_factory=time.time)


@dataclass
class Room:
    code: str
    host_id: str
    settings: AdminSettings
    members: dict[str, RoomMember] = field(default_factory=dict)
    status: RoomStatus = RoomStatus.WAITING
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    seed: int | None = None
    schedule: UnlockSchedule | None = None
    quiz_indices: dict = field(default_factory=dict)
    states: dict[str, PlayerFinancialState] = field(default_factory=dict)
    clock: GameClock | None = None
    coordinator: PauseCoordinator | None = None

    @property
    def session_id(self) -> str:
        return f"{self.code}-{self.seed}" if self.seed is not None else self.code

    @property
    def player_ids(self) -> list[str]:
        """Trading participants (host excluded), in join order."""
        return [pid for pid, m in self.members.items() if not m.is_host]


def generate_room_code() -> str:
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


class RoomManager:
    def __init__(self, code_factory: Callable[[], str] = generate_room_code):
        self._rooms: dict[str, Room] = {}
        self._code_factory = code_factory

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_room(self, code: str) -> Room:
        room = self._rooms.get(code.upper())
        if room is None:
            raise RoomError(f"room {code} not found")
        return room

    @property
    def room_codes(self) -> list[str]:
        return sorted(self._rooms)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def create_room(self, host_id: str, host_name: str, settings: AdminSettings | None = None) -> Room:
        if settings is None:
            settings = AdminSettings.model_validate(load_config().get("admin", {}))
        for _ in range(100):
            code = self._code_factory()
            if code not in self._rooms:
                break
        else:
            raise RoomError("could not allocate a unique room code")
        room = Room(code=code, host_id=host_id, settings=settings)
        room.members[host_id] = RoomMember(player_id=host_id, name=host_name, is_host=True)
        self._rooms[code] = room
        logger.info("Room %s created by %s", code, host_name)
        return room

    def join_room(self, code: str, player_id: str, name: str) -> Room:
        room = self.get_room(code)
        if room.status != RoomStatus.WAITING:
            raise RoomError(f"room {room.code} has already started")
        if player_id in room.members:
            raise RoomError(f"{player_id} is already in room {room.code}")
        if any(m.name.lower() == name.lower() for m in room.members.values()):
            raise RoomError(f"name {name!r} is taken in room {room.code}")
        room.members[player_id] = RoomMember(player_id=player_id, name=name)
        logger.info("%s joined room %s (%d members)", name, room.code, len(room.members))
        return room

    def leave_room(self, code: str, player_id: str) -> Room | None:
        """Remove a member. The host leaving closes the room (returns None)."""
        room = self.get_room(code)
        member = room.members.pop(player_id, None)
        if member is None:
            return room
        if member.is_host:
            del self._rooms[room.code]
            logger.info("Room %s closed: host left", room.code)
            return None
        if room.coordinator is not None:
            room.coordinator.remove_player(player_id)
        logger.info("%s left room %s", member.name, room.code)
        return room

    # ------------------------------------------------------------------
    # Game start
    # ------------------------------------------------------------------

    def start_game(self, code: str, requester_id: str, seed: int | None = None) -> Room:
        """Freeze the session inputs and create every player's authoritative state."""
        room = self.get_room(code)
        if requester_id != room.host_id:
            raise RoomError("only the host can start the game")
        if room.status != RoomStatus.WAITING:
            raise RoomError(f"room {room.code} has already started")
        if len(room.members) < MIN_PLAYERS:
            raise RoomError(f"need at least {MIN_PLAYERS} members to start, have {len(room.members)}")

        game_cfg = load_config().get("game", {})
        total_years = game_cfg.get("total_years", 20)
        room.seed = secrets.randbits(32) if seed is None else seed
        room.schedule = build_unlock_schedule(room.settings, room.seed)
        room.quiz_indices = generate_quiz_indices(room.seed)
        unlock_points = [e.point for e in room.schedule.all_events()]

        for i, pid in enumerate(room.player_ids):
            events = generate_life_events(
                room.settings.events_count, [room.seed, 2, i], unlock_points, total_years,
            )
            room.states[pid] = new_player_state(
                room.settings,
                player_name=room.members[pid].name,
                quiz_question_indices=room.quiz_indices,
                life_events=events,
            )

        room.clock = GameClock(
            room.settings.game_start_year,
            total_years=total_years,
            month_duration_ms=room.settings.month_duration_ms,
        )
        room.coordinator = PauseCoordinator(
            room.clock, room.schedule, room.player_ids, enable_quiz=room.settings.enable_quiz,
        )
        room.status = RoomStatus.PLAYING
        room.started_at = time.time()
        logger.info("Room %s started: seed=%d players=%d", room.code, room.seed, len(room.player_ids))
        return room

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def leaderboard(self, code: str, price_lookup: PriceLookup) -> list[dict]:
        """Players (host excluded) ranked by net worth, highest first."""
        room = self.get_room(code)
        rows = [
            dict(player_summary(room.states[pid], price_lookup), player_id=pid)
            for pid in room.player_ids
            if pid in room.states
        ]
        rows.sort(key=lambda r: (-r["networth"], r["player_name"]))
        for rank, row in enumerate(rows, start=1):
            row["rank"] = rank
        return rows

    def toggle_pause(self, code: str, requester_id: str):
        room = self.get_room(code)
        if requester_id != room.host_id:
            raise RoomError("only the host can pause the game")
        if room.coordinator is None:
            raise RoomError(f"room {room.code} has not started")
        return room.coordinator.toggle_host_pause()

    def mark_ended(self, code: str) -> None:
        self.get_room(code).status = RoomStatus.ENDED

    def cleanup_stale(self, max_age_seconds: float, now: float | None = None) -> list[str]:
        """Drop rooms that never started and ended rooms older than ``max_age_seconds``."""
        now = time.time() if now is None else now
        stale = [
            code for code, room in self._rooms.items()
            if room.status != RoomStatus.PLAYING and now - room.created_at > max_age_seconds
        ]
        for code in stale:
            del self._rooms[code]
            logger.info("Cleaned up stale room %s", code)
        return stale
