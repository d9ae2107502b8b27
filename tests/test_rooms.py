"""Tests for multiplayer.rooms: create, join, start, leaderboard."""

from decimal import Decimal

import pytest

from gamecore.catalog import AssetCategory
from gamecore.error_types import RoomError
from multiplayer.rooms import (
    ROOM_CODE_ALPHABET,
    ROOM_CODE_LENGTH,
    RoomManager,
    RoomStatus,
    generate_room_code,
)
from simulation.coordinator import SessionPhase


def _codes(*codes):
    it = iter(codes)
    return lambda: next(it)


@pytest.fixture
def manager():
    return RoomManager(code_factory=_codes("ROOM01", "ROOM01", "ROOM02", "ROOM03"))


@pytest.fixture
def room(manager, settings):
    room = manager.create_room("host", "Meera", settings)
    manager.join_room(room.code, "p1", "Asha")
    manager.join_room(room.code, "p2", "Ravi")
    return room


class TestRoomCodes:
    def test_generated_code_shape(self):
        code = generate_room_code()
        assert len(code) == ROOM_CODE_LENGTH
        assert set(code) <= set(ROOM_CODE_ALPHABET)

    def test_collision_draws_again(self, manager, settings):
        a = manager.create_room("h1", "One", settings)
        b = manager.create_room("h2", "Two", settings)
        assert (a.code, b.code) == ("ROOM01", "ROOM02")
        assert manager.room_codes == ["ROOM01", "ROOM02"]

    def test_lookup_is_case_insensitive(self, manager, room):
        assert manager.get_room("room01") is room

    def test_unknown_room(self, manager):
        with pytest.raises(RoomError, match="not found"):
            manager.get_room("NOPE00")

    def test_default_settings_from_config(self, manager):
        room = manager.create_room("h", "Host")
        assert room.settings.game_start_year == 2005
        assert room.settings.month_duration_ms == 5000


class TestMembership:
    def test_join_order_and_host_excluded(self, room):
        assert room.player_ids == ["p1", "p2"]
        assert room.members["host"].is_host

    def test_duplicate_name_rejected(self, manager, room):
        with pytest.raises(RoomError, match="taken"):
            manager.join_room(room.code, "p3", "asha")

    def test_duplicate_id_rejected(self, manager, room):
        with pytest.raises(RoomError, match="already in room"):
            manager.join_room(room.code, "p1", "Someone")

    def test_cannot_join_started_room(self, manager, room):
        manager.start_game(room.code, "host", seed=1)
        with pytest.raises(RoomError, match="already started"):
            manager.join_room(room.code, "p3", "Late")

    def test_player_leaves(self, manager, room):
        assert manager.leave_room(room.code, "p2") is room
        assert room.player_ids == ["p1"]

    def test_host_leaving_closes_room(self, manager, room):
        assert manager.leave_room(room.code, "host") is None
        assert manager.room_codes == []

    def test_leaving_releases_quiz_pause(self, manager, room):
        manager.start_game(room.code, "host", seed=1)
        room.coordinator.start()
        room.coordinator.quiz_completed("p1", AssetCategory.BANKING)
        manager.leave_room(room.code, "p2")
        assert room.coordinator.phase == SessionPhase.RUNNING


class TestStartGame:
    def test_only_host_can_start(self, manager, room):
        with pytest.raises(RoomError, match="only the host"):
            manager.start_game(room.code, "p1")

    def test_needs_a_player(self, manager, settings):
        lonely = manager.create_room("h", "Host", settings)
        with pytest.raises(RoomError, match="at least"):
            manager.start_game(lonely.code, "h")

    def test_start_freezes_session_inputs(self, manager, room):
        manager.start_game(room.code, "host", seed=1234)
        assert room.status == RoomStatus.PLAYING
        assert room.seed == 1234
        assert room.session_id == f"{room.code}-1234"
        assert set(room.states) == {"p1", "p2"}
        assert room.states["p1"].player_name == "Asha"
        assert room.states["p1"].pocket_cash == Decimal("100000.00")
        assert room.states["p1"].quiz_question_indices == room.quiz_indices
        assert room.clock.position == (1, 1)
        assert room.coordinator.phase == SessionPhase.NOT_STARTED

    def test_life_events_differ_per_player_and_skip_unlocks(self, manager, room):
        manager.start_game(room.code, "host", seed=99)
        unlocks = {e.point for e in room.schedule.all_events()}
        for pid in room.player_ids:
            for event in room.states[pid].life_events:
                assert (event.game_year, event.game_month) not in unlocks

    def test_cannot_start_twice(self, manager, room):
        manager.start_game(room.code, "host", seed=1)
        with pytest.raises(RoomError, match="already started"):
            manager.start_game(room.code, "host", seed=1)

    def test_random_seed_when_not_given(self, manager, room):
        manager.start_game(room.code, "host")
        assert isinstance(room.seed, int)


class TestViews:
    def test_leaderboard_ranked_by_networth(self, manager, room, price_lookup):
        manager.start_game(room.code, "host", seed=1)
        room.states["p2"] = room.states["p2"].model_copy(update={"pocket_cash": Decimal("250000.00")})
        board = manager.leaderboard(room.code, price_lookup)
        assert [(r["player_id"], r["rank"]) for r in board] == [("p2", 1), ("p1", 2)]
        assert board[0]["networth"] == Decimal("250000.00")

    def test_toggle_pause(self, manager, room):
        with pytest.raises(RoomError, match="has not started"):
            manager.toggle_pause(room.code, "host")
        manager.start_game(room.code, "host", seed=1)
        room.coordinator.start()
        assert manager.toggle_pause(room.code, "host") == SessionPhase.PAUSED_HOST
        with pytest.raises(RoomError, match="only the host"):
            manager.toggle_pause(room.code, "p1")

    def test_cleanup_stale(self, manager, room, settings):
        playing = manager.create_room("h2", "Other", settings)
        manager.join_room(playing.code, "x", "X")
        manager.start_game(playing.code, "h2", seed=1)
        removed = manager.cleanup_stale(60, now=room.created_at + 3600)
        assert removed == [room.code]
        assert manager.room_codes == [playing.code]

    def test_mark_ended(self, manager, room):
        manager.mark_ended(room.code)
        assert room.status == RoomStatus.ENDED
