from datetime import datetime, timedelta

import pytest

from core.exceptions import InvalidStateTransition
from core.state_machine import RoomStateMachine
from models import Room, RoomStatus

NOW = datetime(2024, 1, 1, 12, 0, 0)


def make_room(status=RoomStatus.WAITING, **fields):
    return Room(id="room-1", status=status, **fields)


def test_waiting_cannot_jump_to_countdown():
    with pytest.raises(InvalidStateTransition):
        RoomStateMachine.transition(make_room(), RoomStatus.COUNTDOWN, NOW)


def test_countdown_sets_deadline():
    room = make_room(RoomStatus.SINGLE_PLAYER)
    RoomStateMachine.transition(room, RoomStatus.COUNTDOWN, NOW, countdown_seconds=20)

    assert room.status == RoomStatus.COUNTDOWN
    assert room.countdown_end_time == NOW + timedelta(seconds=20)


def test_spinning_requires_winner():
    room = make_room(RoomStatus.COUNTDOWN, countdown_end_time=NOW)
    with pytest.raises(InvalidStateTransition):
        RoomStateMachine.transition(room, RoomStatus.SPINNING, NOW)


def test_spinning_commits_winner_and_clears_deadline():
    room = make_room(RoomStatus.COUNTDOWN, countdown_end_time=NOW)
    RoomStateMachine.transition(room, RoomStatus.SPINNING, NOW, winner_id=5)

    assert room.winner_id == 5
    assert room.countdown_end_time is None
    assert room.spin_started_at == NOW


def test_back_to_waiting_clears_round_fields():
    room = make_room(RoomStatus.FINISHED, winner_id=5, spin_started_at=NOW, finished_at=NOW)
    RoomStateMachine.transition(room, RoomStatus.WAITING, NOW)

    assert room.winner_id is None
    assert room.finished_at is None
    assert room.countdown_end_time is None


@pytest.mark.parametrize("count, expected", [
    (0, RoomStatus.WAITING),
    (1, RoomStatus.SINGLE_PLAYER),
    (2, RoomStatus.COUNTDOWN),
    (5, RoomStatus.COUNTDOWN),
])
def test_status_for_participants(count, expected):
    assert RoomStateMachine.status_for_participants(make_room(), count) == expected


def test_status_for_participants_does_not_touch_running_round():
    room = make_room(RoomStatus.SPINNING)
    assert RoomStateMachine.status_for_participants(room, 1) == RoomStatus.SPINNING


@pytest.mark.parametrize("seconds_left, accepting", [
    (10.0, True),
    (3.01, True),
    (3.0, False),
    (0.5, False),
    (-1.0, False),
])
def test_lockout_window(seconds_left, accepting):
    room = make_room(
        RoomStatus.COUNTDOWN,
        countdown_end_time=NOW + timedelta(seconds=seconds_left)
    )
    assert RoomStateMachine.is_accepting(room, NOW, 3.0) is accepting


@pytest.mark.parametrize("status, accepting", [
    (RoomStatus.WAITING, True),
    (RoomStatus.SINGLE_PLAYER, True),
    (RoomStatus.SPINNING, False),
    (RoomStatus.FINISHED, False),
])
def test_accepting_by_status(status, accepting):
    assert RoomStateMachine.is_accepting(make_room(status), NOW, 3.0) is accepting


def test_timers():
    room = make_room(RoomStatus.COUNTDOWN, countdown_end_time=NOW)
    assert RoomStateMachine.is_countdown_due(room, NOW)
    assert not RoomStateMachine.is_countdown_due(room, NOW - timedelta(seconds=1))

    room = make_room(RoomStatus.SPINNING, spin_started_at=NOW)
    assert not RoomStateMachine.is_spin_done(room, NOW + timedelta(seconds=14), 15)
    assert RoomStateMachine.is_spin_done(room, NOW + timedelta(seconds=15), 15)

    room = make_room(RoomStatus.FINISHED, finished_at=NOW)
    assert RoomStateMachine.is_reset_due(room, NOW + timedelta(seconds=7), 7)
