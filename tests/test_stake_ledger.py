import math

import pytest

from core.exceptions import InvalidStake
from services import stake_ledger
from services.naming_service import PLAYER_COLORS, color_for_index, resolve_display_name
from tests.conftest import identity


def test_percentage_is_zero_when_pot_is_empty():
    assert stake_ledger.compute_percentage(0, 0) == 0.0
    assert stake_ledger.compute_percentage(5, 0) == 0.0


def test_percentage_of_pot():
    assert stake_ledger.compute_percentage(25, 100) == pytest.approx(25.0)


def test_first_stake_creates_participant_with_join_order_color(db, room):
    first, created_first = stake_ledger.add_stake(db, room, identity(1), 5.0, False)
    second, created_second = stake_ledger.add_stake(db, room, identity(2), 2.5, False)
    db.commit()

    assert created_first and created_second
    assert first.color_index == 0
    assert second.color_index == 1
    assert room.total_stake_units == pytest.approx(7.5)


def test_repeat_stake_accumulates_on_same_entry(db, room):
    stake_ledger.add_stake(db, room, identity(1), 5.0, False)
    participant, created = stake_ledger.add_stake(db, room, identity(1), 3.0, False)
    db.commit()

    assert not created
    assert participant.stake_units == pytest.approx(8.0)
    assert participant.color_index == 0
    assert stake_ledger.count_participants(db, room.id) == 1


def test_gifts_count_as_contributions_tokens_do_not(db, room):
    stake_ledger.add_stake(db, room, identity(1), 1.0, True)
    stake_ledger.add_stake(db, room, identity(1), 1.0, True)
    participant, _ = stake_ledger.add_stake(db, room, identity(1), 10.0, False)
    db.commit()

    assert participant.contribution_count == 2
    assert room.total_contribution_count == 2
    assert room.total_stake_units == pytest.approx(12.0)


@pytest.mark.parametrize("amount", [0, -1.0, math.inf, math.nan])
def test_rejects_non_positive_or_non_finite_stakes(db, room, amount):
    with pytest.raises(InvalidStake):
        stake_ledger.add_stake(db, room, identity(1), amount, False)


def test_list_participants_in_join_order_with_percentages(db, room):
    stake_ledger.add_stake(db, room, identity(3), 10.0, False)
    stake_ledger.add_stake(db, room, identity(1), 30.0, False)
    stake_ledger.add_stake(db, room, identity(2), 60.0, False)
    db.commit()

    snapshots = stake_ledger.list_participants(db, room)

    assert [p.player_id for p in snapshots] == [3, 1, 2]
    assert [p.percentage for p in snapshots] == pytest.approx([10.0, 30.0, 60.0])
    assert [p.color for p in snapshots] == PLAYER_COLORS[:3]
    assert sum(p.percentage for p in snapshots) == pytest.approx(100.0)


def test_room_totals_match_ledger(db, room):
    for player_id, amount in [(1, 4.0), (2, 6.5), (1, 1.5)]:
        stake_ledger.add_stake(db, room, identity(player_id), amount, False)
    db.commit()

    stake, count = stake_ledger.ledger_totals(db, room.id)
    assert stake == room.total_stake_units
    assert count == room.total_contribution_count


def test_room_total_is_exact_sum_of_fractional_stakes(db, room):
    for player_id, amount in [(2, 4.94), (3, 4.91), (3, 4.51), (2, 0.5)]:
        stake_ledger.add_stake(db, room, identity(player_id), amount, False)
    db.commit()
    db.expire_all()

    participants = stake_ledger.get_participants(db, room.id)
    assert sum(p.stake_units for p in participants) == room.total_stake_units


def test_clear_empties_ledger_and_totals(db, room):
    stake_ledger.add_stake(db, room, identity(1), 4.0, True)
    stake_ledger.add_stake(db, room, identity(2), 6.0, False)
    db.commit()

    removed = stake_ledger.clear(db, room)
    db.commit()

    assert removed == 2
    assert stake_ledger.list_participants(db, room) == []
    assert room.total_stake_units == 0
    assert room.total_contribution_count == 0


def test_color_palette_cycles():
    assert color_for_index(0) == color_for_index(len(PLAYER_COLORS))


def test_blank_display_name_falls_back_to_user_id():
    assert resolve_display_name(42, "  ") == "User 42"
    assert resolve_display_name(42, "@alice") == "@alice"
