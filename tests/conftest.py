from datetime import datetime, timedelta
import random

import pytest
from sqlalchemy.orm import sessionmaker

from database import Base, Settings, build_engine
from models import Room, RoomStatus
from schemas import Identity
from core.locks import RoomLockTable
from core.room_manager import RoomCoordinator
from services.change_feed import ChangeFeed


class FakeClock:
    """可手動推進的時鐘（naive UTC）"""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def identity(player_id, name=None):
    return Identity(
        id=player_id,
        display_name=name if name is not None else f"Player {player_id}",
        avatar_url=f"https://example.test/avatar/{player_id}.png",
    )


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        countdown_seconds=20,
        lockout_seconds=3.0,
        spin_duration_seconds=15.0,
        result_display_seconds=7.0,
        auto_reset_rounds=True,
        auto_create_rooms=True,
        tick_interval_seconds=0,
    )


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def coordinator(feed, settings, clock):
    return RoomCoordinator(
        feed=feed,
        settings=settings,
        clock=clock,
        rng=random.Random(1234),
        locks=RoomLockTable(),
    )


@pytest.fixture
def room(db):
    room = Room(
        id="room-1",
        status=RoomStatus.WAITING,
        total_stake_units=0.0,
        total_contribution_count=0,
        round_number=1,
        state_version=0,
    )
    db.add(room)
    db.commit()
    return room
