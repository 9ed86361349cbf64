"""
資料模型

- Room：一個彩池（一列 = 一個遊戲實例，回合結束後回收重用，不刪除）
- Participant：本回合有下注的玩家（Stake Ledger 的一筆紀錄）
- Presence：最近載入過房間的玩家（線上名單，純資訊用途）
- EventLog：事件紀錄（append-only）
"""
from datetime import datetime, timezone
import enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    """
    取得目前 UTC 時間（naive）

    SQLite 不保存時區，所以全系統一律使用 naive UTC datetime
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RoomStatus(str, enum.Enum):
    WAITING = "waiting"
    SINGLE_PLAYER = "single_player"
    COUNTDOWN = "countdown"
    SPINNING = "spinning"
    FINISHED = "finished"


class StakeKind(str, enum.Enum):
    GIFT = "gift"    # 一個禮物 = 1 單位，並計入 contribution_count
    TOKEN = "token"  # 任意正數的代幣金額


class Room(Base):
    __tablename__ = "rooms"

    id = Column(String(64), primary_key=True)
    status = Column(Enum(RoomStatus), nullable=False, default=RoomStatus.WAITING)

    # 只有 COUNTDOWN 時有值
    countdown_end_time = Column(DateTime, nullable=True)
    spin_started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    # 只有 SPINNING / FINISHED 時有值
    winner_id = Column(BigInteger, nullable=True)

    # 反正規化的總和，必須等於 participants 的加總
    total_stake_units = Column(Float, nullable=False, default=0.0)
    total_contribution_count = Column(Integer, nullable=False, default=0)

    round_number = Column(Integer, nullable=False, default=1)
    state_version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    participants = relationship(
        "Participant",
        back_populates="room",
        order_by="Participant.id",
        cascade="all, delete-orphan",
    )


class Participant(Base):
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("room_id", "player_id", name="uq_participant_room_player"),
    )

    # 自增 id 即加入順序
    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(String(64), ForeignKey("rooms.id"), nullable=False, index=True)
    player_id = Column(BigInteger, nullable=False)
    display_name = Column(String(128), nullable=False)
    avatar_url = Column(String(512), nullable=True)

    stake_units = Column(Float, nullable=False, default=0.0)
    contribution_count = Column(Integer, nullable=False, default=0)
    color_index = Column(Integer, nullable=False)

    joined_at = Column(DateTime, nullable=False, default=utcnow)

    room = relationship("Room", back_populates="participants")


class Presence(Base):
    __tablename__ = "presence"

    room_id = Column(String(64), primary_key=True)
    player_id = Column(BigInteger, primary_key=True)
    display_name = Column(String(128), nullable=False)
    avatar_url = Column(String(512), nullable=True)
    last_seen_at = Column(DateTime, nullable=False, default=utcnow, index=True)


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(String(64), nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)
