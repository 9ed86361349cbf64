"""
Pydantic schemas：API 輸入輸出與 Change Feed 的快照格式

快照一律是完整狀態（不是 diff），消費端收到後直接整份取代本地狀態
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from models import RoomStatus, StakeKind


def as_utc_iso(value: datetime) -> str:
    """
    資料庫存的是 naive UTC，輸出時補上時區

    沒有 offset 的字串會被瀏覽器當成本地時間解讀
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class Identity(BaseModel):
    """Identity provider 給的玩家身分（視為已驗證）"""
    id: int
    display_name: str = ""
    avatar_url: Optional[str] = None


class ContributeRequest(BaseModel):
    identity: Identity
    kind: StakeKind = StakeKind.GIFT
    # GIFT 固定 1 單位，只有 TOKEN 會使用 amount
    amount: float = 1.0


class RoomSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: RoomStatus
    countdown_end_time: Optional[datetime] = None
    winner_id: Optional[int] = None
    total_stake_units: float
    total_contribution_count: int
    round_number: int
    state_version: int

    @field_serializer("countdown_end_time", when_used="json-unless-none")
    def serialize_countdown_end_time(self, value: datetime) -> str:
        return as_utc_iso(value)


class ParticipantSnapshot(BaseModel):
    player_id: int
    display_name: str
    avatar_url: Optional[str] = None
    stake_units: float
    contribution_count: int
    color_index: int
    color: str
    percentage: float


class RoomState(BaseModel):
    """Change Feed 傳遞的單位：房間 + 全部參與者"""
    room: RoomSnapshot
    participants: List[ParticipantSnapshot] = Field(default_factory=list)

    @property
    def version(self) -> int:
        return self.room.state_version


class ContributeResponse(BaseModel):
    room: RoomSnapshot
    participant: ParticipantSnapshot


class PresenceResponse(BaseModel):
    player_id: int
    display_name: str
    avatar_url: Optional[str] = None
    last_seen_at: datetime

    @field_serializer("last_seen_at", when_used="json")
    def serialize_last_seen_at(self, value: datetime) -> str:
        return as_utc_iso(value)


class StatusResponse(BaseModel):
    status: str
    changed: bool = False
