"""
Room 狀態機：集中管理所有狀態轉換

狀態循環：
    WAITING -> SINGLE_PLAYER -> COUNTDOWN -> SPINNING -> FINISHED -> WAITING

規則：
- WAITING / SINGLE_PLAYER 都是「接受下注、沒有計時」，差別只在有沒有參與者
- 參與者達到 2 人時立刻進入 COUNTDOWN，設定 countdown_end_time
- COUNTDOWN 期間繼續下注不會重設或延長計時
- 倒數剩餘 <= lockout 秒時拒絕下注
- SPINNING 與 winner_id 一起寫入；FINISHED 後 reset 回 WAITING

所有欄位不變量都在 transition() 內維護：
- countdown_end_time != None  <=>  status == COUNTDOWN
- winner_id != None           <=>  status in (SPINNING, FINISHED)

這裡只改 Room 物件，不 commit，也不上鎖（由 RoomCoordinator 負責）
"""
from datetime import datetime, timedelta
from typing import Optional
import logging

from models import Room, RoomStatus
from core.exceptions import InvalidStateTransition

logger = logging.getLogger(__name__)


VALID_TRANSITIONS = {
    RoomStatus.WAITING: {RoomStatus.SINGLE_PLAYER},
    RoomStatus.SINGLE_PLAYER: {RoomStatus.COUNTDOWN},
    RoomStatus.COUNTDOWN: {RoomStatus.SPINNING},
    RoomStatus.SPINNING: {RoomStatus.FINISHED},
    RoomStatus.FINISHED: {RoomStatus.WAITING},
}

ACCEPTING_STATUSES = {RoomStatus.WAITING, RoomStatus.SINGLE_PLAYER}
RESOLVED_STATUSES = {RoomStatus.SPINNING, RoomStatus.FINISHED}

MIN_PLAYERS_FOR_COUNTDOWN = 2


class RoomStateMachine:
    """Room 狀態轉換器"""

    @staticmethod
    def can_transition(from_status: RoomStatus, to_status: RoomStatus) -> bool:
        return to_status in VALID_TRANSITIONS.get(from_status, set())

    @staticmethod
    def transition(
        room: Room,
        to_status: RoomStatus,
        now: datetime,
        countdown_seconds: float = 0,
        winner_id: Optional[int] = None
    ) -> Room:
        """
        執行一次狀態轉換並維護欄位不變量

        參數：
            room: 已被鎖定的 Room
            to_status: 目標狀態
            now: 目前時間（naive UTC）
            countdown_seconds: 進入 COUNTDOWN 時的倒數長度
            winner_id: 進入 SPINNING 時必須提供

        返回：
            更新後的 Room

        異常：
            InvalidStateTransition: 非法轉換，或進入 SPINNING 卻沒有 winner
        """
        from_status = room.status
        if not RoomStateMachine.can_transition(from_status, to_status):
            raise InvalidStateTransition(
                f"Room {room.id}: cannot transition from "
                f"{from_status.value} to {to_status.value}"
            )

        if to_status == RoomStatus.COUNTDOWN:
            room.countdown_end_time = now + timedelta(seconds=countdown_seconds)
        else:
            room.countdown_end_time = None

        if to_status == RoomStatus.SPINNING:
            if winner_id is None:
                raise InvalidStateTransition(
                    f"Room {room.id}: entering spinning requires a winner"
                )
            room.winner_id = winner_id
            room.spin_started_at = now
        elif to_status == RoomStatus.FINISHED:
            room.finished_at = now
        elif to_status == RoomStatus.WAITING:
            room.winner_id = None
            room.spin_started_at = None
            room.finished_at = None

        room.status = to_status
        logger.info(
            f"Room {room.id} transitioned {from_status.value} -> {to_status.value}"
        )
        return room

    @staticmethod
    def status_for_participants(room: Room, participant_count: int) -> RoomStatus:
        """
        下注後應該處於的狀態

        只在 WAITING / SINGLE_PLAYER 時才會變動；
        COUNTDOWN 之後的狀態不受參與者數量影響
        """
        if room.status not in ACCEPTING_STATUSES:
            return room.status
        if participant_count >= MIN_PLAYERS_FOR_COUNTDOWN:
            return RoomStatus.COUNTDOWN
        if participant_count == 1:
            return RoomStatus.SINGLE_PLAYER
        return RoomStatus.WAITING

    @staticmethod
    def seconds_left(room: Room, now: datetime) -> Optional[float]:
        if room.status != RoomStatus.COUNTDOWN or room.countdown_end_time is None:
            return None
        return (room.countdown_end_time - now).total_seconds()

    @staticmethod
    def is_accepting(room: Room, now: datetime, lockout_seconds: float) -> bool:
        """
        是否接受下注

        - WAITING / SINGLE_PLAYER：接受
        - COUNTDOWN：剩餘時間 > lockout_seconds 才接受
        - SPINNING / FINISHED：一律拒絕
        """
        if room.status in ACCEPTING_STATUSES:
            return True
        if room.status == RoomStatus.COUNTDOWN:
            return RoomStateMachine.seconds_left(room, now) > lockout_seconds
        return False

    @staticmethod
    def is_countdown_due(room: Room, now: datetime) -> bool:
        return (
            room.status == RoomStatus.COUNTDOWN
            and room.countdown_end_time is not None
            and now >= room.countdown_end_time
        )

    @staticmethod
    def is_spin_done(room: Room, now: datetime, spin_duration_seconds: float) -> bool:
        return (
            room.status == RoomStatus.SPINNING
            and room.spin_started_at is not None
            and now >= room.spin_started_at + timedelta(seconds=spin_duration_seconds)
        )

    @staticmethod
    def is_reset_due(room: Room, now: datetime, result_display_seconds: float) -> bool:
        return (
            room.status == RoomStatus.FINISHED
            and room.finished_at is not None
            and now >= room.finished_at + timedelta(seconds=result_display_seconds)
        )
