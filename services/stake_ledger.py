"""
Stake Ledger：每個房間本回合的下注紀錄

職責：
1. 累加玩家下注（同一回合同一玩家只有一筆紀錄）
2. 維護 Room 上的反正規化總和
3. 計算每位參與者的百分比

注意：
- 這裡不做任何鎖定，呼叫端（RoomCoordinator）必須已經持有房間鎖
- 不 commit，由呼叫端的 transaction 負責
"""
import math
from typing import List, Tuple

from sqlalchemy.orm import Session

from models import Participant, Room
from schemas import Identity, ParticipantSnapshot
from core.exceptions import InvalidStake
from services.naming_service import color_for_index, next_color_index, resolve_display_name


def compute_percentage(stake_units: float, total_stake_units: float) -> float:
    """
    計算下注佔比（0-100）

    total 為 0 時回傳 0，不會產生 NaN / inf
    """
    if total_stake_units <= 0:
        return 0.0
    return stake_units / total_stake_units * 100


def add_stake(
    db: Session,
    room: Room,
    identity: Identity,
    units: float,
    is_discrete_gift: bool
) -> Tuple[Participant, bool]:
    """
    為玩家加上一筆下注

    流程：
    1. 驗證金額（必須是有限正數）
    2. 找到玩家本回合的紀錄，沒有就建立（color_index = 目前參與者數量）
    3. 累加 stake_units；若是禮物則 contribution_count + 1
    4. 依加入順序重算 Room 的總和

    參數：
        db: SQLAlchemy Session
        room: 已被鎖定的 Room
        identity: 玩家身分
        units: 下注單位數
        is_discrete_gift: 是否為一個禮物

    返回：
        (Participant, created) - created 為 True 表示本次是第一次下注

    異常：
        InvalidStake: 金額不合法
    """
    if units is None or not math.isfinite(units) or units <= 0:
        raise InvalidStake(f"Stake must be a positive finite amount, got {units}")

    participant = db.query(Participant).filter(
        Participant.room_id == room.id,
        Participant.player_id == identity.id
    ).first()

    created = participant is None
    if created:
        participant = Participant(
            room_id=room.id,
            player_id=identity.id,
            display_name=resolve_display_name(identity.id, identity.display_name),
            avatar_url=identity.avatar_url,
            stake_units=0.0,
            contribution_count=0,
            color_index=next_color_index(room.id, db),
        )
        db.add(participant)
    else:
        # 名稱或頭像可能在回合中改變
        participant.display_name = resolve_display_name(identity.id, identity.display_name)
        participant.avatar_url = identity.avatar_url

    gifts = 1 if is_discrete_gift else 0
    participant.stake_units = (participant.stake_units or 0.0) + units
    participant.contribution_count = (participant.contribution_count or 0) + gifts

    db.flush()

    # 總和每次都從 ledger 重算，逐筆累加會和參與者加總產生浮點誤差
    room.total_stake_units, room.total_contribution_count = ledger_totals(db, room.id)
    return participant, created


def get_participants(db: Session, room_id: str) -> List[Participant]:
    """依加入順序取得參與者"""
    return db.query(Participant).filter(
        Participant.room_id == room_id
    ).order_by(Participant.id).all()


def count_participants(db: Session, room_id: str) -> int:
    return db.query(Participant).filter(Participant.room_id == room_id).count()


def to_snapshot(participant: Participant, total_stake_units: float) -> ParticipantSnapshot:
    return ParticipantSnapshot(
        player_id=participant.player_id,
        display_name=participant.display_name,
        avatar_url=participant.avatar_url,
        stake_units=participant.stake_units,
        contribution_count=participant.contribution_count,
        color_index=participant.color_index,
        color=color_for_index(participant.color_index),
        percentage=compute_percentage(participant.stake_units, total_stake_units),
    )


def list_participants(db: Session, room: Room) -> List[ParticipantSnapshot]:
    """
    取得參與者快照（含百分比）

    百分比以 Room 上的總和為分母，和參與者加總必須一致
    """
    return [
        to_snapshot(participant, room.total_stake_units)
        for participant in get_participants(db, room.id)
    ]


def ledger_totals(db: Session, room_id: str) -> Tuple[float, int]:
    """
    依加入順序從 ledger 加總

    Room 上的反正規化欄位就是這個結果，驗證時也要用同樣的順序相加
    """
    participants = get_participants(db, room_id)
    stake = sum((p.stake_units for p in participants), 0.0)
    count = sum(p.contribution_count for p in participants)
    return stake, count


def clear(db: Session, room: Room) -> int:
    """
    清空房間本回合的所有下注紀錄（不影響 Presence）

    返回：
        刪除的紀錄數
    """
    deleted = db.query(Participant).filter(
        Participant.room_id == room.id
    ).delete(synchronize_session=False)
    room.total_stake_units = 0.0
    room.total_contribution_count = 0
    db.expire(room, ["participants"])
    return deleted
