"""
State Version 服務

每次改變房間的 commit 都會：
1. Room.state_version + 1
2. 寫一筆 EventLog 記錄原因

Change Feed 的消費端用版本號丟掉亂序抵達的快照，
short-polling 客戶端則拿它和已經顯示的版本比較
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from models import EventLog, Room

logger = logging.getLogger(__name__)


def bump_state_version(
    db: Session,
    room: Room,
    reason: str,
    data: Optional[Dict[str, Any]] = None
) -> int:
    """
    遞增房間版本並記錄事件（不 commit，由呼叫端負責）

    參數：
        db: SQLAlchemy Session
        room: 已被鎖定的 Room
        reason: 事件類型，例如 STAKE_ADDED、WINNER_SELECTED
        data: 附加在 EventLog 上的資料

    返回：
        新的 state_version
    """
    room.state_version = (room.state_version or 0) + 1
    db.add(EventLog(room_id=room.id, event_type=reason, data=data or {}))
    logger.debug(f"Room {room.id} state_version -> {room.state_version} ({reason})")
    return room.state_version
