"""
線上名單服務：記錄最近載入過房間的玩家

Heartbeat 是 fire-and-forget：
- 不經過房間鎖
- 遺失不影響回合正確性
"""
from datetime import datetime, timedelta
from typing import List

from sqlalchemy.orm import Session

from models import Presence
from schemas import Identity
from services.naming_service import resolve_display_name


def touch_presence(db: Session, room_id: str, identity: Identity, now: datetime) -> Presence:
    """
    新增或更新玩家的線上紀錄（名稱、頭像可能改變）

    注意：不 commit，由呼叫端負責
    """
    presence = db.get(Presence, (room_id, identity.id))
    display_name = resolve_display_name(identity.id, identity.display_name)
    if presence is None:
        presence = Presence(
            room_id=room_id,
            player_id=identity.id,
            display_name=display_name,
            avatar_url=identity.avatar_url,
            last_seen_at=now,
        )
        db.add(presence)
    else:
        presence.display_name = display_name
        presence.avatar_url = identity.avatar_url
        presence.last_seen_at = now
    return presence


def list_online(db: Session, room_id: str, now: datetime, window_seconds: int) -> List[Presence]:
    """取得 window_seconds 內出現過的玩家，最近的排前面"""
    since = now - timedelta(seconds=window_seconds)
    return db.query(Presence).filter(
        Presence.room_id == room_id,
        Presence.last_seen_at >= since
    ).order_by(Presence.last_seen_at.desc()).all()
