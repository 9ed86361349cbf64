"""
Player API Endpoints

職責：
1. 玩家載入房間（登記線上名單）
2. Heartbeat
3. 查詢線上玩家
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import Identity, PresenceResponse, RoomState, StatusResponse
from core.room_manager import RoomCoordinator, get_coordinator
from core.exceptions import RoomNotFound, StoreUnavailable

router = APIRouter(prefix="/api/rooms", tags=["players"])
logger = logging.getLogger(__name__)


@router.post("/{room_id}/join", response_model=RoomState)
def join_room(
    room_id: str,
    identity: Identity,
    db: Session = Depends(get_db),
    coordinator: RoomCoordinator = Depends(get_coordinator)
):
    """
    載入房間（不等於參與，要下注才會成為 Participant）

    流程：
    1. 確保房間存在（依設定自動建立）
    2. 登記線上名單
    3. 返回完整快照
    """
    try:
        state = coordinator.join(db, room_id, identity)
        logger.info(f"Player {identity.id} joined room {room_id}")
        return state

    except RoomNotFound:
        raise HTTPException(status_code=404, detail="Room not found")
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Store unavailable, retry later")
    except Exception as e:
        logger.error(f"Failed to join room: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{room_id}/heartbeat", response_model=StatusResponse)
def heartbeat(
    room_id: str,
    identity: Identity,
    db: Session = Depends(get_db),
    coordinator: RoomCoordinator = Depends(get_coordinator)
):
    """遺失的 heartbeat 不是錯誤，回傳 status=lost"""
    recorded = coordinator.heartbeat(db, room_id, identity)
    return StatusResponse(status="ok" if recorded else "lost", changed=recorded)


@router.get("/{room_id}/online", response_model=List[PresenceResponse])
def list_online_players(
    room_id: str,
    db: Session = Depends(get_db),
    coordinator: RoomCoordinator = Depends(get_coordinator)
):
    """最近 presence_window_seconds 秒內出現過的玩家"""
    try:
        return [
            PresenceResponse(
                player_id=p.player_id,
                display_name=p.display_name,
                avatar_url=p.avatar_url,
                last_seen_at=p.last_seen_at
            )
            for p in coordinator.online(db, room_id)
        ]

    except Exception as e:
        logger.error(f"Failed to list online players: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
