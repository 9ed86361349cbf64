"""
Room API Endpoints - 短輪詢版

所有讀取都會先 lazy tick，所以即使背景 scheduler 停了，
只要有人在看房間，倒數到期就會結算
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import ParticipantSnapshot, RoomSnapshot, RoomState
from core.room_manager import RoomCoordinator, get_coordinator
from core.exceptions import RoomNotFound, StoreUnavailable

router = APIRouter(prefix="/api/rooms", tags=["rooms"])
logger = logging.getLogger(__name__)


def _read(fn, room_id: str):
    try:
        return fn()
    except RoomNotFound:
        raise HTTPException(status_code=404, detail="Room not found")
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Store unavailable, retry later")
    except Exception as e:
        logger.error(f"Failed to read room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{room_id}", response_model=RoomSnapshot)
def get_room(
    room_id: str,
    db: Session = Depends(get_db),
    coordinator: RoomCoordinator = Depends(get_coordinator)
):
    return _read(lambda: coordinator.get_room_snapshot(db, room_id), room_id)


@router.get("/{room_id}/participants", response_model=List[ParticipantSnapshot])
def get_participants(
    room_id: str,
    db: Session = Depends(get_db),
    coordinator: RoomCoordinator = Depends(get_coordinator)
):
    """依加入順序，含百分比"""
    return _read(lambda: coordinator.get_participants(db, room_id), room_id)


@router.get("/{room_id}/state", response_model=RoomState)
def get_room_state(
    room_id: str,
    since_version: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    coordinator: RoomCoordinator = Depends(get_coordinator)
):
    """
    完整快照（短輪詢用）

    參數：
        since_version: 客戶端目前的 state_version；沒有更新時回傳 304

    注意：
        客戶端收到快照後必須整份取代本地狀態（包含 optimistic update）
    """
    state = _read(lambda: coordinator.snapshot(db, room_id), room_id)
    if since_version is not None and state.room.state_version <= since_version:
        return Response(status_code=304)
    return state
