"""
Round API Endpoints

重點：
1. contribute 在房間鎖內完成驗證、更新、轉換、commit
2. resolve / reset 都是冪等的，任何客戶端都可以呼叫
3. 所有業務邏輯集中在 RoomCoordinator
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import logging

from database import get_db
from schemas import ContributeRequest, ContributeResponse, RoomState, StatusResponse
from core.room_manager import RoomCoordinator, get_coordinator
from core.exceptions import (
    RoomNotFound,
    RoundLocked,
    InvalidStake,
    NoParticipants,
    StoreUnavailable
)

router = APIRouter(prefix="/api/rooms", tags=["rounds"])
logger = logging.getLogger(__name__)


@router.post("/{room_id}/contribute", response_model=ContributeResponse)
def contribute(
    room_id: str,
    payload: ContributeRequest,
    db: Session = Depends(get_db),
    coordinator: RoomCoordinator = Depends(get_coordinator)
):
    """
    下注（禮物或代幣）

    前置條件：
    - 房間狀態是 WAITING / SINGLE_PLAYER，或 COUNTDOWN 且剩餘 > 3 秒

    流程：
    1. 驗證房間是否接受下注
    2. 更新 ledger
    3. 第 2 位參與者進來時開始倒數
    4. 推送完整快照給訂閱者

    返回：
        - room: 更新後的房間快照
        - participant: 下注者的快照（含百分比）
    """
    try:
        return coordinator.contribute(
            db,
            room_id,
            payload.identity,
            payload.amount,
            payload.kind
        )

    except RoomNotFound:
        raise HTTPException(status_code=404, detail="Room not found")
    except RoundLocked as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidStake as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Store unavailable, retry later")
    except NoParticipants:
        raise HTTPException(status_code=500, detail="Internal error")
    except Exception as e:
        logger.error(f"Failed to contribute: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{room_id}/resolve", response_model=RoomState)
def resolve_if_due(
    room_id: str,
    db: Session = Depends(get_db),
    coordinator: RoomCoordinator = Depends(get_coordinator)
):
    """
    倒數到期時抽出贏家（冪等）

    **消除特殊情況**：
    - 不是「最後一個倒數到 0 的客戶端」負責結算
    - 任何人、任何時候都可以呼叫，沒到期就什麼都不做

    **並發安全**：
    - 房間鎖確保只抽一次
    """
    try:
        return coordinator.resolve_if_due(db, room_id)

    except RoomNotFound:
        raise HTTPException(status_code=404, detail="Room not found")
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Store unavailable, retry later")
    except NoParticipants:
        raise HTTPException(status_code=500, detail="Internal error")
    except Exception as e:
        logger.error(f"Failed to resolve room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{room_id}/reset", response_model=StatusResponse)
def reset_round(
    room_id: str,
    db: Session = Depends(get_db),
    coordinator: RoomCoordinator = Depends(get_coordinator)
):
    """
    重置回合（SPINNING/FINISHED -> WAITING）

    冪等：已經是 WAITING 的房間回傳 changed=false
    未結算的回合（SINGLE_PLAYER/COUNTDOWN）不會被重置
    """
    try:
        state, changed = coordinator.reset(db, room_id)
        logger.info(f"Reset requested for room {room_id}: changed={changed}")
        return StatusResponse(status=state.room.status.value, changed=changed)

    except RoomNotFound:
        raise HTTPException(status_code=404, detail="Room not found")
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Store unavailable, retry later")
    except Exception as e:
        logger.error(f"Failed to reset room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
