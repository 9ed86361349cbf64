"""
WebSocket Endpoint：Change Feed 的 push 訂閱

- 連線後先送一份完整快照
- 之後每次 commit 都送完整快照（不是 diff）
- 客戶端用 room.state_version 丟掉比目前舊的快照，其餘一律整份取代
- 斷線時自動取消訂閱
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool

from database import get_session_factory
from schemas import RoomState
from core.room_manager import RoomCoordinator, get_coordinator
from core.exceptions import RouletteGameException

router = APIRouter(tags=["websocket"])
logger = logging.getLogger(__name__)


def _load_snapshot(coordinator: RoomCoordinator, session_factory, room_id: str) -> RoomState:
    db = session_factory()
    try:
        return coordinator.snapshot(db, room_id)
    finally:
        db.close()


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """客戶端不會送訊息過來，收到的唯一有意義事件是斷線"""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws/rooms/{room_id}")
async def room_feed(
    websocket: WebSocket,
    room_id: str,
    coordinator: RoomCoordinator = Depends(get_coordinator),
    session_factory=Depends(get_session_factory)
):
    await websocket.accept()

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    # publish 會在 worker thread 上被呼叫，必須切回 event loop
    def deliver(state: RoomState) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, state)

    token = coordinator.subscribe(room_id, deliver)
    try:
        try:
            initial = await run_in_threadpool(_load_snapshot, coordinator, session_factory, room_id)
        except RouletteGameException as e:
            await websocket.send_json({"error": str(e)})
            await websocket.close(code=1011)
            return

        await websocket.send_json(initial.model_dump(mode="json"))
        last_version = initial.version

        # 閒置時也要能察覺斷線，不然訂閱會留到下一次 publish
        disconnected = asyncio.ensure_future(_wait_for_disconnect(websocket))
        try:
            while True:
                pending = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait(
                    {pending, disconnected}, return_when=asyncio.FIRST_COMPLETED
                )
                if disconnected in done:
                    pending.cancel()
                    logger.info(f"Feed client disconnected from room {room_id}")
                    break

                state = pending.result()
                if state.version <= last_version:
                    continue
                last_version = state.version
                await websocket.send_json(state.model_dump(mode="json"))
        finally:
            disconnected.cancel()

    except WebSocketDisconnect:
        logger.info(f"Feed client disconnected from room {room_id}")
    finally:
        coordinator.unsubscribe(token)
