"""
並發控制工具

提供兩層鎖定機制，防止競態條件（Race Condition）：

1. Process 內：每個 room_id 一把 threading.Lock（RoomLockTable）
   - SQLite 不支援 SELECT ... FOR UPDATE，所以單機部署靠這一層
   - 不同房間的操作互不影響
2. Database-level：PostgreSQL 的 SELECT ... FOR UPDATE（悲觀鎖）
   - 多個 worker process 共用同一個資料庫時生效

使用方式：
    with room_locks.hold(room_id):
        room = with_room_lock(room_id, db).first()
        ...
        db.commit()  # commit 必須在 hold() 範圍內完成
"""
from contextlib import contextmanager
import threading
import logging

from sqlalchemy.orm import Session, Query

from models import Room

logger = logging.getLogger(__name__)


class RoomLockTable:
    """
    以 room_id 分片的鎖表

    每個 room_id 對應一把 Lock，第一次使用時建立。
    房間不會被刪除（回合結束後重用），所以鎖也不回收。
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def get(self, room_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(room_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[room_id] = lock
            return lock

    @contextmanager
    def hold(self, room_id: str):
        """
        取得房間的互斥區

        注意：
            - 不可重入：同一執行緒在 hold() 內不能再 hold() 同一個房間
            - 互斥區內只能做 in-memory / 資料庫工作，不要呼叫外部網路服務
        """
        lock = self.get(room_id)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()


room_locks = RoomLockTable()


def with_room_lock(room_id: str, db: Session) -> Query:
    """
    鎖定一個 Room（行級鎖）

    使用場景：
    - 修改 Room 狀態時
    - 抽獎時（防止重複抽出贏家）

    範例：
        room = with_room_lock(room_id, db).first()
        if not room:
            raise RoomNotFound(room_id)
        room.status = RoomStatus.SPINNING
        db.commit()

    參數：
        room_id: Room 的 id
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）

    注意：
        - nowait=False 表示如果鎖被佔用，會等待
        - SQLite 會忽略 FOR UPDATE，需搭配 room_locks 使用
        - populate_existing 確保拿到的是資料庫最新值，而不是 session 內的舊快取
    """
    return db.query(Room).filter(
        Room.id == room_id
    ).with_for_update(nowait=False).populate_existing()
