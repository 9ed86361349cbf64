"""
Change Feed：把 commit 後的完整房間快照推送給訂閱者

規則：
- 每次 commit 都推送完整的 RoomState（房間 + 全部參與者），不推送 diff
- 至少一次送達、不保證順序：消費端以 state_version 判斷新舊，整份取代本地狀態
- 某個訂閱者的 callback 拋出例外只會被記錄，不影響其他訂閱者，也不影響 commit

這是 process 內的 pub/sub；WebSocket 端點把 callback 接到 asyncio.Queue
"""
from dataclasses import dataclass
from typing import Callable, Dict, List
import threading
import logging
import uuid

from schemas import RoomState

logger = logging.getLogger(__name__)

Subscriber = Callable[[RoomState], None]


@dataclass
class Subscription:
    token: str
    room_id: str
    callback: Subscriber


class ChangeFeed:
    """Process 內的房間快照發布器"""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, Subscription] = {}

    def subscribe(self, room_id: str, callback: Subscriber) -> str:
        """
        訂閱房間的快照

        返回：
            訂閱 token（用於 unsubscribe）
        """
        token = uuid.uuid4().hex
        with self._lock:
            self._subscriptions[token] = Subscription(token, room_id, callback)
        logger.info(f"Subscriber {token} attached to room {room_id}")
        return token

    def unsubscribe(self, token: str) -> bool:
        """取消訂閱；token 不存在時回傳 False（重複取消不是錯誤）"""
        with self._lock:
            subscription = self._subscriptions.pop(token, None)
        if subscription is None:
            return False
        logger.info(f"Subscriber {token} detached from room {subscription.room_id}")
        return True

    def subscriber_count(self, room_id: str) -> int:
        with self._lock:
            return sum(1 for s in self._subscriptions.values() if s.room_id == room_id)

    def _subscribers_for(self, room_id: str) -> List[Subscription]:
        with self._lock:
            return [s for s in self._subscriptions.values() if s.room_id == room_id]

    def publish(self, state: RoomState) -> int:
        """
        推送快照給該房間所有訂閱者

        返回：
            成功送達的訂閱者數量
        """
        delivered = 0
        for subscription in self._subscribers_for(state.room.id):
            try:
                subscription.callback(state)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Subscriber {subscription.token} failed for room {state.room.id}: {e}",
                    exc_info=True
                )
        return delivered


change_feed = ChangeFeed()
