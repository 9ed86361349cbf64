"""
命名服務：玩家顯示名稱與轉盤顏色

純計算邏輯，不涉及狀態轉換
"""
from sqlalchemy.orm import Session

from models import Participant

PLAYER_COLORS = ["#ef4444", "#22c55e", "#3b82f6", "#f59e0b", "#8b5cf6", "#ec4899"]


def resolve_display_name(player_id: int, display_name: str) -> str:
    """
    取得玩家的顯示名稱

    Identity provider 給的名稱可能是空字串，這時 fallback 成「User <id>」

    範例：
        resolve_display_name(42, "@alice") -> "@alice"
        resolve_display_name(42, "   ")    -> "User 42"
    """
    name = (display_name or "").strip()
    return name if name else f"User {player_id}"


def next_color_index(room_id: str, db: Session) -> int:
    """
    為房間內的新參與者分配顏色編號

    邏輯：
    - 編號 = 目前參與者數量（加入順序）
    - 一回合內固定不變，重置後重新從 0 開始
    - 超過調色盤大小時由 color_for_index 循環取色

    參數：
        room_id: 房間 ID
        db: SQLAlchemy Session

    返回：
        顏色編號（0, 1, 2, ...）
    """
    return db.query(Participant).filter(Participant.room_id == room_id).count()


def color_for_index(color_index: int) -> str:
    """
    範例：
        color_for_index(0) -> "#ef4444"
        color_for_index(6) -> "#ef4444"
    """
    return PLAYER_COLORS[color_index % len(PLAYER_COLORS)]
