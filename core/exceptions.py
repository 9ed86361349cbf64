"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

分類：
- 預期內、可恢復：RoomNotFound、RoundLocked、InvalidStake
  （直接回報給使用者，不自動重試）
- Store I/O 失敗：StoreUnavailable（由呼叫端 backoff 重試）
- 不變量被破壞：NoParticipants（不應發生，必須中止轉換並大聲記錄）
"""


class RouletteGameException(Exception):
    """所有遊戲異常的基類"""
    pass


# ============ Room 相關異常 ============

class RoomNotFound(RouletteGameException):
    """房間不存在（且未開啟自動建立）"""
    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__(f"Room {room_id} not found")


# ============ Round 相關異常 ============

class RoundLocked(RouletteGameException):
    """回合已鎖定，不再接受下注（倒數最後幾秒、轉盤中、已結束）"""
    def __init__(self, room_id, status, seconds_left=None):
        self.room_id = room_id
        self.status = status
        self.seconds_left = seconds_left
        if seconds_left is not None:
            message = (
                f"Room {room_id} is locked: {seconds_left:.2f}s left in countdown"
            )
        else:
            message = f"Room {room_id} is locked (status: {status})"
        super().__init__(message)


class InvalidStake(RouletteGameException):
    """下注金額不合法（非正數或非有限數）"""
    pass


class NoParticipants(RouletteGameException):
    """在沒有任何參與者的情況下抽獎（不變量被破壞）"""
    def __init__(self, room_id=None):
        self.room_id = room_id
        super().__init__(f"Cannot select a winner in room {room_id}: no participants")


# ============ 狀態轉換異常 ============

class InvalidStateTransition(RouletteGameException):
    """非法的狀態轉換"""
    pass


# ============ Store 相關異常 ============

class StoreUnavailable(RouletteGameException):
    """Room Store 無法存取（資料庫連線或 I/O 失敗）"""
    pass
