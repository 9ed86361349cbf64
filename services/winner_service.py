"""
抽獎服務：依下注比例加權隨機選出贏家

純計算邏輯，不涉及狀態轉換（由 RoomCoordinator 負責寫回 Room）
"""
import random
from typing import Optional, Sequence, Tuple

from core.exceptions import NoParticipants

# 作業系統熵源，不可由客戶端重現
secure_random = random.SystemRandom()


def select_winner(
    participants: Sequence[Tuple[int, float]],
    rng: Optional[random.Random] = None,
    room_id: Optional[str] = None
) -> int:
    """
    加權隨機抽出一位贏家

    演算法：
    1. 從 [0, total) 均勻抽出 r
    2. 依加入順序累加 stake_units
    3. 第一個累加值 > r 的參與者獲勝

    特殊情況：
    - 沒有參與者：NoParticipants（countdown 需要 >= 2 人，理論上不會發生）
    - 只有一位參與者：直接獲勝，不消耗亂數

    參數：
        participants: [(player_id, stake_units), ...]，必須是加入順序
        rng: 亂數來源，預設使用 SystemRandom（測試時注入有 seed 的 Random）
        room_id: 只用於錯誤訊息

    返回：
        贏家的 player_id

    範例：
        select_winner([(1, 10), (2, 30), (3, 60)]) -> 3（機率 60%）
    """
    if not participants:
        raise NoParticipants(room_id)

    if len(participants) == 1:
        return participants[0][0]

    rng = rng or secure_random
    total = sum(stake for _, stake in participants)
    if total <= 0:
        raise NoParticipants(room_id)

    r = rng.random() * total
    cumulative = 0.0
    for player_id, stake in participants:
        cumulative += stake
        if cumulative > r:
            return player_id

    # 浮點誤差時 r 可能剛好等於 total，歸給最後一位有下注的人
    for player_id, stake in reversed(participants):
        if stake > 0:
            return player_id
    raise NoParticipants(room_id)
