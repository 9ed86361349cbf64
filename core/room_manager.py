"""
Room Coordinator：序列化同一房間的所有變更操作

職責：
1. 下注（驗證 -> 更新 ledger -> 評估狀態轉換 -> commit -> 推送快照）
2. tick：處理到期的計時轉換（倒數結束抽獎、轉盤結束、自動重置）
3. 重置回合
4. 提供快照查詢（讀取前先 lazy tick）
5. 線上名單（heartbeat，不經過房間鎖）

並發模型：
- 每個房間同一時間最多一個變更操作（room_locks + SELECT ... FOR UPDATE）
- 讀 ledger、抽獎、寫入 status/winner_id 在同一個 transaction、同一把鎖內完成
- 第二個同時到期的 tick 會等第一個 commit，然後看到 SPINNING，什麼都不做
- commit 完成、釋放鎖之後才推送快照給訂閱者

Linus 原則：
- 消除特殊情況：「任何請求都可以嘗試結算」，沒有誰負責觸發
- 所有狀態變更經過 RoomStateMachine
"""
from datetime import datetime
from typing import Callable, List, Optional, Tuple
import random
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Room, RoomStatus, StakeKind, Participant, utcnow
from schemas import (
    ContributeResponse,
    Identity,
    ParticipantSnapshot,
    RoomSnapshot,
    RoomState,
)
from core.state_machine import RoomStateMachine, RESOLVED_STATUSES
from core.locks import RoomLockTable, room_locks, with_room_lock
from core.exceptions import NoParticipants, RoomNotFound, RoundLocked
from services import stake_ledger, presence_service
from services.change_feed import ChangeFeed, change_feed
from services.state_service import bump_state_version
from services.winner_service import select_winner
from database import Settings, get_settings, transactional

logger = logging.getLogger(__name__)


class RoomCoordinator:
    """房間操作的唯一入口"""

    def __init__(
        self,
        feed: Optional[ChangeFeed] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
        locks: Optional[RoomLockTable] = None
    ):
        self.feed = feed if feed is not None else change_feed
        self.settings = settings or get_settings()
        self.clock = clock
        self.rng = rng
        self.locks = locks if locks is not None else room_locks

    # ============ 內部工具 ============

    def _load_room(self, db: Session, room_id: str) -> Tuple[Room, bool]:
        """
        取得並鎖定 Room；不存在時依設定自動建立或拋出 RoomNotFound

        必須在 self.locks.hold(room_id) 內呼叫

        返回：
            (Room, created)
        """
        room = with_room_lock(room_id, db).first()
        if room:
            return room, False

        if not self.settings.auto_create_rooms:
            raise RoomNotFound(room_id)

        room = Room(
            id=room_id,
            status=RoomStatus.WAITING,
            total_stake_units=0.0,
            total_contribution_count=0,
            round_number=1,
            state_version=0,
        )
        db.add(room)
        bump_state_version(db, room, "ROOM_CREATED")
        db.flush()
        logger.info(f"Created room {room_id}")
        return room, True

    def _build_state(self, db: Session, room_id: str) -> RoomState:
        room = db.get(Room, room_id, populate_existing=True)
        if room is None:
            raise RoomNotFound(room_id)
        return RoomState(
            room=RoomSnapshot.model_validate(room),
            participants=stake_ledger.list_participants(db, room),
        )

    def _resolve_winner(self, db: Session, room: Room, now: datetime) -> int:
        """
        COUNTDOWN -> SPINNING：抽出贏家並和狀態一起寫入

        NoParticipants 代表不變量被破壞（countdown 需要 >= 2 人），
        記錄 critical 並往上拋，transaction 會 rollback，不寫入任何結果
        """
        participants = stake_ledger.get_participants(db, room.id)
        entries = [(p.player_id, p.stake_units) for p in participants]
        try:
            winner_id = select_winner(entries, self.rng, room_id=room.id)
        except NoParticipants:
            logger.critical(
                f"Room {room.id} reached the deadline with no participants; "
                f"aborting winner selection for round {room.round_number}"
            )
            raise

        RoomStateMachine.transition(room, RoomStatus.SPINNING, now, winner_id=winner_id)
        bump_state_version(db, room, "WINNER_SELECTED", {
            "round_number": room.round_number,
            "winner_id": winner_id,
            "total_stake_units": room.total_stake_units,
            "stakes": [
                {"player_id": player_id, "stake_units": stake}
                for player_id, stake in entries
            ],
        })
        logger.info(
            f"Room {room.id} round {room.round_number}: winner {winner_id} "
            f"out of {len(entries)} participants (pot {room.total_stake_units})"
        )
        return winner_id

    def _reset_round(self, db: Session, room: Room, now: datetime) -> bool:
        """
        SPINNING/FINISHED -> WAITING

        其他狀態不動（未結算的回合不會被丟棄）
        """
        if room.status not in RESOLVED_STATUSES:
            return False

        if room.status == RoomStatus.SPINNING:
            RoomStateMachine.transition(room, RoomStatus.FINISHED, now)

        finished_round = room.round_number
        removed = stake_ledger.clear(db, room)
        RoomStateMachine.transition(room, RoomStatus.WAITING, now)
        room.round_number = finished_round + 1
        bump_state_version(db, room, "ROUND_RESET", {
            "round_number": finished_round,
            "participants_removed": removed,
        })
        logger.info(f"Room {room.id} reset after round {finished_round}")
        return True

    def _advance(self, db: Session, room: Room, now: datetime) -> bool:
        """
        執行所有已到期的計時轉換

        返回：
            True 表示有狀態改變
        """
        changed = False
        while True:
            if RoomStateMachine.is_countdown_due(room, now):
                self._resolve_winner(db, room, now)
            elif RoomStateMachine.is_spin_done(room, now, self.settings.spin_duration_seconds):
                RoomStateMachine.transition(room, RoomStatus.FINISHED, now)
                bump_state_version(db, room, "ROOM_STATE_CHANGED", {"status": room.status.value})
            elif (
                self.settings.auto_reset_rounds
                and RoomStateMachine.is_reset_due(room, now, self.settings.result_display_seconds)
            ):
                self._reset_round(db, room, now)
            else:
                return changed
            changed = True

    @transactional
    def _tick(self, db: Session, room_id: str) -> bool:
        room, created = self._load_room(db, room_id)
        return self._advance(db, room, self.clock()) or created

    @transactional
    def _contribute(
        self,
        db: Session,
        room_id: str,
        identity: Identity,
        amount: float,
        kind: StakeKind
    ) -> Tuple[Room, Participant]:
        now = self.clock()
        room, _ = self._load_room(db, room_id)

        if not RoomStateMachine.is_accepting(room, now, self.settings.lockout_seconds):
            raise RoundLocked(
                room_id,
                room.status.value,
                RoomStateMachine.seconds_left(room, now)
            )

        is_gift = kind == StakeKind.GIFT
        units = 1.0 if is_gift else amount
        participant, created = stake_ledger.add_stake(db, room, identity, units, is_gift)

        count = stake_ledger.count_participants(db, room_id)
        target = RoomStateMachine.status_for_participants(room, count)
        if room.status == RoomStatus.WAITING and target != RoomStatus.WAITING:
            RoomStateMachine.transition(room, RoomStatus.SINGLE_PLAYER, now)
        if room.status == RoomStatus.SINGLE_PLAYER and target == RoomStatus.COUNTDOWN:
            RoomStateMachine.transition(
                room, RoomStatus.COUNTDOWN, now,
                countdown_seconds=self.settings.countdown_seconds
            )

        bump_state_version(db, room, "STAKE_ADDED", {
            "player_id": identity.id,
            "units": units,
            "kind": kind.value,
            "new_participant": created,
        })
        logger.info(
            f"Player {identity.id} staked {units} ({kind.value}) in room {room_id}; "
            f"pot={room.total_stake_units}, participants={count}, status={room.status.value}"
        )
        return room, participant

    @transactional
    def _reset(self, db: Session, room_id: str) -> bool:
        room, _ = self._load_room(db, room_id)
        return self._reset_round(db, room, self.clock())

    def _publish(self, state: RoomState) -> None:
        self.feed.publish(state)

    # ============ 對外操作 ============

    def tick(self, db: Session, room_id: str) -> RoomState:
        """
        處理到期的計時轉換（可重複、可並發呼叫）

        由背景 scheduler 定期呼叫，或在任何讀寫前 lazy 呼叫
        """
        with self.locks.hold(room_id):
            changed = self._tick(db, room_id)
            state = self._build_state(db, room_id)
        if changed:
            self._publish(state)
        return state

    def resolve_if_due(self, db: Session, room_id: str) -> RoomState:
        return self.tick(db, room_id)

    def contribute(
        self,
        db: Session,
        room_id: str,
        identity: Identity,
        amount: float = 1.0,
        kind: StakeKind = StakeKind.GIFT
    ) -> ContributeResponse:
        """
        玩家下注

        流程：
        1. 先處理到期的計時轉換（獨立 commit，避免被後面的 RoundLocked rollback）
        2. 驗證房間是否接受下注
        3. 更新 ledger 與總和
        4. 評估狀態轉換（第 2 位參與者進來時開始倒數）
        5. commit 後推送快照

        異常：
            RoomNotFound: 房間不存在且未開啟自動建立
            RoundLocked: 倒數最後 lockout 秒內、轉盤中或已結束
            InvalidStake: 金額不合法
            StoreUnavailable: 資料庫錯誤
        """
        pending = None
        try:
            with self.locks.hold(room_id):
                if self._tick(db, room_id):
                    pending = self._build_state(db, room_id)
                room, participant = self._contribute(db, room_id, identity, amount, kind)
                response = ContributeResponse(
                    room=RoomSnapshot.model_validate(room),
                    participant=stake_ledger.to_snapshot(participant, room.total_stake_units),
                )
                pending = self._build_state(db, room_id)
        finally:
            # 即使下注被拒絕，先前 commit 的計時轉換也要推送
            if pending is not None:
                self._publish(pending)
        return response

    def reset(self, db: Session, room_id: str) -> Tuple[RoomState, bool]:
        """
        重置回合（SPINNING/FINISHED -> WAITING）

        冪等：已經是 WAITING 的房間直接回傳目前狀態，不是錯誤
        前置 tick 若已自動重置，本次呼叫同樣回報 changed

        返回：
            (RoomState, changed)
        """
        with self.locks.hold(room_id):
            round_before = db.query(Room.round_number).filter(Room.id == room_id).scalar()
            advanced = self._tick(db, room_id)
            changed = self._reset(db, room_id)
            state = self._build_state(db, room_id)
        if changed or advanced:
            self._publish(state)
        if round_before is not None and state.room.round_number > round_before:
            changed = True
        return state, changed

    def snapshot(self, db: Session, room_id: str) -> RoomState:
        """完整快照（Change Feed 的 pull 操作）"""
        return self.tick(db, room_id)

    def get_room_snapshot(self, db: Session, room_id: str) -> RoomSnapshot:
        return self.tick(db, room_id).room

    def get_participants(self, db: Session, room_id: str) -> List[ParticipantSnapshot]:
        return self.tick(db, room_id).participants

    def subscribe(self, room_id: str, callback) -> str:
        return self.feed.subscribe(room_id, callback)

    def unsubscribe(self, token: str) -> bool:
        return self.feed.unsubscribe(token)

    def join(self, db: Session, room_id: str, identity: Identity) -> RoomState:
        """
        玩家載入房間：確保房間存在並登記線上名單

        不會建立 Participant（要下注才算參與）
        """
        state = self.tick(db, room_id)
        self.heartbeat(db, room_id, identity)
        return state

    def heartbeat(self, db: Session, room_id: str, identity: Identity) -> bool:
        """
        更新線上名單（fire-and-forget，不經過房間鎖）

        返回：
            False 表示這次 heartbeat 遺失（已記錄 warning）
        """
        try:
            presence_service.touch_presence(db, room_id, identity, self.clock())
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Heartbeat lost for player {identity.id} in room {room_id}: {e}")
            return False

    def online(self, db: Session, room_id: str):
        return presence_service.list_online(
            db, room_id, self.clock(), self.settings.presence_window_seconds
        )

    def tick_due_rooms(self, session_factory) -> int:
        """
        背景 scheduler 使用：tick 所有計時中的房間

        單一房間失敗只記錄錯誤，不影響其他房間

        返回：
            處理的房間數
        """
        statuses = [RoomStatus.COUNTDOWN, RoomStatus.SPINNING]
        if self.settings.auto_reset_rounds:
            statuses.append(RoomStatus.FINISHED)

        db = session_factory()
        try:
            room_ids = [
                room_id for (room_id,) in
                db.query(Room.id).filter(Room.status.in_(statuses)).all()
            ]
        finally:
            db.close()

        for room_id in room_ids:
            db = session_factory()
            try:
                self.tick(db, room_id)
            except Exception as e:
                logger.error(f"Scheduled tick failed for room {room_id}: {e}", exc_info=True)
            finally:
                db.close()
        return len(room_ids)


coordinator = RoomCoordinator()


def get_coordinator() -> RoomCoordinator:
    """FastAPI dependency：取得全域的 RoomCoordinator"""
    return coordinator
