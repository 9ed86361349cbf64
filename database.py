from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
from typing import List, Optional
import logging

from core.exceptions import RouletteGameException, StoreUnavailable

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./roulette_game.db"

    # 回合時間設定（秒）
    countdown_seconds: int = 20
    lockout_seconds: float = 3.0
    spin_duration_seconds: float = 15.0
    result_display_seconds: float = 7.0

    auto_reset_rounds: bool = True
    auto_create_rooms: bool = True

    # 0 表示關閉背景 ticker，只靠讀寫時的 lazy tick
    tick_interval_seconds: float = 1.0
    presence_window_seconds: int = 30

    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()


def build_engine(database_url: Optional[str] = None):
    """
    建立 SQLAlchemy Engine

    SQLite 需要特殊設定：connect_args={"check_same_thread": False}
    這允許多執行緒存取同一個 SQLite 連線（FastAPI 的多執行緒環境需要）
    """
    url = database_url or settings.database_url
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
        pool_pre_ping=True
    )


engine = build_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency：提供 Database Session

    使用 yield 確保 session 在請求結束後會被關閉
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _find_session(args, kwargs) -> Optional[Session]:
    for arg in args:
        if isinstance(arg, Session):
            return arg
    return kwargs.get('db')


def transactional(func):
    """
    Transaction decorator：確保資料庫操作的原子性

    使用方式：
        @transactional
        def some_business_logic(self, db: Session, ...):
            # 所有 DB 操作都在一個 transaction 內
            room.status = RoomStatus.COUNTDOWN
            # 不需要手動 commit，decorator 會處理

    如果函式內發生異常：
        - 自動 rollback
        - 業務異常（RouletteGameException）原樣重新拋出
        - Store 的 I/O 錯誤（SQLAlchemyError）包成 StoreUnavailable

    注意：
        - 參數中必須有一個 db: Session（位置參數或 keyword 皆可，也支援 method）
        - 不要在函式內手動 commit（decorator 會處理）
        - decorator 不做自動重試，由呼叫端決定是否 backoff 重試
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = _find_session(args, kwargs)

        if db is None:
            raise ValueError(
                f"@transactional requires a 'db: Session' argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except RouletteGameException:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise StoreUnavailable(str(e)) from e
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper


def get_session_factory():
    """
    FastAPI dependency：提供 sessionmaker

    給需要自行管理 session 生命週期的端點使用（例如 WebSocket 長連線）
    """
    return SessionLocal
