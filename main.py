from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager, suppress
import asyncio
import logging

from database import Base, engine, settings, SessionLocal
from api import rooms, players, rounds, websocket
from core.room_manager import coordinator

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


async def run_round_ticker(interval: float):
    """
    背景 ticker：定期處理到期的計時轉換

    讀寫時的 lazy tick 已經保證正確性，這裡只是讓沒人看的房間也能準時結算
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(coordinator.tick_due_rooms, SessionLocal)
        except Exception as e:
            logger.error(f"Round ticker failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 在應用啟動時建立資料庫表，並啟動背景 ticker
    Base.metadata.create_all(bind=engine)

    ticker = None
    if settings.tick_interval_seconds > 0:
        ticker = asyncio.create_task(run_round_ticker(settings.tick_interval_seconds))
        logger.info(f"Round ticker started (every {settings.tick_interval_seconds}s)")

    yield

    # Shutdown: 停止背景 ticker
    if ticker is not None:
        ticker.cancel()
        with suppress(asyncio.CancelledError):
            await ticker


app = FastAPI(
    title="Roulette Pot API",
    description="Backend API for the multiplayer roulette pot game",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rooms.router)
app.include_router(players.router)
app.include_router(rounds.router)
app.include_router(websocket.router)


@app.get("/")
def root():
    return {"message": "Roulette Pot API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
