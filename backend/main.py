"""
Higher Stakes Leaderboard - FastAPI Backend
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from api import events, leaderboard, stats
from config import get_settings
from repositories import close_db_pool, get_db_pool
from services.job_queue import JobQueue
from services.wiring import build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    db_pool = await get_db_pool()
    app.state.services = build_services(settings, db_pool)

    # Webhooks still broadcast without Redis; only queueing is lost
    app.state.job_queue = None
    job_queue = JobQueue(settings.redis_url)
    try:
        await job_queue.connect()
        await job_queue.redis.ping()
        app.state.job_queue = job_queue
    except (RedisError, OSError) as e:
        logger.warning(f"Redis unavailable, push events will not be queued: {e}")

    logger.info(f"API started (environment={settings.environment})")
    try:
        yield
    finally:
        await app.state.services.close()
        if app.state.job_queue is not None:
            await app.state.job_queue.close()
        await close_db_pool()


app = FastAPI(
    title="Higher Stakes Leaderboard",
    description="Stake reconciliation and leaderboard service for /higher casts",
    version="1.0.0",
    lifespan=lifespan,
)

# Enable CORS for webapp
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API endpoints - all under /api/*
app.include_router(leaderboard.router, prefix="/api", tags=["Leaderboard"])
app.include_router(stats.router, prefix="/api", tags=["Stats"])
app.include_router(events.router, prefix="/api", tags=["Events"])


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/health")
async def api_health():
    return {"status": "ok", "service": "higher_leaderboard"}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
