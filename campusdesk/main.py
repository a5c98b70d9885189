# campusdesk/main.py
from fastapi import FastAPI
from contextlib import asynccontextmanager
import httpx
import redis.asyncio as redis
from apscheduler.schedulers.asyncio import AsyncIOScheduler as Scheduler
import logging

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from fastapi.middleware.cors import CORSMiddleware

from .config.config import settings
from .logging.logging_config import setup_logging
from .api import admin, attendance, auth, dashboard, enrollments, grades, profile
from .db.redis_client import RedisClient
from .tasks.cron import refresh_expiring_sessions
from .api.utilities.limiter import limiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Creates the shared HTTP client, the Redis pool and the scheduler on
    startup and tears them down on shutdown.
    """
    setup_logging(settings.LOG_DIR)
    app.state.limiter = limiter

    logger.info("Application starting...")

    http_client = None
    redis_pool = None
    scheduler = None

    try:
        http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
        redis_pool = redis.ConnectionPool.from_url(settings.APPLICATION_REDIS_URL, decode_responses=True)

        app.state.http_client = http_client
        app.state.redis_pool = redis_pool
        logger.info("HTTP client and Redis connection pool created.")

        redis_client = RedisClient(pool=redis_pool)

        scheduler = Scheduler()
        scheduler.add_job(
            refresh_expiring_sessions,
            "interval",
            minutes=settings.SESSION_REFRESH_INTERVAL_MINUTES,
            args=[redis_client, http_client],
            id="refresh_auth_sessions",
        )
        scheduler.start()

        app.state.scheduler = scheduler
        logger.info("Scheduled jobs started.")

    except (redis.RedisError, ValueError) as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        app.state.redis_pool = None
        app.state.scheduler = None

    yield

    logger.info("Application shutting down...")
    if getattr(app.state, "scheduler", None):
        app.state.scheduler.shutdown()
        logger.info("Scheduler stopped.")
    if getattr(app.state, "http_client", None):
        await app.state.http_client.aclose()
        logger.info("HTTP client closed.")
    if getattr(app.state, "redis_pool", None):
        await app.state.redis_pool.disconnect()
        logger.info("Redis connection pool closed.")


app = FastAPI(
    title="campusdesk API",
    description="Role-based college management backend: attendance, grades, enrollments and administration.",
    version="1.0.0",
    lifespan=lifespan
)

origins = [
    "*"
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(auth.router, prefix="/api/v1")
app.include_router(attendance.router, prefix="/api/v1")
app.include_router(grades.router, prefix="/api/v1")
app.include_router(enrollments.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")
app.include_router(profile.router, prefix="/api/v1")
app.include_router(dashboard.router, prefix="/api/v1")


@app.get("/health", tags=["System"])
def health_check():
    """Simple liveness endpoint."""
    return {"status": "ok", "message": "campusdesk API is running."}
