"""AnimeSenpai Recommendations API - FastAPI Application."""

import logging
from contextlib import asynccontextmanager
from datetime import timezone

# Configure logging - cleaner output for development
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)

# Suppress noisy loggers - SQLAlchemy is especially chatty
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_embedding_provider
from app.api.v1.router import api_router
from app.config import get_settings
from app.core.cache import get_cache
from app.core.tasks import TaskManager
from app.db.database import get_db, init_db
from app.db.models import Anime

logger = logging.getLogger(__name__)
settings = get_settings()

scheduler = AsyncIOScheduler(
    timezone=timezone.utc,
    job_defaults={
        "misfire_grace_time": 60 * 60,  # 1 hour
        "coalesce": True,
        # Avoid overlapping rebuilds if one takes longer than the interval
        "max_instances": 1,
    },
)
task_manager = TaskManager.get_instance()


async def refresh_embedding_index():
    """Rebuild the in-memory embedding index from the catalogue."""
    try:
        count = await get_embedding_provider().refresh_index()
        logger.info(f"Scheduled embedding refresh indexed {count} anime")
    except Exception as e:
        logger.error(f"Embedding index refresh failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting application...")
    await init_db()
    logger.info(f"Scoring config version {settings.scoring.version}")

    scheduler.add_job(
        refresh_embedding_index,
        IntervalTrigger(hours=settings.embedding_refresh_hours),
        id="embedding_index_refresh",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Embedding index refresh scheduled every {settings.embedding_refresh_hours}h")

    # Build the index in the background so the first For You request is fast
    task_manager.create_task(refresh_embedding_index(), name="startup_embedding_index")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    await task_manager.cancel_all(timeout=10.0)
    scheduler.shutdown()
    await get_cache().close()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Hybrid anime recommendations: content, collaborative and embedding signals",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware - restricted methods and headers for security
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-User-Id"],
)

# Include API routes
app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}


@app.get("/health/db")
async def db_status(db: AsyncSession = Depends(get_db)):
    """Check database status and catalogue size."""
    try:
        result = await db.execute(select(func.count()).select_from(Anime))
        anime_count = result.scalar_one_or_none() or 0
        job = scheduler.get_job("embedding_index_refresh")
        next_refresh = job.next_run_time.isoformat() if job and job.next_run_time else None
        return {
            "status": "healthy",
            "has_data": anime_count > 0,
            "anime_count": anime_count,
            "next_embedding_refresh": next_refresh,
        }
    except Exception as e:
        logger.error(f"Health check DB error: {e}")
        return {
            "status": "error",
            "has_data": False,
            "anime_count": 0,
            "error": "Database health check failed",
        }
