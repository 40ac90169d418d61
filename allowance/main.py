import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from allowance.api import VERSION, router
from allowance.api.badges import router as badges_router
from allowance.api.goals import router as goals_router
from allowance.api.tasks import router as tasks_router
from allowance.api.transactions import router as transactions_router
from allowance.core.config import settings
from allowance.core.database import async_session_maker, engine
from allowance.models import Base
from allowance.services.engine import BadgeEngine

LOG_LEVEL = settings.log_level.upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s:%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("allowance")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create database tables and the badge engine on startup."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.badge_engine = BadgeEngine.from_session_maker(
        async_session_maker,
        mirror_category=settings.resync_mirror_category or None,
    )
    logger.info("Badge engine ready")
    yield
    await engine.dispose()


app = FastAPI(
    lifespan=lifespan,
    title=settings.app_name,
    description="Allowance tracking with tasks, savings goals and achievement badges",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when using allow_origins=["*"]
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")
app.include_router(badges_router, prefix="/api/v1")
app.include_router(tasks_router, prefix="/api/v1")
app.include_router(goals_router, prefix="/api/v1")
app.include_router(transactions_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": VERSION,
        "docs": "/docs",
        "health": "/api/v1/health",
    }
