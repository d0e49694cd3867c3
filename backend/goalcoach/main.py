from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from goalcoach.core.config import settings
from goalcoach.db.session import create_tables
from goalcoach.routes import habits, goals


# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.app_name} API")
    logger.info(f"Default timezone: {settings.default_timezone}, habit progress cap: {settings.habit_progress_cap}")
    create_tables()
    yield
    # Shutdown
    logger.info("Shutting down API")


app = FastAPI(
    title=f"{settings.app_name} API",
    description="Habit completion and goal progress engine",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(habits.router, prefix="/habits", tags=["habits"])
app.include_router(goals.router, prefix="/goals", tags=["goals"])


@app.get("/health")
async def health():
    return {"status": "ok", "service": settings.app_name}
