"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ergcoach.config import get_settings
from ergcoach.api import api_router
from ergcoach.api.sessions import active_session_count

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting {settings.app_name}")
    yield
    logger.info(f"Shutting down {settings.app_name}")


app = FastAPI(
    title=settings.app_name,
    description="""
    Rowing Technique Coach API

    Real-time stroke analysis for a rower on an ergometer, driven by 2D pose
    keypoints from any pose estimator.

    ## Key Features

    - **Stroke Cycle Detection**: Catch, drive, finish and recovery from the shoulder and wrist path
    - **Noise Rejection**: Implausible strokes and bad detections are never scored
    - **Fault Checkers**: Eight technique checks with per-stroke history and marks
    - **Coaching Messages**: Escalating messages, reminders and cool-downs per fault
    - **Session Reports**: Technical score and illustrated faulty strokes

    ## Signals

    Raise a hand above the head to pause (about 15 frames) or keep it up to
    reset the session (about 150 frames).
    """,
    version="1.0.0",
    lifespan=lifespan
)

# CORS for browser clients, off unless origins are configured
if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": "1.0.0",
        "active_sessions": active_session_count(),
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "health": "/health",
        "sessions": f"{settings.api_prefix}/sessions",
    }
