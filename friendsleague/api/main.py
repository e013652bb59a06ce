"""
FriendsLeague API Server

FastAPI server for friends, leagues, events and real-time chat.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from friendsleague.api.routes import router, limiter as routes_limiter
from friendsleague.database import db
from friendsleague.services import s3_service
from friendsleague.services.presence_service import get_connection_cleanup_service

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up FriendsLeague API...")

    # Create tables that migrations have not created yet
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    if not s3_service.is_configured():
        logger.warning("S3 is not configured; media uploads will return 503")

    # Start stale WebSocket cleanup worker
    try:
        cleanup_service = get_connection_cleanup_service()
        cleanup_service.start()
        logger.info("✓ WebSocket cleanup worker started")
    except Exception as e:
        logger.error(f"Failed to start WebSocket cleanup worker: {e}", exc_info=True)

    yield  # App is running

    logger.info("Shutting down FriendsLeague API...")

    try:
        cleanup_service = get_connection_cleanup_service()
        cleanup_service.stop()
        logger.info("✓ WebSocket cleanup worker stopped")
    except Exception as e:
        logger.error(f"Error stopping WebSocket cleanup worker: {e}", exc_info=True)


app = FastAPI(
    title="FriendsLeague API",
    description="API for friends, leagues, events, points and real-time chat",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware - origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:8081,http://localhost:19006").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


@app.get("/api/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
