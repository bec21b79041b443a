"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the
Face Authentication API.

The application provides:
- WebSocket endpoint for the liveness challenge (enroll or login)
- REST endpoints for enrollment and authentication from embeddings
- REST endpoints for owner management
- Health check endpoint

Usage:
    # From project root:
    uvicorn api.app:app --host 0.0.0.0 --port 8000 --reload

    # Or run directly:
    python -m api.app
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import (
    enrollment_router,
    enrollment_rest_router,
    authentication_router,
    management_router,
)
from api.schemas import HealthResponse
from faceauth.gallery_store import get_gallery_store
from faceauth.config import get_config


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _module_available(name: str) -> bool:
    return importlib.util.find_spec(name) is not None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup:
    - Open the gallery store and report its size
    - Report which vision backends are installed

    Runs on shutdown:
    - Close the store
    """
    logger.info("=" * 60)
    logger.info("Starting Face Authentication API")
    logger.info("=" * 60)

    logger.info("Initializing gallery store...")
    store = get_gallery_store()
    stats = store.get_stats()
    logger.info(
        f"Gallery store ready: {stats['total_owners']} owners, "
        f"{stats['total_records']} embeddings"
    )

    if not _module_available("mediapipe"):
        logger.warning("mediapipe not installed - challenge sessions are unavailable")
    if not _module_available("face_recognition"):
        logger.warning("face_recognition not installed - challenge sessions are unavailable")

    logger.info("API startup complete!")
    logger.info("=" * 60)

    yield

    # Cleanup on shutdown
    logger.info("Shutting down API...")
    store.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Face Authentication API",
    description="""
API for liveness-gated face authentication.

## Features
- **Challenge**: Stabilize, neutral capture, smile, nod and head raise over WebSocket
- **Enrollment**: Store an owner's validated embeddings (replaces any previous gallery)
- **Authentication**: Match a probe embedding against the gallery (1:N or 1:1)
- **User Management**: List, view, and delete enrolled owners

## WebSocket Challenge
Connect to `/ws/challenge/{owner_id}?mode=enroll` (or `mode=login`).
Send frames as JSON: `{"type": "frame", "data": "<base64 JPEG>"}`
and `{"type": "capture"}` for the neutral sample.
    """,
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allows all origins (adjust for production)
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(enrollment_router)
app.include_router(enrollment_rest_router)
app.include_router(authentication_router)
app.include_router(management_router)


# ============================================================
# Health Check Endpoint
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check():
    """
    Check the health of the API and its dependencies.

    Returns status of:
    - Landmark and embedding backends (installed or not)
    - Number of enrolled owners and stored embeddings
    """
    store = get_gallery_store()
    stats = store.get_stats()

    landmark_available = _module_available("mediapipe")
    embedding_available = _module_available("face_recognition")

    # REST matching works without the vision stack; challenges do not
    status = "healthy" if landmark_available and embedding_available else "degraded"

    return HealthResponse(
        status=status,
        landmark_oracle_available=landmark_available,
        embedding_oracle_available=embedding_available,
        enrolled_owners=stats["total_owners"],
        total_records=stats["total_records"],
        extra={
            "avg_quality": stats["avg_quality"],
            "total_auth_attempts": stats["total_auth_attempts"],
            "successful_auths": stats["successful_auths"],
        },
    )


@app.get("/", tags=["system"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Face Authentication API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    api_config = config.get("api", {})

    # Parse host/port from base_url or use defaults
    host = "0.0.0.0"
    port = 8000

    base_url = api_config.get("base_url", "http://localhost:8000")
    if ":" in base_url.split("//")[-1]:
        port_str = base_url.split(":")[-1].rstrip("/")
        try:
            port = int(port_str)
        except ValueError:
            pass

    logger.info(f"Starting server on {host}:{port}")
    uvicorn.run(
        "api.app:app",
        host=host,
        port=port,
        reload=True,
        log_level="info",
    )
