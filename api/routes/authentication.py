"""
Authentication API Routes

This module provides the POST /authenticate endpoint. The probe embedding is
validated and compared against the enrolled gallery (1:N), or against one
owner's gallery when owner_id is given (1:1). Every attempt, accepted or
not, is written to the authentication log.
"""

import time
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from api.schemas import (
    AuthRequest,
    AuthResponse,
    AuthLogEntry,
    AuthLogResponse,
)
from faceauth.gallery_store import GalleryStore, get_gallery_store
from faceauth.matching import MatchResult, get_matching_engine
from faceauth.quality_validator import InvalidEmbeddingError

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["authentication"])


def build_auth_response(result: MatchResult, processing_time_sec: float) -> AuthResponse:
    """Convert a MatchResult into the API response model."""
    return AuthResponse(
        is_match=result.is_match,
        owner_id=result.candidate_owner_id,
        fused_similarity=result.fused_similarity,
        confidence_tier=result.confidence_tier.value,
        n_candidates=result.details.get("n_compared", 0),
        scores=result.details.get("best_scores"),
        processing_time_sec=processing_time_sec,
    )


def log_match(
    store: GalleryStore,
    result: MatchResult,
    claimed_owner_id: Optional[str],
    processing_time_sec: float,
) -> None:
    """Write a completed match attempt to the authentication log."""
    failure_reason = None
    if not result.is_match:
        failure_reason = (
            f"similarity {result.fused_similarity:.4f} below threshold "
            f"{result.details.get('accept_threshold', 0.0)}"
        )

    store.log_authentication(
        owner_id=result.candidate_owner_id or claimed_owner_id,
        fused_similarity=result.fused_similarity,
        confidence_tier=result.confidence_tier.value,
        is_match=result.is_match,
        processing_time_ms=int(processing_time_sec * 1000),
        failure_reason=failure_reason,
    )


def log_invalid_probe(
    store: GalleryStore,
    error: InvalidEmbeddingError,
    claimed_owner_id: Optional[str],
    processing_time_sec: float,
) -> None:
    """Write a rejected (unmatchable) probe to the authentication log."""
    store.log_authentication(
        owner_id=claimed_owner_id,
        fused_similarity=0.0,
        confidence_tier="none",
        is_match=False,
        processing_time_ms=int(processing_time_sec * 1000),
        failure_reason=f"invalid embedding: {error.reason}",
    )


@router.post("/authenticate", response_model=AuthResponse)
async def authenticate(request: AuthRequest):
    """
    Authenticate a probe embedding against enrolled galleries.

    This endpoint:
    1. Validates the probe embedding
    2. Compares it with every stored record (or one owner's records)
    3. Applies the accept threshold and confidence tiers
    4. Logs the attempt

    A non-matching probe is a normal 200 response with is_match=false.

    Args:
        request: AuthRequest with the embedding and optional owner_id.

    Returns:
        AuthResponse with match decision and scores.

    Raises:
        400: If the embedding fails quality validation.
        404: If owner_id is given but not enrolled.
    """
    start_time = time.time()

    store = get_gallery_store()

    if request.owner_id is not None and not store.owner_exists(request.owner_id):
        raise HTTPException(status_code=404, detail=f"Owner {request.owner_id} not found")

    engine = get_matching_engine(store)

    try:
        result = engine.match(request.embedding, owner_id=request.owner_id)
    except InvalidEmbeddingError as e:
        logger.warning(f"Rejected authentication probe: {e.reason}")
        log_invalid_probe(store, e, request.owner_id, time.time() - start_time)
        raise HTTPException(status_code=400, detail=str(e))

    processing_time = time.time() - start_time
    log_match(store, result, request.owner_id, processing_time)

    logger.info(
        f"Authentication complete: match={result.is_match}, "
        f"owner={result.candidate_owner_id}, similarity={result.fused_similarity:.4f}, "
        f"time={processing_time * 1000:.1f}ms"
    )

    return build_auth_response(result, processing_time)


@router.get("/auth/logs", response_model=AuthLogResponse)
async def get_auth_logs(
    owner_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
):
    """
    Recent authentication attempts, newest first.

    Args:
        owner_id: Only return attempts for this owner.
        limit: Maximum number of entries.
    """
    store = get_gallery_store()
    logs = store.get_auth_logs(owner_id=owner_id, limit=limit)

    return AuthLogResponse(
        logs=[AuthLogEntry(**entry) for entry in logs],
        total=len(logs),
    )
