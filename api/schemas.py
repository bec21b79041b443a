"""
Pydantic Schemas for API Request/Response Models

This module defines the data models used for API communication between
the capture client and the authentication backend.

These schemas provide:
- Type validation
- Automatic documentation in OpenAPI/Swagger
- Clear interface contracts
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field

from faceauth.samples import CaptureType


# ============================================================
# Enrollment Schemas
# ============================================================

class SampleIn(BaseModel):
    """One captured sample submitted for enrollment."""
    type: CaptureType = Field(..., description="Capture type: normal, smile, nod or head_raise")
    embedding: List[float] = Field(..., description="Face embedding vector (128 values)")
    quality: float = Field(0.0, ge=0.0, le=1.0, description="Client-reported quality score (0-1)")


class EnrollRequest(BaseModel):
    """Request for (non-streaming) enrollment from already-captured samples."""
    samples: List[SampleIn] = Field(
        ...,
        min_length=1,
        max_length=4,
        description="Samples from one challenge attempt (1-4, one per capture type)"
    )


class RejectedSampleSchema(BaseModel):
    """A sample left out of the gallery."""
    type: CaptureType = Field(..., description="Capture type of the rejected sample")
    reason: str = Field(..., description="Why the sample was rejected")


class EnrollResponse(BaseModel):
    """Result of a successful enrollment."""
    owner_id: str = Field(..., description="Owner whose gallery was replaced")
    accepted: int = Field(..., description="Number of samples stored")
    rejected: List[RejectedSampleSchema] = Field(default_factory=list)
    gallery_replaced: bool = Field(..., description="True if the previous gallery was replaced")


# ============================================================
# Authentication Schemas
# ============================================================

class AuthRequest(BaseModel):
    """Request for authentication."""
    embedding: List[float] = Field(..., description="Probe embedding vector (128 values)")
    owner_id: Optional[str] = Field(
        None,
        description="Owner ID for 1:1 verification. Null for 1:N identification."
    )


class AuthResponse(BaseModel):
    """Response from authentication attempt."""
    is_match: bool = Field(..., description="Whether authentication succeeded")
    owner_id: Optional[str] = Field(None, description="ID of matched owner (if any)")
    fused_similarity: float = Field(..., description="Best fused similarity (0-1)")
    confidence_tier: str = Field(..., description="'none', 'medium' or 'high'")
    n_candidates: int = Field(0, description="Number of stored records compared")
    scores: Optional[Dict[str, float]] = Field(
        None,
        description="Cosine / Euclidean / Pearson components of the best candidate"
    )
    processing_time_sec: float = Field(..., description="Total processing time in seconds")


class AuthLogEntry(BaseModel):
    """One logged authentication attempt."""
    id: int
    owner_id: Optional[str] = None
    timestamp: str
    fused_similarity: float
    confidence_tier: str
    is_match: bool
    failure_reason: Optional[str] = None
    processing_time_ms: int


class AuthLogResponse(BaseModel):
    """Recent authentication attempts, newest first."""
    logs: List[AuthLogEntry] = Field(default_factory=list)
    total: int = Field(0, description="Number of entries returned")


# ============================================================
# User Management Schemas
# ============================================================

class OwnerInfo(BaseModel):
    """Enrolled owner summary."""
    owner_id: str = Field(..., description="Owner identifier")
    enrolled_at: str = Field(..., description="ISO timestamp of enrollment")
    n_records: int = Field(..., description="Number of stored embeddings")
    avg_quality: float = Field(..., description="Mean quality score of stored embeddings")


class OwnerListResponse(BaseModel):
    """Response containing list of enrolled owners."""
    users: List[OwnerInfo] = Field(default_factory=list)
    total: int = Field(0, description="Total number of enrolled owners")


class GalleryRecordInfo(BaseModel):
    """Stored embedding metadata (the vector itself is not returned)."""
    capture_type: CaptureType
    quality_score: float
    created_at: str


class GalleryDetailResponse(BaseModel):
    """Detailed gallery information for one owner."""
    owner_id: str
    enrolled_at: str
    avg_quality: float
    records: List[GalleryRecordInfo] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    """Response from owner deletion."""
    success: bool = Field(..., description="Whether deletion was successful")
    owner_id: str = Field(..., description="ID of deleted owner")
    deleted_records: int = Field(0, description="Number of embeddings removed")
    message: str = Field(..., description="Status message")


# ============================================================
# Challenge (WebSocket) Schemas
# ============================================================

class FrameMessage(BaseModel):
    """Message sent by client for each frame during a challenge."""
    type: str = Field(default="frame", description="Message type, should be 'frame'")
    data: str = Field(..., description="Base64-encoded JPEG image data")
    timestamp: Optional[float] = Field(None, description="Capture time in seconds")


class ChallengeStatusResponse(BaseModel):
    """Response sent to client for each admitted frame."""
    type: str = Field(default="challenge_status", description="Message type")
    state: str = Field(..., description="Current challenge state")
    face_detected: bool = Field(..., description="Whether a face was detected")
    face_quality: str = Field(..., description="'low', 'medium' or 'high'")
    evidence: int = Field(0, description="Evidence collected for the current step")
    evidence_target: int = Field(1, description="Evidence needed for the current step")
    captured: List[str] = Field(default_factory=list, description="Capture types collected so far")
    error: Optional[str] = Field(None, description="Last recoverable error, if any")


class CaptureResultResponse(BaseModel):
    """Response sent after each capture attempt."""
    type: str = Field(default="capture_result", description="Message type")
    capture_type: str = Field(..., description="Capture type attempted")
    success: bool = Field(..., description="Whether a sample was recorded")
    retryable: bool = Field(False, description="True if the user can simply try again")
    error: Optional[str] = Field(None, description="Failure reason")
    quality_score: Optional[float] = Field(None, description="Quality of the recorded sample")
    state: str = Field(..., description="State after the attempt")


class ChallengeCompleteResponse(BaseModel):
    """Response sent when the challenge has been submitted."""
    type: str = Field(default="challenge_complete", description="Message type")
    mode: str = Field(..., description="'enroll' or 'login'")
    success: bool = Field(..., description="Enrollment stored / identity matched")
    owner_id: Optional[str] = Field(None, description="Enrolled or matched owner")
    enrollment: Optional[EnrollResponse] = Field(None, description="Enrollment result (enroll mode)")
    authentication: Optional[AuthResponse] = Field(None, description="Match result (login mode)")


class ErrorResponse(BaseModel):
    """Error response during a challenge session."""
    type: str = Field(default="error", description="Message type")
    error: str = Field(..., description="Error message")
    code: str = Field(default="CHALLENGE_ERROR", description="Error code")


# ============================================================
# Health Check Schemas
# ============================================================

class HealthResponse(BaseModel):
    """System health check response."""
    status: str = Field(..., description="Overall status: 'healthy' or 'degraded'")
    landmark_oracle_available: bool = Field(..., description="Whether mediapipe can be imported")
    embedding_oracle_available: bool = Field(..., description="Whether face_recognition can be imported")
    enrolled_owners: int = Field(..., description="Number of enrolled owners")
    total_records: int = Field(..., description="Number of stored embeddings")
    extra: Optional[Dict[str, Any]] = Field(None, description="Store statistics")
