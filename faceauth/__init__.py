"""
Core Module for the Face Authentication System

This package contains the liveness challenge, embedding quality checks,
enrollment and matching logic, and the SQLite gallery store.

Main components:
    - config: Configuration loading and management
    - oracles: Landmark / embedding oracle interfaces and test doubles
    - quality_validator: Embedding plausibility checks
    - liveness: Challenge state machine (stabilize, normal, smile, nod, head raise)
    - enrollment: Validate captured samples and replace an owner's gallery
    - matching: Fused similarity and gallery identification
    - gallery_store: Persistent embedding gallery and authentication log
    - face_detector: MediaPipe landmark oracle (imported on demand)
    - face_embedder: face_recognition embedding oracle (imported on demand)

Usage:
    from faceauth.config import get_config
    from faceauth.liveness import ChallengeEngine
    from faceauth.enrollment import EnrollmentPipeline
    from faceauth.matching import MatchingEngine
    from faceauth.face_detector import MediaPipeLandmarkOracle
"""

from faceauth.config import (
    get_config,
    get_section,
    get_face_detection_config,
    get_embedding_config,
    get_quality_config,
    get_challenge_config,
    get_enrollment_config,
    get_matching_config,
    get_storage_config,
    get_api_config,
    get_server_config,
)

from faceauth.oracles import (
    FrameReading,
    LandmarkOracle,
    EmbeddingOracle,
    StubLandmarkOracle,
    StubEmbeddingOracle,
)

from faceauth.samples import CaptureType, CapturedSample

from faceauth.quality_validator import (
    QualityValidator,
    QualityResult,
    InvalidEmbeddingError,
    compute_quality_score,
)

from faceauth.liveness import (
    ChallengeEngine,
    ChallengeState,
    FaceQuality,
)

from faceauth.gallery_store import (
    GalleryStore,
    StoredEmbeddingRecord,
    get_gallery_store,
)

from faceauth.enrollment import (
    EnrollmentPipeline,
    EnrollmentResult,
    EnrollmentError,
    get_enrollment_pipeline,
)

from faceauth.matching import (
    MatchingEngine,
    MatchResult,
    ConfidenceTier,
    get_matching_engine,
)

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_face_detection_config",
    "get_embedding_config",
    "get_quality_config",
    "get_challenge_config",
    "get_enrollment_config",
    "get_matching_config",
    "get_storage_config",
    "get_api_config",
    "get_server_config",
    # Oracles
    "FrameReading",
    "LandmarkOracle",
    "EmbeddingOracle",
    "StubLandmarkOracle",
    "StubEmbeddingOracle",
    # Samples
    "CaptureType",
    "CapturedSample",
    # Quality
    "QualityValidator",
    "QualityResult",
    "InvalidEmbeddingError",
    "compute_quality_score",
    # Liveness
    "ChallengeEngine",
    "ChallengeState",
    "FaceQuality",
    # Gallery Store
    "GalleryStore",
    "StoredEmbeddingRecord",
    "get_gallery_store",
    # Enrollment
    "EnrollmentPipeline",
    "EnrollmentResult",
    "EnrollmentError",
    "get_enrollment_pipeline",
    # Matching
    "MatchingEngine",
    "MatchResult",
    "ConfidenceTier",
    "get_matching_engine",
]
