"""
Liveness challenge package.

    - evidence: EvidenceCounter, PositionHistory, FrameThrottle
    - signals: face framing quality, smile / nod / head-raise predicates
    - challenge_engine: the challenge state machine
"""

from faceauth.liveness.evidence import EvidenceCounter, PositionHistory, FrameThrottle
from faceauth.liveness.signals import (
    FaceQuality,
    evaluate_face_quality,
    is_smiling,
    is_nodding,
    is_head_raised,
)
from faceauth.liveness.challenge_engine import (
    ChallengeState,
    ChallengeSettings,
    ChallengeContext,
    ChallengeEngine,
    CaptureOutcome,
    FrameResult,
    new_context,
    evaluate_frame,
    record_capture,
)

__all__ = [
    # Evidence primitives
    "EvidenceCounter",
    "PositionHistory",
    "FrameThrottle",
    # Signals
    "FaceQuality",
    "evaluate_face_quality",
    "is_smiling",
    "is_nodding",
    "is_head_raised",
    # State machine
    "ChallengeState",
    "ChallengeSettings",
    "ChallengeContext",
    "ChallengeEngine",
    "CaptureOutcome",
    "FrameResult",
    "new_context",
    "evaluate_frame",
    "record_capture",
]
