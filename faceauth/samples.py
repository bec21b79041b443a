"""
Captured sample types shared by the challenge engine, the enrollment
pipeline and the matching engine.
"""

import time
from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class CaptureType(str, Enum):
    """Milestone at which a sample was captured, in challenge order."""
    NORMAL = "normal"
    SMILE = "smile"
    NOD = "nod"
    HEAD_RAISE = "head_raise"


CAPTURE_SEQUENCE = (
    CaptureType.NORMAL,
    CaptureType.SMILE,
    CaptureType.NOD,
    CaptureType.HEAD_RAISE,
)


@dataclass(frozen=True, eq=False)
class CapturedSample:
    """
    One embedding captured at a challenge milestone.

    Attributes:
        capture_type: Which milestone produced the sample.
        embedding: Identity vector (read-only copy).
        quality_score: Quality in [0, 1].
        captured_at: Capture time in seconds.
    """

    capture_type: CaptureType
    embedding: np.ndarray
    quality_score: float
    captured_at: float = field(default_factory=time.time)

    def __post_init__(self):
        embedding = np.array(self.embedding, dtype=np.float64).ravel()
        embedding.setflags(write=False)
        object.__setattr__(self, "embedding", embedding)
        object.__setattr__(self, "capture_type", CaptureType(self.capture_type))
        object.__setattr__(self, "quality_score", float(self.quality_score))
