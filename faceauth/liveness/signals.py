"""
Per-frame geometric and expression signals.

Pure functions over a FrameReading (or a list of recent positions) that the
challenge engine aggregates into evidence. Landmark indices follow the
MediaPipe face mesh topology; all coordinates are normalized to the image,
with y growing downward.
"""

from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np

from faceauth.oracles import FrameReading, SMILE_LEFT, SMILE_RIGHT


# Face mesh landmarks used for geometry checks
NOSE_TIP = 1
FOREHEAD = 10
CHIN = 152
LEFT_CHEEK = 234
RIGHT_CHEEK = 454

QUALITY_LANDMARKS = (NOSE_TIP, FOREHEAD, CHIN, LEFT_CHEEK, RIGHT_CHEEK)


class FaceQuality(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def evaluate_face_quality(
    reading: Optional[FrameReading],
    min_width: float = 0.18,
    min_height: float = 0.18,
    medium_size: float = 0.1,
    center_range: Tuple[float, float] = (0.3, 0.7),
) -> FaceQuality:
    """
    Grade how well the face is framed.

    High: face wider and taller than the minimums and the nose tip horizontally
    centered. Medium: face at least medium_size in both directions. Low
    otherwise, including frames without a face or with an incomplete mesh.
    """
    if reading is None or not reading.has_points(QUALITY_LANDMARKS):
        return FaceQuality.LOW

    face_width = abs(reading.x(RIGHT_CHEEK) - reading.x(LEFT_CHEEK))
    face_height = abs(reading.y(FOREHEAD) - reading.y(CHIN))
    nose_x = reading.x(NOSE_TIP)

    centered = center_range[0] < nose_x < center_range[1]
    if face_width > min_width and face_height > min_height and centered:
        return FaceQuality.HIGH
    if face_width > medium_size and face_height > medium_size:
        return FaceQuality.MEDIUM
    return FaceQuality.LOW


def is_smiling(reading: FrameReading, threshold: float = 0.3) -> bool:
    """Both mouth corners must score above the threshold."""
    return (
        reading.expression(SMILE_LEFT) > threshold
        and reading.expression(SMILE_RIGHT) > threshold
    )


def nose_position(reading: FrameReading) -> Optional[float]:
    """Vertical position of the nose tip, or None if the mesh lacks it."""
    if not reading.has_points((NOSE_TIP,)):
        return None
    return reading.y(NOSE_TIP)


def is_nodding(positions: Sequence[float], window: int = 10, min_range: float = 0.05) -> bool:
    """
    Detect a down-then-up head movement.

    Over the last `window` positions the spread must exceed min_range, the
    lowest head position (largest y) must come before the highest (smallest
    y), and the highest must fall in the later half of the window.
    """
    if len(positions) < window:
        return False

    recent = np.asarray(positions[-window:], dtype=np.float64)
    if recent.max() - recent.min() <= min_range:
        return False

    max_index = int(np.argmax(recent))
    min_index = int(np.argmin(recent))
    return max_index < min_index and min_index > len(recent) / 2


def is_head_raised(positions: Sequence[float], window: int = 10, min_rise: float = 0.05) -> bool:
    """Detect a sustained upward movement: first minus last position exceeds min_rise."""
    if len(positions) < window:
        return False

    recent = positions[-window:]
    return recent[0] - recent[-1] > min_rise
