"""
Oracle Interfaces Module

The landmark detector and the embedding generator are opaque models that the
rest of the system only consumes. This module defines the interfaces they are
accessed through, plus stub implementations for tests and for running the
pipeline without any model installed.

Interfaces:
1. LandmarkOracle - frame -> FrameReading (landmark points + expression scores)
2. EmbeddingOracle - image region -> fixed-length identity vector

Concrete adapters:
    - faceauth.face_detector.MediaPipeLandmarkOracle
    - faceauth.face_embedder.FaceEmbedder

Usage:
    from faceauth.oracles import FrameReading, StubLandmarkOracle

    oracle = StubLandmarkOracle(readings)
    reading = oracle.detect(frame, timestamp)
"""

import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple


# Expression (blendshape) names used by the challenge signals
SMILE_LEFT = "mouthSmileLeft"
SMILE_RIGHT = "mouthSmileRight"


@dataclass
class FrameReading:
    """
    Landmarks and expression scores for a single video frame.

    Point at index i always refers to the same facial feature across frames.

    Attributes:
        points: Landmark coordinates normalized to the image, shape (N, 2) or (N, 3).
                x grows to the right and y grows downward.
        expressions: Named expression scores in [0, 1] (e.g. "mouthSmileLeft").
    """

    points: np.ndarray
    expressions: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float32)
        if self.points.ndim != 2 or self.points.shape[1] < 2:
            raise ValueError(f"points must be (N, 2) or (N, 3), got {self.points.shape}")

    @property
    def n_points(self) -> int:
        return len(self.points)

    def has_points(self, indices: Iterable[int]) -> bool:
        """Return True if every index refers to an existing landmark."""
        return all(0 <= i < self.n_points for i in indices)

    def x(self, index: int) -> float:
        return float(self.points[index, 0])

    def y(self, index: int) -> float:
        return float(self.points[index, 1])

    def expression(self, name: str, default: float = 0.0) -> float:
        return float(self.expressions.get(name, default))


class LandmarkOracle(ABC):
    """Detects one face per frame and returns its landmarks and expressions."""

    @abstractmethod
    def detect(self, frame: np.ndarray, timestamp: float) -> Optional[FrameReading]:
        """
        Run landmark detection on a frame.

        Args:
            frame: BGR image (H, W, 3).
            timestamp: Capture time of the frame in seconds.

        Returns:
            FrameReading, or None if no face is found.
        """
        pass

    @staticmethod
    def face_bbox(reading: FrameReading, width: int, height: int) -> Tuple[int, int, int, int]:
        """Pixel box (x1, y1, x2, y2) enclosing all landmarks, clamped to the image."""
        xs = reading.points[:, 0] * width
        ys = reading.points[:, 1] * height

        x1 = max(0, int(np.min(xs)))
        y1 = max(0, int(np.min(ys)))
        x2 = min(width, int(np.max(xs)))
        y2 = min(height, int(np.max(ys)))
        return (x1, y1, x2, y2)

    def crop_face_region(
        self,
        frame: np.ndarray,
        reading: FrameReading,
        padding: float = 0.3,
    ) -> Optional[np.ndarray]:
        """
        Crop the face region from a frame with padding.

        Args:
            frame: Original image (BGR format).
            reading: Landmarks detected on this frame.
            padding: Padding ratio added on each side (0.3 = 30% of face size).

        Returns:
            Cropped face image, or None if the box is empty.
        """
        h, w = frame.shape[:2]
        x1, y1, x2, y2 = self.face_bbox(reading, w, h)

        pad_x = int((x2 - x1) * padding)
        pad_y = int((y2 - y1) * padding)

        crop_x1 = max(0, x1 - pad_x)
        crop_y1 = max(0, y1 - pad_y)
        crop_x2 = min(w, x2 + pad_x)
        crop_y2 = min(h, y2 + pad_y)

        if crop_x2 <= crop_x1 or crop_y2 <= crop_y1:
            return None
        return frame[crop_y1:crop_y2, crop_x1:crop_x2]

    def close(self) -> None:
        """Release model resources."""


class EmbeddingOracle(ABC):
    """Summarizes a face image region as a fixed-length identity vector."""

    embedding_dim: int = 128

    @abstractmethod
    def embed(self, image_region: np.ndarray) -> Optional[np.ndarray]:
        """
        Compute an identity embedding.

        Args:
            image_region: Face crop in BGR format (H, W, 3).

        Returns:
            Vector of length embedding_dim, or None if no face could be encoded.
        """
        pass


# ============================================================
# Stub implementations
# ============================================================

class StubLandmarkOracle(LandmarkOracle):
    """
    Replays a fixed sequence of readings, one per detect() call.

    Entries may be None to simulate frames without a face. Once the script
    is exhausted the last entry is repeated.
    """

    def __init__(self, readings: Sequence[Optional[FrameReading]]):
        self.readings: List[Optional[FrameReading]] = list(readings)
        self.calls = 0

    def detect(self, frame: np.ndarray, timestamp: float) -> Optional[FrameReading]:
        if not self.readings:
            return None
        index = min(self.calls, len(self.readings) - 1)
        self.calls += 1
        return self.readings[index]


class StubEmbeddingOracle(EmbeddingOracle):
    """
    Returns preset embeddings.

    With a single vector, every call returns a copy of it. With a list,
    calls consume the list in order (None entries simulate failures) and
    the last entry is repeated afterwards. A non-zero noise adds fresh
    Gaussian jitter to every returned vector, as successive captures of
    one face would show.
    """

    def __init__(
        self,
        embeddings=None,
        embedding_dim: int = 128,
        seed: int = 0,
        noise: float = 0.0,
    ):
        self.embedding_dim = embedding_dim
        self.noise = noise
        self._rng = np.random.default_rng(seed)
        if embeddings is None:
            embeddings = [self._rng.normal(0.0, 0.1, embedding_dim)]
        elif isinstance(embeddings, np.ndarray) and embeddings.ndim == 1:
            embeddings = [embeddings]
        self.embeddings = list(embeddings)
        self.calls = 0

    def embed(self, image_region: np.ndarray) -> Optional[np.ndarray]:
        index = min(self.calls, len(self.embeddings) - 1)
        self.calls += 1
        embedding = self.embeddings[index]
        if embedding is None:
            return None
        embedding = np.array(embedding, dtype=np.float64, copy=True)
        if self.noise > 0:
            embedding += self._rng.normal(0.0, self.noise, embedding.shape)
        return embedding
