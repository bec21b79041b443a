"""
Unit Tests for the landmark and embedding oracles

This module tests:
- FrameReading creation and validation
- Bounding box calculation from landmarks
- Face region cropping
- The scripted stub oracles
- Integration tests with MediaPipe / face_recognition (when available)

Note: The adapter tests need MediaPipe (and a downloaded Face Landmarker
      model) or face_recognition. They skip when those are not installed.

Usage:
    pytest tests/test_face_detector.py -v
    pytest tests/test_face_detector.py -v -k "not slow"
"""

import numpy as np
import pytest
import sys
from pathlib import Path
from unittest.mock import patch

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from faceauth.oracles import FrameReading, LandmarkOracle, StubEmbeddingOracle, StubLandmarkOracle

# Check if the vision backends are available
try:
    import mediapipe
    MEDIAPIPE_AVAILABLE = True
except ImportError:
    MEDIAPIPE_AVAILABLE = False

try:
    import face_recognition
    FACE_RECOGNITION_AVAILABLE = True
except ImportError:
    FACE_RECOGNITION_AVAILABLE = False


def box_reading(x1, y1, x2, y2):
    """Reading whose landmarks span the given normalized box."""
    return FrameReading(points=[[x1, y1], [x2, y2], [(x1 + x2) / 2, (y1 + y2) / 2]])


# ============================================================
# Test FrameReading Dataclass
# ============================================================

class TestFrameReading:
    """Tests for FrameReading."""

    def test_create_reading(self):
        reading = FrameReading(points=np.zeros((478, 3)), expressions={"mouthSmileLeft": 0.4})
        assert reading.n_points == 478
        assert reading.points.dtype == np.float32
        assert reading.expression("mouthSmileLeft") == pytest.approx(0.4)
        assert reading.expression("eyeBlinkLeft") == 0.0

    def test_two_dimensional_points_allowed(self):
        reading = FrameReading(points=[[0.1, 0.2], [0.3, 0.4]])
        assert reading.x(1) == pytest.approx(0.3)
        assert reading.y(0) == pytest.approx(0.2)

    def test_invalid_shape(self):
        with pytest.raises(ValueError):
            FrameReading(points=np.zeros(10))
        with pytest.raises(ValueError):
            FrameReading(points=np.zeros((10, 1)))

    def test_has_points(self):
        reading = FrameReading(points=np.zeros((5, 2)))
        assert reading.has_points([0, 4])
        assert not reading.has_points([5])
        assert not reading.has_points([-1])


# ============================================================
# Test Bounding Box and Cropping
# ============================================================

class TestFaceRegion:
    """Tests for LandmarkOracle.face_bbox and crop_face_region."""

    @pytest.fixture
    def oracle(self):
        return StubLandmarkOracle([])

    @pytest.fixture
    def frame(self):
        return np.arange(200 * 100 * 3, dtype=np.uint32).reshape(100, 200, 3).astype(np.uint8)

    def test_bbox_in_pixels(self):
        bbox = LandmarkOracle.face_bbox(box_reading(0.25, 0.2, 0.75, 0.8), width=200, height=100)
        assert bbox == (50, 20, 150, 80)

    def test_bbox_clamped_to_image(self):
        bbox = LandmarkOracle.face_bbox(box_reading(-0.1, -0.2, 1.2, 1.5), width=200, height=100)
        assert bbox == (0, 0, 200, 100)

    def test_crop_with_padding(self, oracle, frame):
        crop = oracle.crop_face_region(frame, box_reading(0.25, 0.2, 0.75, 0.8), padding=0.1)
        # 100 x 60 box padded by 10 x 6 pixels on each side
        assert crop.shape == (72, 120, 3)
        np.testing.assert_array_equal(crop, frame[14:86, 40:160])

    def test_crop_without_padding(self, oracle, frame):
        crop = oracle.crop_face_region(frame, box_reading(0.25, 0.2, 0.75, 0.8), padding=0.0)
        assert crop.shape == (60, 100, 3)

    def test_padding_clamped_at_border(self, oracle, frame):
        crop = oracle.crop_face_region(frame, box_reading(0.0, 0.0, 0.5, 0.5), padding=0.5)
        assert crop.shape == (75, 150, 3)

    def test_empty_box(self, oracle, frame):
        assert oracle.crop_face_region(frame, box_reading(0.5, 0.5, 0.5, 0.5)) is None


# ============================================================
# Test Stub Oracles
# ============================================================

class TestStubOracles:
    """Tests for the scripted oracles used by the challenge tests."""

    def test_landmark_script_repeats_last(self):
        first, last = box_reading(0.1, 0.1, 0.5, 0.5), box_reading(0.2, 0.2, 0.6, 0.6)
        oracle = StubLandmarkOracle([first, None, last])
        frame = np.zeros((10, 10, 3), dtype=np.uint8)

        results = [oracle.detect(frame, t) for t in range(5)]
        assert results[0] is first
        assert results[1] is None
        assert results[2] is last and results[4] is last
        assert oracle.calls == 5

    def test_empty_landmark_script(self):
        assert StubLandmarkOracle([]).detect(np.zeros((4, 4, 3)), 0.0) is None

    def test_embedding_copies_single_vector(self):
        vector = np.linspace(-1.0, 1.0, 128)
        oracle = StubEmbeddingOracle(vector)
        out = oracle.embed(np.zeros((4, 4, 3)))
        out[0] = 99.0
        np.testing.assert_allclose(oracle.embed(np.zeros((4, 4, 3))), vector)

    def test_embedding_sequence_with_failures(self):
        a, b = np.ones(128), np.full(128, 2.0)
        oracle = StubEmbeddingOracle([a, None, b])
        region = np.zeros((4, 4, 3))
        assert oracle.embed(region)[0] == 1.0
        assert oracle.embed(region) is None
        assert oracle.embed(region)[0] == 2.0
        assert oracle.embed(region)[0] == 2.0

    def test_noise_varies_each_call(self):
        vector = np.full(128, 0.5)
        oracle = StubEmbeddingOracle(vector, noise=0.05, seed=1)
        region = np.zeros((4, 4, 3))
        first, second = oracle.embed(region), oracle.embed(region)
        assert not np.allclose(first, second)
        assert np.abs(first - vector).max() < 0.5
        np.testing.assert_allclose(oracle.embeddings[0], vector)

    def test_default_embedding_is_seeded(self):
        region = np.zeros((4, 4, 3))
        np.testing.assert_allclose(
            StubEmbeddingOracle(seed=3).embed(region),
            StubEmbeddingOracle(seed=3).embed(region),
        )


# ============================================================
# Integration Tests (require vision backends)
# ============================================================

class TestFaceEmbedder:
    """Tests for the face_recognition adapter."""

    def test_missing_backend_raises(self):
        from faceauth import face_embedder

        with patch.object(face_embedder, "_FACE_RECOGNITION_AVAILABLE", False):
            with pytest.raises(ImportError):
                face_embedder.FaceEmbedder()

    def test_pad_image(self):
        from faceauth.face_embedder import FaceEmbedder

        image = np.full((10, 20, 3), 100, dtype=np.uint8)
        padded = FaceEmbedder._pad_image(image, ratio=0.5)
        assert padded.shape == (20, 40, 3)
        assert (padded == 100).all()

    @pytest.mark.slow
    @pytest.mark.skipif(not FACE_RECOGNITION_AVAILABLE, reason="face_recognition not installed")
    def test_blank_image_has_no_embedding(self):
        from faceauth.face_embedder import FaceEmbedder

        embedder = FaceEmbedder()
        assert embedder.embed(np.zeros((0, 0, 3), dtype=np.uint8)) is None


@pytest.mark.slow
@pytest.mark.skipif(not MEDIAPIPE_AVAILABLE, reason="MediaPipe not installed")
class TestMediaPipeLandmarkOracle:
    """Integration tests with the MediaPipe Face Landmarker (downloads the model)."""

    @pytest.fixture
    def oracle(self):
        from faceauth.face_detector import get_landmark_oracle

        oracle = get_landmark_oracle({"running_mode": "video"})
        yield oracle
        oracle.close()

    def test_blank_frame_has_no_face(self, oracle):
        frame = np.zeros((480, 640, 3), dtype=np.uint8)
        assert oracle.detect(frame, 0.0) is None

    def test_non_increasing_timestamps_accepted(self, oracle):
        frame = np.zeros((240, 320, 3), dtype=np.uint8)
        oracle.detect(frame, 1.0)
        oracle.detect(frame, 1.0)
        oracle.detect(frame, 0.5)
        assert oracle._last_timestamp_ms == 1002
