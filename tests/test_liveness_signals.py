"""
Tests for the liveness evidence primitives and per-frame signals.

This test suite verifies:
- EvidenceCounter bounds, decay and reset
- PositionHistory eviction order
- FrameThrottle admission at the configured rate
- Face framing quality tiers
- Smile, nod and head-raise predicates

Run with: pytest tests/test_liveness_signals.py -v
"""

import os
import sys
import pytest
import numpy as np

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from faceauth.liveness.evidence import EvidenceCounter, PositionHistory, FrameThrottle
from faceauth.liveness.signals import (
    FaceQuality,
    NOSE_TIP,
    FOREHEAD,
    CHIN,
    LEFT_CHEEK,
    RIGHT_CHEEK,
    evaluate_face_quality,
    is_smiling,
    is_nodding,
    is_head_raised,
    nose_position,
)
from faceauth.oracles import FrameReading


def make_reading(nose_x=0.5, nose_y=0.5, width=0.4, height=0.4, expressions=None):
    """Build a 478-point reading with the landmarks the signals look at."""
    points = np.zeros((478, 3), dtype=np.float32)
    points[NOSE_TIP] = [nose_x, nose_y, 0.0]
    points[FOREHEAD] = [0.5, 0.5 - height / 2, 0.0]
    points[CHIN] = [0.5, 0.5 + height / 2, 0.0]
    points[LEFT_CHEEK] = [0.5 - width / 2, 0.5, 0.0]
    points[RIGHT_CHEEK] = [0.5 + width / 2, 0.5, 0.0]
    return FrameReading(points=points, expressions=expressions or {})


class TestEvidenceCounter:
    """Tests for EvidenceCounter."""

    def test_increment_is_capped_at_target(self):
        counter = EvidenceCounter(3)
        for _ in range(5):
            counter.increment()
        assert counter.value == 3
        assert counter.reached

    def test_decay_by_one(self):
        counter = EvidenceCounter(5)
        counter.increment()
        counter.increment()
        assert counter.decay_or_reset() == 1
        assert counter.decay_or_reset() == 0
        assert counter.decay_or_reset() == 0

    def test_reset_drops_to_zero(self):
        counter = EvidenceCounter(5)
        for _ in range(4):
            counter.increment()
        assert counter.decay_or_reset(reset=True) == 0
        assert not counter.reached

    def test_progress(self):
        counter = EvidenceCounter(4)
        counter.increment()
        assert counter.progress == pytest.approx(0.25)

    def test_invalid_target(self):
        with pytest.raises(ValueError):
            EvidenceCounter(0)


class TestPositionHistory:
    """Tests for PositionHistory."""

    def test_oldest_values_are_evicted(self):
        history = PositionHistory(capacity=3)
        for value in [0.1, 0.2, 0.3, 0.4]:
            history.append(value)
        assert len(history) == 3
        assert history.recent(3) == pytest.approx([0.2, 0.3, 0.4])

    def test_recent_shorter_than_window(self):
        history = PositionHistory(capacity=10)
        history.append(0.5)
        assert history.recent(5) == [0.5]
        assert history.recent(0) == []

    def test_clear(self):
        history = PositionHistory()
        history.append(0.5)
        history.clear()
        assert len(history) == 0
        assert history.capacity == 15


class TestFrameThrottle:
    """Tests for FrameThrottle."""

    def test_drops_frames_faster_than_rate(self):
        throttle = FrameThrottle(max_fps=15)
        assert throttle.admit(0.0)
        assert not throttle.admit(0.03)
        assert not throttle.admit(0.06)
        assert throttle.admit(1 / 15)

    def test_dropped_frames_do_not_move_reference(self):
        throttle = FrameThrottle(max_fps=10)
        assert throttle.admit(0.0)
        assert not throttle.admit(0.05)
        assert throttle.admit(0.1)

    def test_thirty_fps_stream_is_halved(self):
        throttle = FrameThrottle(max_fps=15)
        admitted = sum(throttle.admit(i / 30) for i in range(30))
        assert admitted == 15

    def test_reset(self):
        throttle = FrameThrottle(max_fps=15)
        throttle.admit(1.0)
        throttle.reset()
        assert throttle.admit(1.0)


class TestFaceQuality:
    """Tests for evaluate_face_quality."""

    def test_large_centered_face_is_high(self):
        assert evaluate_face_quality(make_reading()) is FaceQuality.HIGH

    def test_off_center_face_is_medium(self):
        assert evaluate_face_quality(make_reading(nose_x=0.8)) is FaceQuality.MEDIUM

    def test_small_face_is_medium(self):
        assert evaluate_face_quality(make_reading(width=0.15, height=0.15)) is FaceQuality.MEDIUM

    def test_tiny_face_is_low(self):
        assert evaluate_face_quality(make_reading(width=0.05, height=0.05)) is FaceQuality.LOW

    def test_no_face_is_low(self):
        assert evaluate_face_quality(None) is FaceQuality.LOW

    def test_incomplete_mesh_is_low(self):
        reading = FrameReading(points=np.zeros((100, 2)))
        assert evaluate_face_quality(reading) is FaceQuality.LOW


class TestExpressionSignals:
    """Tests for the smile predicate."""

    def test_smile_needs_both_corners(self):
        both = make_reading(expressions={"mouthSmileLeft": 0.6, "mouthSmileRight": 0.5})
        one = make_reading(expressions={"mouthSmileLeft": 0.6, "mouthSmileRight": 0.1})
        assert is_smiling(both)
        assert not is_smiling(one)

    def test_missing_expressions_mean_no_smile(self):
        assert not is_smiling(make_reading())

    def test_nose_position(self):
        assert nose_position(make_reading(nose_y=0.42)) == pytest.approx(0.42)
        assert nose_position(FrameReading(points=np.zeros((1, 2)))) is None


class TestMotionSignals:
    """Tests for nod and head-raise predicates."""

    def test_nod_down_then_up(self):
        # Head goes down (y grows) then comes back up past the start
        positions = [0.50, 0.53, 0.56, 0.58, 0.55, 0.52, 0.49, 0.47, 0.46, 0.45]
        assert is_nodding(positions, window=10, min_range=0.05)

    def test_steady_rise_counts_as_nod(self):
        positions = [0.7 - 0.01 * i for i in range(10)]
        assert is_nodding(positions)

    def test_nod_requires_full_window(self):
        positions = [0.7 - 0.01 * i for i in range(9)]
        assert not is_nodding(positions)

    def test_nod_requires_range(self):
        positions = [0.50 + 0.004 * (i % 3) for i in range(10)]
        assert not is_nodding(positions)

    def test_up_then_down_is_not_nod(self):
        positions = [0.45, 0.46, 0.47, 0.49, 0.52, 0.55, 0.58, 0.56, 0.53, 0.50]
        assert not is_nodding(positions)

    def test_head_raise(self):
        positions = [0.6 - 0.01 * i for i in range(10)]
        assert is_head_raised(positions)

    def test_head_lowering_is_not_raise(self):
        positions = [0.5 + 0.01 * i for i in range(10)]
        assert not is_head_raised(positions)

    def test_small_raise_is_not_enough(self):
        positions = [0.5 - 0.004 * i for i in range(10)]
        assert not is_head_raised(positions)
