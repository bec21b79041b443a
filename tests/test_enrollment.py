"""
Tests for the EnrollmentPipeline module.

This test suite verifies:
- Successful enrollment stores only the valid samples
- Rejection reasons are reported per sample
- Too few valid samples leaves the previous gallery untouched
- Re-enrollment replaces the previous gallery
- Duplicate capture types and empty owner ids

Run with: pytest tests/test_enrollment.py -v
"""

import os
import sys
import pytest
import numpy as np

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from faceauth.enrollment import EnrollmentPipeline, EnrollmentError, REASON_DUPLICATE_TYPE
from faceauth.gallery_store import GalleryStore
from faceauth.quality_validator import REASON_DEGENERATE, REASON_INVALID_DIMENSION
from faceauth.samples import CaptureType, CapturedSample, CAPTURE_SEQUENCE


def valid_embedding(seed):
    return np.random.default_rng(seed).normal(0.0, 0.1, 128)


def make_samples(embeddings, quality=0.5):
    return [
        CapturedSample(capture_type=t, embedding=e, quality_score=quality)
        for t, e in zip(CAPTURE_SEQUENCE, embeddings)
    ]


@pytest.fixture
def store():
    store = GalleryStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def pipeline(store):
    return EnrollmentPipeline(store)


class TestEnrollmentPipeline:
    """Tests for EnrollmentPipeline.enroll."""

    def test_enroll_four_valid_samples(self, pipeline, store):
        samples = make_samples([valid_embedding(i) for i in range(4)])

        result = pipeline.enroll("alice", samples)

        assert result.accepted == 4
        assert result.rejected == []
        assert result.gallery_replaced
        stored = store.list_records("alice")
        assert [r.capture_type for r in stored] == list(CAPTURE_SEQUENCE)

    def test_three_valid_one_invalid(self, pipeline, store):
        embeddings = [valid_embedding(0), valid_embedding(1), np.zeros(128), valid_embedding(3)]

        result = pipeline.enroll("alice", make_samples(embeddings))

        assert result.accepted == 3
        assert len(result.rejected) == 1
        assert result.rejected[0].capture_type is CaptureType.NOD
        assert result.rejected[0].reason == REASON_DEGENERATE
        assert len(store.list_records("alice")) == 3

    def test_too_few_valid_samples_keeps_previous_gallery(self, pipeline, store):
        pipeline.enroll("alice", make_samples([valid_embedding(i) for i in range(4)]))
        before = [r.embedding.copy() for r in store.list_records("alice")]

        embeddings = [valid_embedding(10), np.zeros(128), np.zeros(128), np.ones(64)]
        with pytest.raises(EnrollmentError) as exc_info:
            pipeline.enroll("alice", make_samples(embeddings))

        error = exc_info.value
        assert error.result.accepted == 1
        assert not error.result.gallery_replaced
        assert [r.reason for r in error.rejected] == [
            REASON_DEGENERATE,
            REASON_DEGENERATE,
            REASON_INVALID_DIMENSION,
        ]

        after = store.list_records("alice")
        assert len(after) == 4
        for old, new in zip(before, after):
            np.testing.assert_allclose(old, new.embedding)

    def test_failed_first_enrollment_stores_nothing(self, pipeline, store):
        with pytest.raises(EnrollmentError):
            pipeline.enroll("bob", make_samples([valid_embedding(0)]))
        assert not store.owner_exists("bob")

    def test_reenrollment_replaces_gallery(self, pipeline, store):
        pipeline.enroll("alice", make_samples([valid_embedding(i) for i in range(4)]))
        pipeline.enroll("alice", make_samples([valid_embedding(20), valid_embedding(21)]))

        stored = store.list_records("alice")
        assert len(stored) == 2
        np.testing.assert_allclose(stored[0].embedding, valid_embedding(20))

    def test_other_owners_untouched(self, pipeline, store):
        pipeline.enroll("alice", make_samples([valid_embedding(i) for i in range(4)]))
        pipeline.enroll("bob", make_samples([valid_embedding(i + 10) for i in range(4)]))

        assert len(store.list_records("alice")) == 4
        assert len(store.list_records("bob")) == 4

    def test_duplicate_capture_type_rejected(self, pipeline, store):
        samples = make_samples([valid_embedding(0), valid_embedding(1)])
        samples.append(CapturedSample(CaptureType.NORMAL, valid_embedding(2), 0.5))

        result = pipeline.enroll("alice", samples)

        assert result.accepted == 2
        assert result.rejected[0].reason == REASON_DUPLICATE_TYPE
        assert result.rejected[0].index == 2

    def test_stored_quality_uses_reported_floor(self, pipeline, store):
        pipeline.enroll("alice", make_samples([valid_embedding(i) for i in range(2)], quality=0.95))

        for record in store.list_records("alice"):
            assert record.quality_score == pytest.approx(0.95)

    def test_empty_owner_id(self, pipeline):
        with pytest.raises(ValueError):
            pipeline.enroll("  ", make_samples([valid_embedding(0), valid_embedding(1)]))

    def test_custom_minimum(self, store):
        pipeline = EnrollmentPipeline(store, config={"min_accepted_samples": 3})
        with pytest.raises(EnrollmentError):
            pipeline.enroll("alice", make_samples([valid_embedding(0), valid_embedding(1)]))
