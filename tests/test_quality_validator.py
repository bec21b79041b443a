"""
Tests for the QualityValidator module.

This test suite verifies:
- Acceptance of realistic embeddings
- Each rejection reason (dimension, degenerate, variability, extreme values)
- Check ordering when several checks would fail
- Recomputed quality score bounds and the reported-quality floor

Run with: pytest tests/test_quality_validator.py -v
"""

import os
import sys
import pytest
import numpy as np

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from faceauth.quality_validator import (
    QualityValidator,
    InvalidEmbeddingError,
    compute_quality_score,
    REASON_INVALID_DIMENSION,
    REASON_DEGENERATE,
    REASON_LOW_VARIABILITY,
    REASON_EXTREME_VALUES,
)


@pytest.fixture
def validator():
    return QualityValidator()


@pytest.fixture
def embedding():
    rng = np.random.default_rng(42)
    return rng.normal(0.0, 0.1, 128)


class TestValidate:
    """Tests for QualityValidator.validate."""

    def test_realistic_embedding_is_valid(self, validator, embedding):
        result = validator.validate(embedding)
        assert result.valid
        assert result.reason is None
        assert result.details["dimension"] == 128

    def test_accepts_plain_list(self, validator, embedding):
        assert validator.validate(embedding.tolist()).valid

    def test_wrong_dimension(self, validator, embedding):
        result = validator.validate(embedding[:127])
        assert not result.valid
        assert result.reason == REASON_INVALID_DIMENSION
        assert result.details["dimension"] == 127

    def test_none_is_invalid_dimension(self, validator):
        result = validator.validate(None)
        assert result.reason == REASON_INVALID_DIMENSION

    def test_non_numeric_is_invalid_dimension(self, validator):
        result = validator.validate(["a"] * 128)
        assert result.reason == REASON_INVALID_DIMENSION

    def test_all_zero_is_degenerate(self, validator):
        result = validator.validate(np.zeros(128))
        assert not result.valid
        assert result.reason == REASON_DEGENERATE

    def test_nan_is_degenerate(self, validator, embedding):
        embedding[5] = np.nan
        result = validator.validate(embedding)
        assert result.reason == REASON_DEGENERATE

    def test_few_distinct_values_is_low_variability(self, validator):
        # 9 distinct values repeated across 128 components
        vector = np.resize(np.linspace(0.1, 0.9, 9), 128)
        result = validator.validate(vector)
        assert not result.valid
        assert result.reason == REASON_LOW_VARIABILITY
        assert result.details["unique_values"] == 9

    def test_ten_distinct_values_passes_variability(self, validator):
        vector = np.resize(np.linspace(0.1, 1.0, 10), 128)
        assert validator.validate(vector).valid

    def test_large_component_is_extreme(self, validator, embedding):
        embedding[0] = 10.5
        result = validator.validate(embedding)
        assert not result.valid
        assert result.reason == REASON_EXTREME_VALUES

    def test_boundary_value_is_allowed(self, validator, embedding):
        embedding[0] = -10.0
        assert validator.validate(embedding).valid

    def test_dimension_checked_before_degenerate(self, validator):
        result = validator.validate(np.zeros(64))
        assert result.reason == REASON_INVALID_DIMENSION

    def test_custom_dimension(self, embedding):
        validator = QualityValidator({"embedding_dim": 64})
        assert validator.validate(embedding[:64]).valid
        assert validator.validate(embedding).reason == REASON_INVALID_DIMENSION


class TestRequireValid:
    """Tests for QualityValidator.require_valid."""

    def test_returns_float64_array(self, validator, embedding):
        array = validator.require_valid(embedding.astype(np.float32).tolist())
        assert array.dtype == np.float64
        assert array.shape == (128,)

    def test_raises_with_reason(self, validator):
        with pytest.raises(InvalidEmbeddingError) as exc_info:
            validator.require_valid(np.zeros(128))
        assert exc_info.value.reason == REASON_DEGENERATE
        assert isinstance(exc_info.value, ValueError)


class TestComputeQualityScore:
    """Tests for compute_quality_score."""

    def test_score_in_unit_interval(self, embedding):
        score = compute_quality_score(embedding)
        assert 0.0 <= score <= 1.0

    def test_large_spread_vector_scores_high(self):
        rng = np.random.default_rng(0)
        score = compute_quality_score(rng.normal(0.0, 2.0, 128))
        assert score == pytest.approx(1.0)

    def test_reported_quality_is_a_floor(self, embedding):
        computed = compute_quality_score(embedding)
        assert compute_quality_score(embedding, reported=0.99) == pytest.approx(0.99)
        assert compute_quality_score(embedding, reported=0.0) == pytest.approx(computed)

    def test_reported_above_one_is_clamped(self, embedding):
        assert compute_quality_score(embedding, reported=3.0) == 1.0

    def test_empty_vector_scores_zero(self):
        assert compute_quality_score([]) == 0.0
