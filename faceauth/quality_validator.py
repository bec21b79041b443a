"""
Embedding Quality Validation Module

Decides whether a raw face embedding is usable before it is stored or
compared. A corrupt or degenerate vector carries no identity signal and
would silently poison matching, so every vector passes through here:
fresh captures during a challenge, samples submitted for enrollment,
probes at login, and stored records read back from the gallery.

Checks run in order and stop at the first failure:
1. Dimension: length must equal the engine-wide dimension (128)
2. Magnitude: L2 norm must exceed a small epsilon
3. Variability: enough distinct values after rounding to 3 decimals
4. Range: no component may exceed a fixed magnitude bound

Usage:
    from faceauth.quality_validator import QualityValidator

    validator = QualityValidator(config)
    result = validator.validate(embedding)
    if not result.valid:
        print(f"Rejected: {result.reason}")
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Any, Optional


# Rejection reasons
REASON_INVALID_DIMENSION = "invalid dimension"
REASON_DEGENERATE = "degenerate vector"
REASON_LOW_VARIABILITY = "low variability"
REASON_EXTREME_VALUES = "extreme values"


class InvalidEmbeddingError(ValueError):
    """Raised when an embedding supplied as input fails validation."""

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or f"Invalid embedding: {reason}")


@dataclass
class QualityResult:
    """
    Result of an embedding quality check.

    Attributes:
        valid: True if the embedding can be stored or compared.
        reason: Rejection reason, or None when valid.
        details: Measured values (dimension, norm, unique count, max value).
    """
    valid: bool
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class QualityValidator:
    """
    Pure validator for fixed-length face embeddings.

    Thresholds come from the "quality" config section. The validator holds
    no state between calls.
    """

    def __init__(self, config: Dict[str, Any] = None):
        """
        Initialize the validator.

        Args:
            config: Configuration dictionary containing:
                - embedding_dim: Required vector length (default: 128)
                - min_norm: L2 norm must exceed this (default: 0.01)
                - min_unique_values: Minimum distinct rounded values (default: 10)
                - unique_decimals: Rounding precision for the variability check (default: 3)
                - max_abs_value: Largest allowed |component| (default: 10.0)
        """
        if config is None:
            config = {}

        self.embedding_dim = config.get("embedding_dim", 128)
        self.min_norm = config.get("min_norm", 0.01)
        self.min_unique_values = config.get("min_unique_values", 10)
        self.unique_decimals = config.get("unique_decimals", 3)
        self.max_abs_value = config.get("max_abs_value", 10.0)

    def validate(self, vector) -> QualityResult:
        """
        Check whether a vector is a usable embedding.

        Args:
            vector: Sequence or ndarray of floats.

        Returns:
            QualityResult with the first failing reason, if any.
        """
        array = _as_vector(vector)

        # 1. Dimensionality
        if array is None or array.shape[0] != self.embedding_dim:
            return QualityResult(
                valid=False,
                reason=REASON_INVALID_DIMENSION,
                details={
                    "dimension": 0 if array is None else int(array.shape[0]),
                    "expected_dimension": self.embedding_dim,
                },
            )

        # 2. Magnitude (NaN compares False, so it is rejected here too)
        norm = float(np.linalg.norm(array))
        if not norm > self.min_norm:
            return QualityResult(
                valid=False,
                reason=REASON_DEGENERATE,
                details={"norm": norm, "min_norm": self.min_norm},
            )

        # 3. Variability
        n_unique = int(np.unique(np.round(array, self.unique_decimals)).size)
        if n_unique < self.min_unique_values:
            return QualityResult(
                valid=False,
                reason=REASON_LOW_VARIABILITY,
                details={"unique_values": n_unique, "min_unique_values": self.min_unique_values},
            )

        # 4. Range
        max_abs = float(np.max(np.abs(array)))
        if max_abs > self.max_abs_value:
            return QualityResult(
                valid=False,
                reason=REASON_EXTREME_VALUES,
                details={"max_abs_value": max_abs, "limit": self.max_abs_value},
            )

        return QualityResult(
            valid=True,
            details={
                "dimension": self.embedding_dim,
                "norm": norm,
                "unique_values": n_unique,
                "max_abs_value": max_abs,
            },
        )

    def require_valid(self, vector) -> np.ndarray:
        """
        Validate a vector and return it as a float64 array.

        Raises:
            InvalidEmbeddingError: If the vector fails any check.
        """
        result = self.validate(vector)
        if not result.valid:
            raise InvalidEmbeddingError(result.reason)
        return _as_vector(vector)


def _as_vector(vector) -> Optional[np.ndarray]:
    """Convert input to a flat float64 array, or None if it is not numeric."""
    if vector is None:
        return None
    try:
        return np.asarray(vector, dtype=np.float64).ravel()
    except (TypeError, ValueError):
        return None


def compute_quality_score(vector, reported: Optional[float] = None) -> float:
    """
    Recompute a quality score in [0, 1] from the embedding itself.

    The score blends raw magnitude and spread of the vector:
        0.4 * min(1, norm / 5) + 0.4 * min(1, std / 1.5) + 0.2 * min(1, unique / 50)

    The caller's reported quality acts as a floor, so a capture that the
    client already judged good is never downgraded below that value.

    Args:
        vector: Embedding values.
        reported: Quality reported by the capturing client, if any.

    Returns:
        Quality score clamped to [0, 1].
    """
    array = _as_vector(vector)
    if array is None or array.size == 0:
        score = 0.0
    else:
        magnitude_score = min(1.0, float(np.linalg.norm(array)) / 5.0)
        variance_score = min(1.0, float(np.std(array)) / 1.5)
        diversity_score = min(1.0, np.unique(np.round(array, 3)).size / 50.0)
        score = 0.4 * magnitude_score + 0.4 * variance_score + 0.2 * diversity_score

    if reported is not None:
        score = max(score, float(reported))

    if not np.isfinite(score):
        score = 0.0

    return float(np.clip(score, 0.0, 1.0))


def get_quality_validator(config: Dict[str, Any] = None) -> QualityValidator:
    """
    Factory function to get a QualityValidator with config.

    Args:
        config: Optional config dict. If None, loads the "quality" section
                from config.yaml (built-in defaults when unavailable).
    """
    if config is None:
        from faceauth.config import get_optional_section
        config = get_optional_section("quality")

    return QualityValidator(config)


if __name__ == "__main__":
    print("Testing QualityValidator...")

    validator = QualityValidator({"embedding_dim": 128})

    good = np.random.randn(128) * 0.1
    print(f"Random vector: {validator.validate(good)}")
    print(f"Zero vector: {validator.validate(np.zeros(128)).reason}")
    print(f"Short vector: {validator.validate(np.ones(64)).reason}")
    print(f"Constant vector: {validator.validate(np.full(128, 0.5)).reason}")
    print(f"Quality score: {compute_quality_score(good):.3f}")
