"""
Similarity metrics and score fusion for face embeddings.

Three metrics are computed on L2-normalized vectors and fused with fixed
weights:

    fused = 0.6 * cosine + 0.3 * euclidean + 0.1 * max(0, pearson)

clamped to [0, 1]. Cosine carries most of the weight; Euclidean and
correlation corroborate it and pull down vectors that point the same way
but are otherwise anomalous.
"""

import math
import warnings
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np


def l2_normalize(vector) -> np.ndarray:
    """
    Scale a vector to unit length.

    Raises:
        ValueError: If the vector has (near) zero norm.
    """
    vector = np.asarray(vector, dtype=np.float64).ravel()
    norm = np.linalg.norm(vector)
    if norm < 1e-12:
        raise ValueError("Cannot normalize a zero-norm vector")
    return vector / norm


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Dot product of two unit vectors, clamped to [-1, 1]."""
    return float(np.clip(np.dot(a, b), -1.0, 1.0))


def euclidean_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    1 - d / sqrt(2) for unit vectors, floored at 0.

    Unit vectors at right angles are sqrt(2) apart, so orthogonal or worse
    scores 0.
    """
    distance = float(np.linalg.norm(a - b))
    return max(0.0, 1.0 - distance / math.sqrt(2.0))


def pearson_correlation(a: np.ndarray, b: np.ndarray) -> float:
    """Pearson correlation of the components; 0 when either vector is constant."""
    a_centered = a - a.mean()
    b_centered = b - b.mean()
    denom = np.linalg.norm(a_centered) * np.linalg.norm(b_centered)
    if denom < 1e-12:
        return 0.0
    return float(np.clip(np.dot(a_centered, b_centered) / denom, -1.0, 1.0))


@dataclass
class SimilarityScores:
    """Component metrics and fused similarity for one probe/candidate pair."""

    cosine: float
    euclidean: float
    pearson: float
    fused: float

    def as_dict(self) -> Dict[str, float]:
        return {
            "cosine": self.cosine,
            "euclidean": self.euclidean,
            "pearson": self.pearson,
            "fused": self.fused,
        }


class FusedSimilarity:
    """
    Weighted fusion of cosine, Euclidean and Pearson similarity.

    Args:
        config: Dictionary with optional keys:
            - cosine_weight (default 0.6)
            - euclidean_weight (default 0.3)
            - pearson_weight (default 0.1)
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}

        self.weights = {
            "cosine": config.get("cosine_weight", 0.6),
            "euclidean": config.get("euclidean_weight", 0.3),
            "pearson": config.get("pearson_weight", 0.1),
        }

        total = sum(self.weights.values())
        if total <= 0:
            raise ValueError("Fusion weights must sum to a positive value")
        if abs(total - 1.0) > 0.01:
            warnings.warn(f"Fusion weights sum to {total:.3f}, not 1.0. Normalizing.")
            for key in self.weights:
                self.weights[key] /= total

    def compare(self, probe_unit: np.ndarray, candidate_unit: np.ndarray) -> SimilarityScores:
        """
        Score two unit-length vectors.

        Args:
            probe_unit: Normalized probe embedding.
            candidate_unit: Normalized candidate embedding (same length).
        """
        cosine = cosine_similarity(probe_unit, candidate_unit)
        euclidean = euclidean_similarity(probe_unit, candidate_unit)
        pearson = max(0.0, pearson_correlation(probe_unit, candidate_unit))

        fused = (
            self.weights["cosine"] * cosine
            + self.weights["euclidean"] * euclidean
            + self.weights["pearson"] * pearson
        )
        fused = float(np.clip(fused, 0.0, 1.0))

        return SimilarityScores(cosine=cosine, euclidean=euclidean, pearson=pearson, fused=fused)
