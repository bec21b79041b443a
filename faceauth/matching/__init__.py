"""
Matching Module for Face Authentication

Compares a fresh face embedding against the enrolled gallery.

Components:
    - similarity: cosine / normalized Euclidean / Pearson metrics and their fusion
    - matching_engine: gallery scan, accept threshold and confidence tiers

Usage:
    from faceauth.matching import MatchingEngine

    engine = MatchingEngine(store, validator, config)
    result = engine.match(embedding)
    if result.is_match:
        print(result.candidate_owner_id, result.confidence_tier)
"""

from faceauth.matching.similarity import (
    SimilarityScores,
    FusedSimilarity,
    l2_normalize,
    cosine_similarity,
    euclidean_similarity,
    pearson_correlation,
)
from faceauth.matching.matching_engine import (
    ConfidenceTier,
    MatchResult,
    MatchingEngine,
    get_matching_engine,
)

__all__ = [
    # Metrics
    "SimilarityScores",
    "FusedSimilarity",
    "l2_normalize",
    "cosine_similarity",
    "euclidean_similarity",
    "pearson_correlation",
    # Engine
    "ConfidenceTier",
    "MatchResult",
    "MatchingEngine",
    "get_matching_engine",
]
