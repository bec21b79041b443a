"""
Matching Engine: identify a fresh embedding against the enrolled gallery.

The probe is validated, then compared with every valid stored record
(full scan, no early exit). The best fused similarity decides the outcome:

    best <  accept_threshold (0.75)            -> no match, tier "none"
    accept_threshold <= best < high (0.85)     -> match, tier "medium"
    best >= high_confidence_threshold          -> match, tier "high"

No match is a normal result, not an error. An invalid probe raises
InvalidEmbeddingError.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from faceauth.gallery_store import GalleryStore
from faceauth.matching.similarity import FusedSimilarity, l2_normalize
from faceauth.quality_validator import InvalidEmbeddingError, QualityValidator
from faceauth.samples import CapturedSample

logger = logging.getLogger(__name__)


class ConfidenceTier(str, Enum):
    NONE = "none"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class MatchResult:
    """
    Outcome of one identification attempt. Never persisted.

    Attributes:
        candidate_owner_id: Matched owner, or None when there is no match.
        fused_similarity: Best fused similarity seen, in [0, 1].
        confidence_tier: none / medium / high.
        details: Component scores of the best candidate and scan counters.
    """

    candidate_owner_id: Optional[str]
    fused_similarity: float
    confidence_tier: ConfidenceTier
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_match(self) -> bool:
        return self.confidence_tier is not ConfidenceTier.NONE


class MatchingEngine:
    """
    Gallery-wide (1:N) identification, with optional 1:1 verification.

    Args:
        store: Source of enrolled records.
        quality_validator: Validator applied to the probe and to every stored record.
        config: "matching" section with fusion weights and thresholds:
            - accept_threshold (default 0.75)
            - high_confidence_threshold (default 0.85)
            - cosine_weight / euclidean_weight / pearson_weight
    """

    def __init__(
        self,
        store: GalleryStore,
        quality_validator: Optional[QualityValidator] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        if config is None:
            config = {}

        self.store = store
        self.quality_validator = quality_validator or QualityValidator()
        self.fusion = FusedSimilarity(config)
        self.accept_threshold = config.get("accept_threshold", 0.75)
        self.high_confidence_threshold = config.get("high_confidence_threshold", 0.85)

        if self.high_confidence_threshold < self.accept_threshold:
            raise ValueError(
                f"high_confidence_threshold ({self.high_confidence_threshold}) must not be "
                f"below accept_threshold ({self.accept_threshold})"
            )

    def match(self, embedding, owner_id: Optional[str] = None) -> MatchResult:
        """
        Find the enrolled owner closest to a fresh embedding.

        Args:
            embedding: Probe vector.
            owner_id: If given, only this owner's gallery is compared (1:1).

        Returns:
            MatchResult; tier "none" when nothing clears the accept threshold.

        Raises:
            InvalidEmbeddingError: If the probe fails quality validation.
        """
        probe = l2_normalize(self.quality_validator.require_valid(embedding))

        if owner_id is None:
            records = self.store.list_all_records()
        else:
            records = self.store.list_records(owner_id)

        best_owner: Optional[str] = None
        best_scores = None
        n_compared = 0
        n_skipped = 0

        for record in records:
            check = self.quality_validator.validate(record.embedding)
            if not check.valid:
                n_skipped += 1
                logger.warning(
                    f"Skipping stored record {record.record_id} of {record.owner_id}: {check.reason}"
                )
                continue

            scores = self.fusion.compare(probe, l2_normalize(record.embedding))
            n_compared += 1

            if best_scores is None or scores.fused > best_scores.fused:
                best_scores = scores
                best_owner = record.owner_id

        best_similarity = best_scores.fused if best_scores is not None else 0.0
        tier = self._tier(best_similarity)

        details = {
            "mode": "identification" if owner_id is None else "verification",
            "n_records": len(records),
            "n_compared": n_compared,
            "n_skipped": n_skipped,
            "accept_threshold": self.accept_threshold,
            "high_confidence_threshold": self.high_confidence_threshold,
        }
        if best_scores is not None:
            details["best_scores"] = best_scores.as_dict()
            details["best_owner_id"] = best_owner

        if tier is ConfidenceTier.NONE:
            logger.info(
                f"No match: best similarity {best_similarity:.4f} over {n_compared} record(s)"
            )
            return MatchResult(
                candidate_owner_id=None,
                fused_similarity=best_similarity,
                confidence_tier=tier,
                details=details,
            )

        logger.info(f"Matched owner {best_owner}: similarity={best_similarity:.4f}, tier={tier.value}")
        return MatchResult(
            candidate_owner_id=best_owner,
            fused_similarity=best_similarity,
            confidence_tier=tier,
            details=details,
        )

    def match_samples(
        self,
        samples: Sequence[CapturedSample],
        owner_id: Optional[str] = None,
    ) -> MatchResult:
        """
        Match a login attempt's captured samples as one probe.

        Valid samples are normalized and averaged, weighted by their quality
        score, and the re-normalized mean is matched.

        Raises:
            InvalidEmbeddingError: If no sample passes validation.
        """
        vectors: List[np.ndarray] = []
        weights: List[float] = []
        first_reason = None

        for sample in samples:
            check = self.quality_validator.validate(sample.embedding)
            if not check.valid:
                first_reason = first_reason or check.reason
                logger.warning(f"Ignoring {sample.capture_type.value} sample: {check.reason}")
                continue
            vectors.append(l2_normalize(sample.embedding))
            weights.append(max(sample.quality_score, 1e-3))

        if not vectors:
            raise InvalidEmbeddingError(first_reason or "no samples")

        weights_arr = np.asarray(weights, dtype=np.float64)
        weights_arr /= weights_arr.sum()
        aggregated = (np.asarray(vectors) * weights_arr[:, np.newaxis]).sum(axis=0)

        return self.match(aggregated, owner_id=owner_id)

    def _tier(self, similarity: float) -> ConfidenceTier:
        if similarity >= self.high_confidence_threshold:
            return ConfidenceTier.HIGH
        if similarity >= self.accept_threshold:
            return ConfidenceTier.MEDIUM
        return ConfidenceTier.NONE


def get_matching_engine(
    store: Optional[GalleryStore] = None,
    config: Optional[Dict[str, Any]] = None,
) -> MatchingEngine:
    """
    Factory function for a MatchingEngine wired to config.yaml.

    Args:
        store: Gallery store (the shared singleton if None).
        config: "matching" section (loaded from config.yaml if None).
    """
    from faceauth.config import get_optional_section
    from faceauth.gallery_store import get_gallery_store
    from faceauth.quality_validator import get_quality_validator

    if store is None:
        store = get_gallery_store()
    if config is None:
        config = get_optional_section("matching")

    return MatchingEngine(store, get_quality_validator(), config)
