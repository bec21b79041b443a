"""
Enrollment Pipeline

Turns the samples captured during a liveness challenge into an owner's
gallery. Every sample is re-validated independently; at least
min_accepted_samples (2) must survive, otherwise nothing is written and the
previous gallery stays exactly as it was. On success the old gallery is
replaced in one transaction.

The stored quality score is recomputed from each embedding, floor-bounded by
the quality the client reported.

Usage:
    from faceauth.enrollment import EnrollmentPipeline

    pipeline = EnrollmentPipeline(store, validator)
    result = pipeline.enroll("alice", samples)
    print(result.accepted, result.rejected)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from faceauth.gallery_store import GalleryStore, StoredEmbeddingRecord
from faceauth.quality_validator import QualityValidator, compute_quality_score
from faceauth.samples import CapturedSample, CaptureType

logger = logging.getLogger(__name__)

REASON_DUPLICATE_TYPE = "duplicate type"


@dataclass
class RejectedSample:
    """A sample left out of the gallery and why."""

    capture_type: CaptureType
    reason: str
    index: int


@dataclass
class EnrollmentResult:
    """
    Outcome of an enrollment.

    Attributes:
        owner_id: Owner whose gallery was processed.
        accepted: Number of samples that passed validation.
        rejected: Samples that failed validation, with reasons.
        gallery_replaced: True if the stored gallery was replaced.
    """

    owner_id: str
    accepted: int
    rejected: List[RejectedSample] = field(default_factory=list)
    gallery_replaced: bool = False


class EnrollmentError(ValueError):
    """Enrollment rejected as a whole; the existing gallery was not modified."""

    def __init__(self, message: str, result: EnrollmentResult):
        super().__init__(message)
        self.result = result

    @property
    def rejected(self) -> List[RejectedSample]:
        return self.result.rejected


class EnrollmentPipeline:
    """
    Validates captured samples and atomically replaces an owner's gallery.

    Args:
        store: Persistent gallery store.
        quality_validator: Validator applied to every sample.
        config: "enrollment" section:
            - min_accepted_samples: Minimum valid samples (default: 2)
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
        self.min_accepted_samples = config.get("min_accepted_samples", 2)

    def enroll(self, owner_id: str, samples: Sequence[CapturedSample]) -> EnrollmentResult:
        """
        Validate samples and replace the owner's gallery with the accepted ones.

        Args:
            owner_id: Owner being enrolled.
            samples: Samples from one challenge attempt.

        Returns:
            EnrollmentResult with counts and per-sample rejection reasons.

        Raises:
            ValueError: If owner_id is empty.
            EnrollmentError: If fewer than min_accepted_samples are valid.
        """
        if not owner_id or not owner_id.strip():
            raise ValueError("owner_id must be a non-empty string")

        accepted: List[StoredEmbeddingRecord] = []
        rejected: List[RejectedSample] = []
        seen_types = set()

        for index, sample in enumerate(samples):
            if sample.capture_type in seen_types:
                rejected.append(RejectedSample(sample.capture_type, REASON_DUPLICATE_TYPE, index))
                continue

            check = self.quality_validator.validate(sample.embedding)
            if not check.valid:
                rejected.append(RejectedSample(sample.capture_type, check.reason, index))
                continue

            seen_types.add(sample.capture_type)
            accepted.append(
                StoredEmbeddingRecord(
                    owner_id=owner_id,
                    embedding=sample.embedding,
                    capture_type=sample.capture_type,
                    quality_score=compute_quality_score(sample.embedding, sample.quality_score),
                )
            )

        for rejection in rejected:
            logger.warning(
                f"Rejected {rejection.capture_type.value} sample #{rejection.index} "
                f"for {owner_id}: {rejection.reason}"
            )

        if len(accepted) < self.min_accepted_samples:
            result = EnrollmentResult(
                owner_id=owner_id,
                accepted=len(accepted),
                rejected=rejected,
                gallery_replaced=False,
            )
            raise EnrollmentError(
                f"Only {len(accepted)} of {len(samples)} samples are valid, "
                f"need at least {self.min_accepted_samples}",
                result,
            )

        self.store.replace_gallery(owner_id, accepted)
        logger.info(
            f"Enrolled {owner_id}: {len(accepted)} accepted, {len(rejected)} rejected"
        )

        return EnrollmentResult(
            owner_id=owner_id,
            accepted=len(accepted),
            rejected=rejected,
            gallery_replaced=True,
        )


def get_enrollment_pipeline(
    store: Optional[GalleryStore] = None,
    config: Optional[Dict[str, Any]] = None,
) -> EnrollmentPipeline:
    """
    Factory function for an EnrollmentPipeline wired to config.yaml.

    Args:
        store: Gallery store (the shared singleton if None).
        config: "enrollment" section (loaded from config.yaml if None).
    """
    from faceauth.config import get_optional_section
    from faceauth.gallery_store import get_gallery_store
    from faceauth.quality_validator import get_quality_validator

    if store is None:
        store = get_gallery_store()
    if config is None:
        config = get_optional_section("enrollment")

    return EnrollmentPipeline(store, get_quality_validator(), config)
