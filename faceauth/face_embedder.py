"""
Face Embedding Extractor using face_recognition (dlib)

Implements the EmbeddingOracle interface with dlib's ResNet face encoder,
as exposed by the face_recognition package. It produces 128-dimensional
identity vectors, the dimension the quality validator and the gallery
expect.

face_recognition is an optional dependency (pip install ".[embedding]").
Constructing a FaceEmbedder without it raises ImportError.

Usage:
    from faceauth.face_embedder import FaceEmbedder

    embedder = FaceEmbedder(config)
    embedding = embedder.embed(face_crop_bgr)  # (128,) or None
"""

import logging
from typing import Optional

import cv2
import numpy as np

from faceauth.oracles import EmbeddingOracle

logger = logging.getLogger(__name__)

# Backend availability flag
_FACE_RECOGNITION_AVAILABLE = False

try:
    import face_recognition
    _FACE_RECOGNITION_AVAILABLE = True
except ImportError:
    pass


class FaceEmbedder(EmbeddingOracle):
    """
    Extract 128-d identity embeddings from face crops.

    The crop is first encoded assuming the face fills the whole image. If
    dlib cannot encode it that way, the crop is padded and the face is
    located automatically.

    Args:
        config: Dictionary with keys:
            - embedding_dim: Expected embedding dimension (default 128)
            - num_jitters: Re-sampling count per encoding (default 1)
            - model: Landmark model for alignment, "small" or "large" (default "small")
            - pad_ratio: Padding added for the fallback detection pass (default 0.5)
    """

    def __init__(self, config: Optional[dict] = None):
        if config is None:
            config = {}

        if not _FACE_RECOGNITION_AVAILABLE:
            raise ImportError(
                "face_recognition not installed. Run: pip install face_recognition"
            )

        self.embedding_dim = config.get("embedding_dim", 128)
        self.num_jitters = config.get("num_jitters", 1)
        self.model = config.get("model", "small")
        self.pad_ratio = config.get("pad_ratio", 0.5)

        logger.info(
            f"FaceEmbedder ready (backend=face_recognition, model={self.model}, "
            f"jitters={self.num_jitters})"
        )

    def embed(self, image_region: np.ndarray) -> Optional[np.ndarray]:
        """
        Extract an identity embedding from a face crop.

        Args:
            image_region: Face crop in BGR format (H, W, 3), uint8.

        Returns:
            Float64 ndarray of shape (128,), or None if no face could be encoded.
        """
        if image_region is None or image_region.size == 0:
            return None

        rgb = cv2.cvtColor(image_region, cv2.COLOR_BGR2RGB)
        h, w = rgb.shape[:2]

        # face_recognition locations are (top, right, bottom, left)
        encodings = face_recognition.face_encodings(
            rgb,
            known_face_locations=[(0, w, h, 0)],
            num_jitters=self.num_jitters,
            model=self.model,
        )

        if not encodings:
            logger.warning("Full-crop encoding failed, retrying with detection on padded input")
            padded = self._pad_image(rgb, ratio=self.pad_ratio)
            encodings = face_recognition.face_encodings(
                padded, num_jitters=self.num_jitters, model=self.model
            )

        if not encodings:
            return None

        embedding = np.asarray(encodings[0], dtype=np.float64)
        if embedding.shape[0] != self.embedding_dim:
            logger.error(
                f"Embedding dimension mismatch: got {embedding.shape[0]}, "
                f"expected {self.embedding_dim}"
            )
            return None

        return embedding

    @staticmethod
    def _pad_image(image: np.ndarray, ratio: float = 0.2) -> np.ndarray:
        """Add mean-colored padding around the image to help detection on tight crops."""
        h, w = image.shape[:2]
        pad_h = int(h * ratio)
        pad_w = int(w * ratio)

        mean_color = image.mean(axis=(0, 1)).astype(np.uint8)
        padded = np.full(
            (h + 2 * pad_h, w + 2 * pad_w, 3),
            mean_color,
            dtype=np.uint8,
        )
        padded[pad_h:pad_h + h, pad_w:pad_w + w] = image
        return padded


def get_face_embedder(config: Optional[dict] = None) -> FaceEmbedder:
    """Create a FaceEmbedder from the "embedding" config section."""
    if config is None:
        from faceauth.config import get_optional_section
        config = get_optional_section("embedding")
    return FaceEmbedder(config)
