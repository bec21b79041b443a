"""
Face Landmark Detection Module

Implements the LandmarkOracle interface with the MediaPipe Face Landmarker
(Tasks API). For each frame it returns the 478 face mesh landmarks in
normalized image coordinates together with the 52 ARKit-style blendshape
scores (mouthSmileLeft, eyeBlinkRight, ...) that the liveness challenges
read.

The landmarker runs in VIDEO mode by default, which tracks the face between
frames and requires strictly increasing timestamps.

Usage:
    from faceauth.face_detector import MediaPipeLandmarkOracle

    oracle = MediaPipeLandmarkOracle(config)
    reading = oracle.detect(frame, timestamp)
    if reading:
        face_crop = oracle.crop_face_region(frame, reading, padding=0.3)
"""

import logging
import urllib.request
from pathlib import Path
from typing import Any, Dict, Optional

import cv2
import numpy as np

# MediaPipe Tasks API imports
import mediapipe as mp
from mediapipe.tasks import python as mp_tasks
from mediapipe.tasks.python import vision

from faceauth.oracles import FrameReading, LandmarkOracle

logger = logging.getLogger(__name__)

# URL for the face landmarker model (blendshape-capable bundle)
MODEL_URL = "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/1/face_landmarker.task"
MODEL_FILENAME = "face_landmarker.task"


def get_model_path(models_dir: Optional[str] = None) -> str:
    """
    Get the path to the MediaPipe face landmarker model file.
    Downloads the model if it doesn't exist locally.

    Args:
        models_dir: Directory for model files. Defaults to storage.models_dir
                    from config, relative to the project root.

    Returns:
        Path to the model file.
    """
    if models_dir is None:
        from faceauth.config import get_project_root, get_storage_config

        models_dir = get_project_root() / get_storage_config().get("models_dir", "storage/models")

    model_dir = Path(models_dir)
    model_dir.mkdir(parents=True, exist_ok=True)
    model_path = model_dir / MODEL_FILENAME

    if not model_path.exists():
        logger.info(f"Downloading MediaPipe face landmarker model from {MODEL_URL}")
        urllib.request.urlretrieve(MODEL_URL, str(model_path))
        logger.info(f"Model saved to {model_path}")

    return str(model_path)


class MediaPipeLandmarkOracle(LandmarkOracle):
    """
    Landmark oracle backed by the MediaPipe Face Landmarker.

    Attributes:
        config: Configuration dictionary with detection parameters.
        landmarker: MediaPipe FaceLandmarker object.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the oracle.

        Args:
            config: Configuration dictionary containing:
                - min_detection_confidence: Minimum confidence for detection (0-1)
                - min_tracking_confidence: Minimum confidence for tracking (0-1)
                - running_mode: "video" (default) or "image"
                - models_dir: Where the .task model is stored/downloaded
        """
        if config is None:
            config = {}
        self.config = config

        min_detection_conf = config.get("min_detection_confidence", 0.5)
        min_tracking_conf = config.get("min_tracking_confidence", 0.5)
        self.video_mode = config.get("running_mode", "video") == "video"
        self._last_timestamp_ms = -1

        model_path = get_model_path(config.get("models_dir"))

        options = vision.FaceLandmarkerOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=model_path),
            running_mode=vision.RunningMode.VIDEO if self.video_mode else vision.RunningMode.IMAGE,
            num_faces=1,
            min_face_detection_confidence=min_detection_conf,
            min_face_presence_confidence=min_detection_conf,
            min_tracking_confidence=min_tracking_conf,
            output_face_blendshapes=True,  # smile scores
            output_facial_transformation_matrixes=False,
        )
        self.landmarker = vision.FaceLandmarker.create_from_options(options)

        logger.info(f"MediaPipeLandmarkOracle initialized (video_mode={self.video_mode})")

    def detect(self, frame: np.ndarray, timestamp: float) -> Optional[FrameReading]:
        """
        Detect the face and read its landmarks and blendshapes.

        Args:
            frame: Input image as BGR numpy array with shape (H, W, 3).
            timestamp: Frame time in seconds (must increase in video mode).

        Returns:
            FrameReading, or None if no face is detected.
        """
        # MediaPipe expects RGB, OpenCV delivers BGR
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)

        if self.video_mode:
            # detect_for_video rejects non-increasing timestamps
            timestamp_ms = max(int(timestamp * 1000), self._last_timestamp_ms + 1)
            self._last_timestamp_ms = timestamp_ms
            results = self.landmarker.detect_for_video(mp_image, timestamp_ms)
        else:
            results = self.landmarker.detect(mp_image)

        if not results.face_landmarks:
            return None

        face_landmarks = results.face_landmarks[0]
        points = np.array(
            [[lm.x, lm.y, lm.z] for lm in face_landmarks],
            dtype=np.float32,
        )

        expressions = {}
        if results.face_blendshapes:
            for category in results.face_blendshapes[0]:
                expressions[category.category_name] = float(category.score)

        return FrameReading(points=points, expressions=expressions)

    def close(self):
        """Clean up MediaPipe resources."""
        if hasattr(self, "landmarker"):
            self.landmarker.close()
            del self.landmarker

    def __del__(self):
        """Clean up MediaPipe resources on deletion."""
        self.close()


def get_landmark_oracle(config: Optional[Dict[str, Any]] = None) -> MediaPipeLandmarkOracle:
    """Create a MediaPipeLandmarkOracle from the "face_detection" config section."""
    if config is None:
        from faceauth.config import get_optional_section
        config = get_optional_section("face_detection")
    return MediaPipeLandmarkOracle(config)
