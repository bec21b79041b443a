"""
Enrollment and Challenge API Routes

This module provides:
- REST endpoint for enrollment from already-captured samples
- WebSocket endpoint that runs the liveness challenge frame by frame and
  then enrolls the owner (mode=enroll) or verifies them (mode=login)

The WebSocket endpoint is the primary way to enroll, as it gates the stored
samples behind the smile / nod / head-raise challenges and gives real-time
feedback on face framing and challenge progress.
"""

import base64
import time
import logging
import numpy as np
import cv2
from typing import Any, List, Optional, Tuple

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, HTTPException

from api.routes.authentication import build_auth_response, log_invalid_probe, log_match
from api.schemas import (
    EnrollRequest,
    EnrollResponse,
    RejectedSampleSchema,
    ChallengeStatusResponse,
    CaptureResultResponse,
    ChallengeCompleteResponse,
    ErrorResponse,
)
from faceauth.config import get_optional_section
from faceauth.enrollment import EnrollmentError, EnrollmentResult, get_enrollment_pipeline
from faceauth.gallery_store import get_gallery_store
from faceauth.liveness import ChallengeEngine, ChallengeState, CaptureOutcome, FrameResult
from faceauth.liveness.challenge_engine import ERROR_ABORTED, ERROR_TIMEOUT
from faceauth.matching import MatchResult, get_matching_engine
from faceauth.oracles import EmbeddingOracle, FrameReading, LandmarkOracle
from faceauth.quality_validator import InvalidEmbeddingError, get_quality_validator
from faceauth.samples import CapturedSample

# Setup logging
logger = logging.getLogger(__name__)

# Create routers
router = APIRouter(prefix="/ws", tags=["enrollment"])
rest_router = APIRouter(tags=["enrollment"])

MODE_ENROLL = "enroll"
MODE_LOGIN = "login"


def build_enroll_response(result: EnrollmentResult) -> EnrollResponse:
    """Convert an EnrollmentResult into the API response model."""
    return EnrollResponse(
        owner_id=result.owner_id,
        accepted=result.accepted,
        rejected=[
            RejectedSampleSchema(type=r.capture_type, reason=r.reason)
            for r in result.rejected
        ],
        gallery_replaced=result.gallery_replaced,
    )


@rest_router.post("/enroll/{owner_id}", response_model=EnrollResponse)
async def enroll(owner_id: str, request: EnrollRequest):
    """
    Enroll (or re-enroll) an owner from captured samples.

    Each sample is validated independently. If fewer than two survive, the
    request fails with 422 and the owner's previous gallery is left as is.

    Args:
        owner_id: Owner being enrolled.
        request: Samples with capture type, embedding and reported quality.

    Returns:
        EnrollResponse with accepted count and per-sample rejections.
    """
    samples = [
        CapturedSample(capture_type=s.type, embedding=s.embedding, quality_score=s.quality)
        for s in request.samples
    ]

    pipeline = get_enrollment_pipeline(get_gallery_store())

    try:
        result = pipeline.enroll(owner_id, samples)
    except EnrollmentError as e:
        logger.warning(f"Enrollment rejected for {owner_id}: {e}")
        raise HTTPException(
            status_code=422,
            detail={
                "message": str(e),
                "accepted": e.result.accepted,
                "rejected": [
                    {"type": r.capture_type.value, "reason": r.reason}
                    for r in e.rejected
                ],
            },
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return build_enroll_response(result)


def create_oracles() -> Tuple[LandmarkOracle, EmbeddingOracle]:
    """
    Build the landmark and embedding oracles for a challenge session.

    Imported lazily so the REST API works without the vision stack.

    Raises:
        ImportError: If mediapipe or face_recognition is not installed.
    """
    from faceauth.face_detector import get_landmark_oracle
    from faceauth.face_embedder import get_face_embedder

    return get_landmark_oracle(), get_face_embedder()


def decode_frame(frame_b64: str) -> Optional[np.ndarray]:
    """
    Decode a base64-encoded JPEG image to numpy array.

    Returns:
        BGR numpy array or None if decoding fails.
    """
    try:
        img_bytes = base64.b64decode(frame_b64, validate=True)
    except ValueError as e:
        logger.warning(f"Failed to decode frame: {e}")
        return None

    np_arr = np.frombuffer(img_bytes, np.uint8)
    if np_arr.size == 0:
        return None
    return cv2.imdecode(np_arr, cv2.IMREAD_COLOR)


class ChallengeSession:
    """
    Manages state for a single challenge session.

    This class tracks:
    - The challenge engine and its oracles
    - The most recent frame and landmarks (source of face crops)
    - The final enrollment or match result

    Attributes:
        owner_id: Owner being enrolled or verified.
        mode: "enroll" or "login".
        engine: ChallengeEngine driving the liveness sequence.
        start_time: Session start timestamp.
    """

    def __init__(
        self,
        owner_id: str,
        mode: str,
        landmark_oracle: LandmarkOracle,
        embedding_oracle: EmbeddingOracle,
    ):
        self.owner_id = owner_id
        self.mode = mode
        self.start_time = time.time()

        self.landmark_oracle = landmark_oracle
        self.face_padding = get_optional_section("face_detection").get("face_padding", 0.3)
        self.store = get_gallery_store()

        self._frame: Optional[np.ndarray] = None
        self._reading: Optional[FrameReading] = None
        self._closed = False

        self.engine = ChallengeEngine(
            embedding_oracle,
            quality_validator=get_quality_validator(),
            config=get_optional_section("challenge"),
            capture_fn=self._current_face_region,
            submit_fn=self._submit,
            release_fn=self._release,
        )

        logger.info(f"Challenge session started for {owner_id} (mode={mode})")

    def process_frame(self, frame: np.ndarray, timestamp: float) -> FrameResult:
        """Detect landmarks on a decoded frame and feed them to the engine."""
        reading = self.landmark_oracle.detect(frame, timestamp)
        self._frame = frame
        self._reading = reading
        return self.engine.process_frame(reading, timestamp)

    def status_response(self) -> ChallengeStatusResponse:
        ctx = self.engine.context
        return ChallengeStatusResponse(
            state=ctx.state.value,
            face_detected=self._reading is not None,
            face_quality=ctx.face_quality.value,
            evidence=ctx.evidence.value,
            evidence_target=ctx.evidence.target,
            captured=[t.value for t in ctx.captured_types],
            error=ctx.error,
        )

    def capture_response(self, outcome: CaptureOutcome) -> CaptureResultResponse:
        return CaptureResultResponse(
            capture_type=outcome.capture_type.value,
            success=outcome.success,
            retryable=outcome.retryable,
            error=outcome.error,
            quality_score=outcome.sample.quality_score if outcome.sample else None,
            state=self.engine.state.value,
        )

    def complete_response(self) -> ChallengeCompleteResponse:
        """Final message once the engine reached Success."""
        if self.mode == MODE_ENROLL:
            result: EnrollmentResult = self.engine.submission_result
            return ChallengeCompleteResponse(
                mode=self.mode,
                success=True,
                owner_id=result.owner_id,
                enrollment=build_enroll_response(result),
            )

        match_result, processing_time = self.engine.submission_result
        auth = build_auth_response(match_result, processing_time)
        return ChallengeCompleteResponse(
            mode=self.mode,
            success=auth.is_match,
            owner_id=auth.owner_id,
            authentication=auth,
        )

    def failure_response(self) -> ErrorResponse:
        """Error message for a session that ended in Failed."""
        error = self.engine.error or "challenge failed"
        submission_error = self.engine.submission_error

        if error == ERROR_TIMEOUT:
            code = "TIMEOUT"
        elif error == ERROR_ABORTED:
            code = "ABORTED"
        elif isinstance(submission_error, EnrollmentError):
            code = "ENROLLMENT_FAILED"
        elif isinstance(submission_error, InvalidEmbeddingError):
            code = "INVALID_EMBEDDING"
        elif submission_error is not None:
            code = "SUBMISSION_FAILED"
        else:
            code = "CHALLENGE_FAILED"

        return ErrorResponse(error=error, code=code)

    def _current_face_region(self) -> Optional[np.ndarray]:
        if self._frame is None or self._reading is None:
            return None
        return self.landmark_oracle.crop_face_region(self._frame, self._reading, self.face_padding)

    def _submit(self, samples: List[CapturedSample]) -> Any:
        if self.mode == MODE_ENROLL:
            pipeline = get_enrollment_pipeline(self.store)
            return pipeline.enroll(self.owner_id, samples)

        start_time = time.time()
        engine = get_matching_engine(self.store)
        try:
            result: MatchResult = engine.match_samples(samples, owner_id=self.owner_id)
        except InvalidEmbeddingError as e:
            log_invalid_probe(self.store, e, self.owner_id, time.time() - start_time)
            raise

        processing_time = time.time() - start_time
        log_match(self.store, result, self.owner_id, processing_time)
        return result, processing_time

    def _release(self) -> None:
        if not self._closed:
            self._closed = True
            self.landmark_oracle.close()

    def cleanup(self):
        """Clean up resources."""
        self._release()
        logger.info(
            f"Challenge session ended for {self.owner_id}: state={self.engine.state.value}, "
            f"duration={time.time() - self.start_time:.1f}s"
        )


@router.websocket("/challenge/{owner_id}")
async def websocket_challenge(websocket: WebSocket, owner_id: str, mode: str = MODE_ENROLL):
    """
    WebSocket endpoint for the real-time liveness challenge.

    Protocol:
        Client -> Server:
        {"type": "frame", "data": "<base64 JPEG>", "timestamp": float (optional)}
        {"type": "capture", "timestamp": float (optional)}   # take the neutral sample while in awaiting_normal
        {"type": "retry"}     # start over after a failure
        {"type": "abort"}     # end the session

        Server -> Client:
        {"type": "challenge_status", "state": ..., "face_quality": ..., ...}
        {"type": "capture_result", "capture_type": ..., "success": ..., ...}
        {"type": "challenge_complete", "mode": ..., "success": ..., ...}
        {"type": "error", "error": ..., "code": ...}

    Args:
        websocket: The WebSocket connection.
        owner_id: Owner being enrolled (mode=enroll) or verified (mode=login).
        mode: "enroll" or "login".
    """
    await websocket.accept()

    session: Optional[ChallengeSession] = None

    try:
        if mode not in (MODE_ENROLL, MODE_LOGIN):
            await websocket.send_json(
                ErrorResponse(error=f"Unknown mode '{mode}'", code="INVALID_MODE").model_dump()
            )
            return

        if mode == MODE_LOGIN and not get_gallery_store().owner_exists(owner_id):
            await websocket.send_json(
                ErrorResponse(error=f"User {owner_id} not found", code="OWNER_NOT_FOUND").model_dump()
            )
            return

        try:
            landmark_oracle, embedding_oracle = create_oracles()
        except ImportError as e:
            logger.error(f"Vision oracles unavailable: {e}")
            await websocket.send_json(
                ErrorResponse(error=str(e), code="ORACLE_UNAVAILABLE").model_dump()
            )
            return

        session = ChallengeSession(owner_id, mode, landmark_oracle, embedding_oracle)

        while True:
            try:
                message = await websocket.receive_json()
            except (ValueError, KeyError) as e:
                logger.warning(f"Failed to receive message: {e}")
                await websocket.send_json(
                    ErrorResponse(error="Malformed message", code="INVALID_MESSAGE").model_dump()
                )
                continue

            message_type = message.get("type")

            if message_type == "abort":
                session.engine.abort()
                await websocket.send_json(session.failure_response().model_dump())
                break

            if message_type == "retry":
                try:
                    session.engine.retry()
                except RuntimeError as e:
                    await websocket.send_json(
                        ErrorResponse(error=str(e), code="RETRY_UNAVAILABLE").model_dump()
                    )
                    continue
                await websocket.send_json(session.status_response().model_dump())
                continue

            if message_type == "capture":
                outcome = session.engine.trigger_capture(message.get("timestamp"))
                await websocket.send_json(session.capture_response(outcome).model_dump())

            elif message_type == "frame":
                frame = decode_frame(message.get("data", ""))
                if frame is None:
                    await websocket.send_json(
                        ErrorResponse(error="Invalid image data", code="INVALID_IMAGE").model_dump()
                    )
                    continue

                timestamp = message.get("timestamp")
                if timestamp is None:
                    timestamp = time.monotonic()

                result = session.process_frame(frame, float(timestamp))
                if not result.admitted:
                    continue

                await websocket.send_json(session.status_response().model_dump())
                if result.capture is not None and not result.capture.duplicate:
                    await websocket.send_json(session.capture_response(result.capture).model_dump())

            else:
                logger.warning(f"Unknown message type: {message_type}")
                continue

            state = session.engine.state
            if state is ChallengeState.SUCCESS:
                await websocket.send_json(session.complete_response().model_dump())
                logger.info(f"Challenge complete for {owner_id} (mode={mode})")
                break

            if state is ChallengeState.FAILED:
                # Client may send {"type": "retry"} to start over
                await websocket.send_json(session.failure_response().model_dump())

    except WebSocketDisconnect:
        logger.info(f"Client disconnected during challenge: {owner_id}")
        if session:
            session.engine.abort()

    except Exception as e:
        logger.error(f"Unexpected error during challenge: {e}", exc_info=True)
        try:
            await websocket.send_json(
                ErrorResponse(error=f"Unexpected error: {str(e)}", code="UNEXPECTED_ERROR").model_dump()
            )
        except (RuntimeError, WebSocketDisconnect):
            pass

    finally:
        # Cleanup
        if session:
            session.cleanup()
        try:
            await websocket.close()
        except (RuntimeError, WebSocketDisconnect):
            pass
