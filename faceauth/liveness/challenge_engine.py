"""
Liveness Challenge Engine

Drives one capture session through the liveness sequence:

    Stabilizing -> AwaitingNormal -> AwaitingSmile -> AwaitingNod
        -> AwaitingHeadRaise -> Processing -> Submitting -> Success | Failed

Each admitted frame's FrameReading is folded into a ChallengeContext by pure
transition functions (evaluate_frame, record_capture). The ChallengeEngine
wraps a context and performs the side effects: frame throttling, calling the
capture function registered for a milestone, the embedding oracle and the
quality validator, and handing the finished sample set to the submission
callback (normally EnrollmentPipeline.enroll or MatchingEngine.match_samples).

Robustness rules:
- Smile evidence decays by one on a non-smiling frame instead of resetting.
- Nod and head-raise need a directional pattern over a window of nose
  positions, then wait a fixed number of settle frames before capturing.
- A failed capture keeps the state and the evidence counters.
- A capture nearly identical to an earlier one is rejected as a
  recoverable failure.
- Once four samples exist no further frame is evaluated.

Usage:
    from faceauth.liveness import ChallengeEngine

    engine = ChallengeEngine(embedding_oracle, config=config,
                             capture_fn=lambda: current_face_crop,
                             submit_fn=lambda samples: pipeline.enroll(owner_id, samples))
    for frame, ts in stream:
        engine.process_frame(landmark_oracle.detect(frame, ts), ts)
        if engine.state is ChallengeState.AWAITING_NORMAL and user_pressed_capture:
            engine.trigger_capture()
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from faceauth.liveness.evidence import EvidenceCounter, FrameThrottle, PositionHistory
from faceauth.liveness.signals import (
    FaceQuality,
    evaluate_face_quality,
    is_head_raised,
    is_nodding,
    is_smiling,
    nose_position,
)
from faceauth.matching.similarity import cosine_similarity, l2_normalize
from faceauth.oracles import EmbeddingOracle, FrameReading
from faceauth.quality_validator import QualityValidator, compute_quality_score
from faceauth.samples import CAPTURE_SEQUENCE, CapturedSample, CaptureType

logger = logging.getLogger(__name__)


class ChallengeState(str, Enum):
    STABILIZING = "stabilizing"
    AWAITING_NORMAL = "awaiting_normal"
    AWAITING_SMILE = "awaiting_smile"
    AWAITING_NOD = "awaiting_nod"
    AWAITING_HEAD_RAISE = "awaiting_head_raise"
    PROCESSING = "processing"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    FAILED = "failed"


# States in which frames are evaluated
INTERACTIVE_STATES = (
    ChallengeState.STABILIZING,
    ChallengeState.AWAITING_NORMAL,
    ChallengeState.AWAITING_SMILE,
    ChallengeState.AWAITING_NOD,
    ChallengeState.AWAITING_HEAD_RAISE,
)

STATE_CAPTURE_TYPE = {
    ChallengeState.AWAITING_NORMAL: CaptureType.NORMAL,
    ChallengeState.AWAITING_SMILE: CaptureType.SMILE,
    ChallengeState.AWAITING_NOD: CaptureType.NOD,
    ChallengeState.AWAITING_HEAD_RAISE: CaptureType.HEAD_RAISE,
}

NEXT_STATE = {
    CaptureType.NORMAL: ChallengeState.AWAITING_SMILE,
    CaptureType.SMILE: ChallengeState.AWAITING_NOD,
    CaptureType.NOD: ChallengeState.AWAITING_HEAD_RAISE,
    CaptureType.HEAD_RAISE: ChallengeState.PROCESSING,
}

REQUIRED_SAMPLES = len(CAPTURE_SEQUENCE)

ERROR_ABORTED = "aborted"
ERROR_TIMEOUT = "timeout"


@dataclass
class ChallengeSettings:
    """Thresholds and targets for one challenge session (see the "challenge" config section)."""

    max_fps: float = 15.0
    stabilization_frames: int = 5
    min_face_width: float = 0.18
    min_face_height: float = 0.18
    medium_face_size: float = 0.1
    nose_center_range: Tuple[float, float] = (0.3, 0.7)
    smile_threshold: float = 0.3
    smile_frames: int = 15
    history_size: int = 15
    motion_window: int = 10
    nod_range_threshold: float = 0.05
    head_raise_threshold: float = 0.05
    motion_frames: int = 8
    settle_frames: int = 10
    state_timeout_sec: Optional[float] = 60.0
    max_capture_similarity: Optional[float] = 0.92

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "ChallengeSettings":
        if config is None:
            config = {}
        defaults = cls()
        values = {}
        for name in cls.__dataclass_fields__:
            values[name] = config.get(name, getattr(defaults, name))
        values["nose_center_range"] = tuple(values["nose_center_range"])
        return cls(**values)

    def evidence_target(self, state: ChallengeState) -> int:
        if state is ChallengeState.AWAITING_SMILE:
            return self.smile_frames
        if state in (ChallengeState.AWAITING_NOD, ChallengeState.AWAITING_HEAD_RAISE):
            return self.motion_frames
        return 1


@dataclass
class ChallengeContext:
    """
    Mutable state of a single challenge session.

    Owned by exactly one ChallengeEngine; the transition functions below are
    the only code that changes it.
    """

    state: ChallengeState
    stabilization: EvidenceCounter
    evidence: EvidenceCounter
    history: PositionHistory
    gesture_complete: bool = False
    settle_count: int = 0
    face_quality: FaceQuality = FaceQuality.LOW
    samples: List[CapturedSample] = field(default_factory=list)
    state_entered_at: Optional[float] = None
    error: Optional[str] = None
    frames_evaluated: int = 0

    @property
    def captured_types(self) -> List[CaptureType]:
        return [s.capture_type for s in self.samples]


@dataclass
class CaptureOutcome:
    """
    Result of one capture attempt.

    A failed attempt with retryable=True leaves the session where it was;
    the user repeats the gesture (or presses capture again).
    """

    capture_type: CaptureType
    success: bool
    retryable: bool = False
    error: Optional[str] = None
    duplicate: bool = False
    sample: Optional[CapturedSample] = None


@dataclass
class FrameResult:
    """What happened to one frame handed to ChallengeEngine.process_frame."""

    admitted: bool
    state: ChallengeState
    face_quality: FaceQuality
    progress: Dict[str, Any] = field(default_factory=dict)
    capture: Optional[CaptureOutcome] = None


# ============================================================
# Transition functions
# ============================================================

def new_context(settings: ChallengeSettings) -> ChallengeContext:
    """Create a fresh context in the Stabilizing state."""
    return ChallengeContext(
        state=ChallengeState.STABILIZING,
        stabilization=EvidenceCounter(settings.stabilization_frames),
        evidence=EvidenceCounter(1),
        history=PositionHistory(settings.history_size),
    )


def enter_state(
    ctx: ChallengeContext,
    state: ChallengeState,
    settings: ChallengeSettings,
    timestamp: Optional[float] = None,
) -> None:
    """Move to a new state, clearing per-challenge evidence and motion history."""
    ctx.state = state
    ctx.evidence = EvidenceCounter(settings.evidence_target(state))
    ctx.history.clear()
    ctx.gesture_complete = False
    ctx.settle_count = 0
    ctx.state_entered_at = timestamp


def evaluate_frame(
    ctx: ChallengeContext,
    reading: Optional[FrameReading],
    settings: ChallengeSettings,
    timestamp: Optional[float] = None,
) -> Optional[CaptureType]:
    """
    Fold one frame into the context.

    Returns:
        The capture type to capture automatically now, or None.
    """
    if ctx.state not in INTERACTIVE_STATES:
        return None

    ctx.frames_evaluated += 1
    ctx.face_quality = evaluate_face_quality(
        reading,
        min_width=settings.min_face_width,
        min_height=settings.min_face_height,
        medium_size=settings.medium_face_size,
        center_range=settings.nose_center_range,
    )

    if ctx.state is ChallengeState.STABILIZING:
        if ctx.face_quality is FaceQuality.HIGH:
            ctx.stabilization.increment()
            if ctx.stabilization.reached:
                ctx.stabilization.reset()
                enter_state(ctx, ChallengeState.AWAITING_NORMAL, settings, timestamp)
        else:
            ctx.stabilization.decay_or_reset(reset=True)
        return None

    # Lost face: challenge evidence starts over, settle countdown pauses
    if reading is None:
        ctx.evidence.decay_or_reset(reset=True)
        return None

    if ctx.state is ChallengeState.AWAITING_NORMAL:
        # Normal capture only happens on an explicit trigger
        return None

    if ctx.state is ChallengeState.AWAITING_SMILE:
        if is_smiling(reading, settings.smile_threshold):
            ctx.evidence.increment()
        else:
            ctx.evidence.decay_or_reset()
        return CaptureType.SMILE if ctx.evidence.reached else None

    # AwaitingNod / AwaitingHeadRaise
    position = nose_position(reading)
    if position is None:
        return None
    ctx.history.append(position)

    if not ctx.gesture_complete:
        positions = ctx.history.recent(settings.motion_window)
        if ctx.state is ChallengeState.AWAITING_NOD:
            detected = is_nodding(positions, settings.motion_window, settings.nod_range_threshold)
        else:
            detected = is_head_raised(positions, settings.motion_window, settings.head_raise_threshold)

        if detected:
            ctx.evidence.increment()
            if ctx.evidence.reached:
                ctx.gesture_complete = True
                ctx.settle_count = 0
        return None

    ctx.settle_count += 1
    if ctx.settle_count >= settings.settle_frames:
        return STATE_CAPTURE_TYPE[ctx.state]
    return None


def record_capture(
    ctx: ChallengeContext,
    sample: CapturedSample,
    settings: ChallengeSettings,
    timestamp: Optional[float] = None,
) -> bool:
    """
    Append a sample and advance to the next challenge.

    Returns:
        False if a sample of this type already exists (nothing changes).
    """
    if sample.capture_type in ctx.captured_types:
        return False

    ctx.samples.append(sample)
    ctx.error = None
    enter_state(ctx, NEXT_STATE[sample.capture_type], settings, timestamp)

    if len(ctx.samples) >= REQUIRED_SAMPLES:
        ctx.state = ChallengeState.PROCESSING
    return True


def record_capture_failure(ctx: ChallengeContext, error: str) -> None:
    """Keep state and evidence; a motion gesture must be completed again to re-arm capture."""
    ctx.error = error
    ctx.gesture_complete = False
    ctx.settle_count = 0


# ============================================================
# Engine
# ============================================================

class ChallengeEngine:
    """
    Runs the liveness challenge for one session.

    Not thread-safe apart from abort(), which only sets flags and may be
    called from another thread or from inside a capture function.

    Attributes:
        settings: ChallengeSettings in use.
        submission_result: Value returned by submit_fn on success.
        submission_error: Exception raised by submit_fn on failure.
    """

    def __init__(
        self,
        embedding_oracle: EmbeddingOracle,
        quality_validator: Optional[QualityValidator] = None,
        config: Optional[Dict[str, Any]] = None,
        capture_fn: Optional[Callable[[], Optional[np.ndarray]]] = None,
        submit_fn: Optional[Callable[[List[CapturedSample]], Any]] = None,
        release_fn: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the engine.

        Args:
            embedding_oracle: Turns captured image regions into embeddings.
            quality_validator: Validates each new embedding (default validator if None).
            config: "challenge" config section, see ChallengeSettings.
            capture_fn: Default function returning the current face region,
                        used for milestones without a registered function.
            submit_fn: Receives the four samples once the sequence is complete.
            release_fn: Called once on abort to free the capture device.
            clock: Time source used when frames carry no timestamp.
        """
        self.settings = ChallengeSettings.from_config(config)
        self.embedding_oracle = embedding_oracle
        self.quality_validator = quality_validator or QualityValidator()
        self.submit_fn = submit_fn
        self.release_fn = release_fn
        self.clock = clock

        self._default_capture_fn = capture_fn
        self._capture_fns: Dict[CaptureType, Callable[[], Optional[np.ndarray]]] = {}
        self._throttle = FrameThrottle(self.settings.max_fps)
        self._last_frame_at: Optional[float] = None
        self._aborted = False
        self._released = False

        self.context = new_context(self.settings)
        self.submission_result: Any = None
        self.submission_error: Optional[BaseException] = None

        logger.info(
            f"ChallengeEngine initialized: stabilization={self.settings.stabilization_frames}, "
            f"smile={self.settings.smile_frames}, motion={self.settings.motion_frames}, "
            f"settle={self.settings.settle_frames}, timeout={self.settings.state_timeout_sec}"
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> ChallengeState:
        return self.context.state

    @property
    def samples(self) -> Tuple[CapturedSample, ...]:
        return tuple(self.context.samples)

    @property
    def error(self) -> Optional[str]:
        return self.context.error

    @property
    def aborted(self) -> bool:
        return self._aborted

    def progress(self) -> Dict[str, Any]:
        ctx = self.context
        return {
            "state": ctx.state.value,
            "stabilization": ctx.stabilization.value,
            "stabilization_target": ctx.stabilization.target,
            "evidence": ctx.evidence.value,
            "evidence_target": ctx.evidence.target,
            "gesture_complete": ctx.gesture_complete,
            "settle_count": ctx.settle_count,
            "captured": [t.value for t in ctx.captured_types],
            "required": REQUIRED_SAMPLES,
        }

    # ------------------------------------------------------------------
    # Capture trigger surface
    # ------------------------------------------------------------------

    def on_milestone(
        self,
        capture_type: CaptureType,
        capture_fn: Callable[[], Optional[np.ndarray]],
    ) -> None:
        """Register the function that supplies the image region for a milestone."""
        self._capture_fns[CaptureType(capture_type)] = capture_fn

    def process_frame(
        self,
        reading: Optional[FrameReading],
        timestamp: Optional[float] = None,
    ) -> FrameResult:
        """
        Evaluate one frame.

        Args:
            reading: Landmark oracle output, or None if no face was found.
            timestamp: Frame time in seconds (engine clock if None).

        Returns:
            FrameResult; admitted is False for throttled frames and for any
            frame arriving once the session has left the interactive states.
        """
        ctx = self.context
        if self._aborted or ctx.state not in INTERACTIVE_STATES:
            return self._frame_result(admitted=False)

        if timestamp is None:
            timestamp = self.clock()
        if not self._throttle.admit(timestamp):
            return self._frame_result(admitted=False)
        self._last_frame_at = timestamp

        if ctx.state_entered_at is None:
            ctx.state_entered_at = timestamp
        if self._timed_out(timestamp):
            logger.warning(f"Challenge timed out in state {ctx.state.value}")
            self._fail(ERROR_TIMEOUT)
            return self._frame_result(admitted=True)

        capture_type = evaluate_frame(ctx, reading, self.settings, timestamp)

        outcome = None
        if capture_type is not None:
            outcome = self._capture(capture_type, timestamp)

        return self._frame_result(admitted=True, capture=outcome)

    def trigger_capture(self, timestamp: Optional[float] = None) -> CaptureOutcome:
        """
        Explicit capture of the neutral ("normal") sample.

        Only available in AwaitingNormal while the face quality is high.
        """
        ctx = self.context
        if self._aborted or ctx.state is not ChallengeState.AWAITING_NORMAL:
            return CaptureOutcome(
                capture_type=CaptureType.NORMAL,
                success=False,
                error=f"capture not available in state {ctx.state.value}",
            )

        if ctx.face_quality is not FaceQuality.HIGH:
            error = f"face quality too low ({ctx.face_quality.value})"
            ctx.error = error
            return CaptureOutcome(
                capture_type=CaptureType.NORMAL,
                success=False,
                retryable=True,
                error=error,
            )

        if timestamp is None:
            # Stay on the time base of the frames so the state timeout holds
            timestamp = self._last_frame_at if self._last_frame_at is not None else self.clock()
        return self._capture(CaptureType.NORMAL, timestamp)

    def abort(self) -> None:
        """
        Stop the session from any state.

        Frame evaluation stops, an in-flight capture is discarded, and the
        release function runs once.
        """
        if not self._aborted:
            self._aborted = True
            if self.context.state is not ChallengeState.SUCCESS:
                self.context.state = ChallengeState.FAILED
                self.context.error = ERROR_ABORTED
            logger.info("Challenge aborted")

        if self.release_fn is not None and not self._released:
            self._released = True
            self.release_fn()

    def retry(self) -> None:
        """
        Start over after a failure: counters, histories and samples are cleared.

        Raises:
            RuntimeError: If the session has not failed.
        """
        if self.context.state is not ChallengeState.FAILED:
            raise RuntimeError(
                f"retry is only available after failure (state={self.context.state.value})"
            )

        self.context = new_context(self.settings)
        self._throttle.reset()
        self._last_frame_at = None
        self._aborted = False
        self._released = False
        self.submission_result = None
        self.submission_error = None
        logger.info("Challenge reset for retry")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _frame_result(self, admitted: bool, capture: Optional[CaptureOutcome] = None) -> FrameResult:
        return FrameResult(
            admitted=admitted,
            state=self.context.state,
            face_quality=self.context.face_quality,
            progress=self.progress(),
            capture=capture,
        )

    def _timed_out(self, timestamp: float) -> bool:
        timeout = self.settings.state_timeout_sec
        entered = self.context.state_entered_at
        if timeout is None or entered is None:
            return False
        return timestamp - entered > timeout

    def _fail(self, error: str) -> None:
        self.context.state = ChallengeState.FAILED
        self.context.error = error

    def _capture(self, capture_type: CaptureType, timestamp: float) -> CaptureOutcome:
        ctx = self.context

        if capture_type in ctx.captured_types:
            logger.debug(f"Ignoring duplicate {capture_type.value} capture")
            return CaptureOutcome(capture_type=capture_type, success=False, duplicate=True)

        capture_fn = self._capture_fns.get(capture_type, self._default_capture_fn)
        if capture_fn is None:
            return self._capture_failed(capture_type, "no capture function registered")

        region = embedding = None
        error = None
        try:
            region = capture_fn()
            if region is not None:
                embedding = self.embedding_oracle.embed(region)
        except Exception as e:
            logger.warning(f"{capture_type.value} capture raised: {e}", exc_info=True)
            error = f"capture failed: {e}"

        # Aborted while the capture was running: drop whatever came back
        if self._aborted:
            return CaptureOutcome(capture_type=capture_type, success=False, error=ERROR_ABORTED)

        if error is not None:
            return self._capture_failed(capture_type, error)

        if region is None:
            return self._capture_failed(capture_type, "no image region captured")
        if embedding is None:
            return self._capture_failed(capture_type, "no face embedding")

        result = self.quality_validator.validate(embedding)
        if not result.valid:
            return self._capture_failed(capture_type, f"embedding rejected: {result.reason}")

        similarity = self._closest_capture(embedding)
        limit = self.settings.max_capture_similarity
        if limit is not None and similarity > limit:
            return self._capture_failed(
                capture_type,
                f"capture too similar to an earlier one ({similarity:.3f}), change expression or pose",
            )

        sample = CapturedSample(
            capture_type=capture_type,
            embedding=embedding,
            quality_score=compute_quality_score(embedding),
            captured_at=timestamp,
        )
        record_capture(ctx, sample, self.settings, timestamp)
        logger.info(
            f"Captured {capture_type.value} sample ({len(ctx.samples)}/{REQUIRED_SAMPLES}), "
            f"next state: {ctx.state.value}"
        )

        if ctx.state is ChallengeState.PROCESSING:
            self._submit()

        return CaptureOutcome(capture_type=capture_type, success=True, sample=sample)

    def _closest_capture(self, embedding: np.ndarray) -> float:
        """Highest cosine similarity between a new embedding and the samples already taken."""
        if not self.context.samples:
            return -1.0
        unit = l2_normalize(embedding)
        return max(
            cosine_similarity(unit, l2_normalize(sample.embedding))
            for sample in self.context.samples
        )

    def _capture_failed(self, capture_type: CaptureType, error: str) -> CaptureOutcome:
        logger.warning(f"{capture_type.value} capture failed: {error}")
        record_capture_failure(self.context, error)
        return CaptureOutcome(capture_type=capture_type, success=False, retryable=True, error=error)

    def _submit(self) -> None:
        ctx = self.context
        ctx.state = ChallengeState.SUBMITTING

        if self.submit_fn is None:
            ctx.state = ChallengeState.SUCCESS
            return

        try:
            self.submission_result = self.submit_fn(list(ctx.samples))
        except Exception as e:
            logger.error(f"Submission failed: {e}")
            self.submission_error = e
            self._fail(str(e))
            return

        if self._aborted:
            return
        ctx.state = ChallengeState.SUCCESS
        logger.info("Challenge submission succeeded")
