"""
Liveness Challenge Webcam Runner

Runs the full challenge locally with a webcam: stabilize, neutral capture,
smile, nod and head raise. The four samples are then enrolled into the
gallery (--mode enroll) or matched against it (--mode login).

Requires the vision extras (mediapipe, face_recognition).

Usage:
    # Enroll (replaces any previous gallery of the owner)
    python scripts/run_challenge.py alice --mode enroll

    # Log in (1:1 against alice's gallery)
    python scripts/run_challenge.py alice --mode login

    # Log in without claiming an identity (1:N)
    python scripts/run_challenge.py --mode login

Controls:
    - Press 'c' to capture the neutral sample (when prompted)
    - Press 'r' to retry after a failure
    - Press 'q' to abort
"""

import argparse
import logging
import sys
import time
from pathlib import Path

import cv2

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from faceauth.config import get_challenge_config, get_face_detection_config
from faceauth.enrollment import EnrollmentError, get_enrollment_pipeline
from faceauth.face_detector import get_landmark_oracle
from faceauth.face_embedder import get_face_embedder
from faceauth.liveness import ChallengeEngine, ChallengeState, FaceQuality
from faceauth.matching import get_matching_engine
from faceauth.quality_validator import get_quality_validator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

INSTRUCTIONS = {
    ChallengeState.STABILIZING: "Center your face and hold still",
    ChallengeState.AWAITING_NORMAL: "Neutral face - press 'c' to capture",
    ChallengeState.AWAITING_SMILE: "Smile!",
    ChallengeState.AWAITING_NOD: "Nod your head (down, then up)",
    ChallengeState.AWAITING_HEAD_RAISE: "Slowly raise your head",
    ChallengeState.PROCESSING: "Processing...",
    ChallengeState.SUBMITTING: "Submitting...",
    ChallengeState.SUCCESS: "Done!",
    ChallengeState.FAILED: "Failed - press 'r' to retry or 'q' to quit",
}

QUALITY_COLORS = {
    FaceQuality.LOW: (0, 0, 255),
    FaceQuality.MEDIUM: (0, 255, 255),
    FaceQuality.HIGH: (0, 255, 0),
}


def draw_overlay(frame, engine: ChallengeEngine):
    """Draw the current instruction, progress and face quality."""
    h, w = frame.shape[:2]
    ctx = engine.context
    color = QUALITY_COLORS[ctx.face_quality]

    cv2.putText(frame, INSTRUCTIONS[ctx.state], (10, 30), cv2.FONT_HERSHEY_SIMPLEX,
                0.8, (255, 255, 255), 2)

    progress = f"Step {len(ctx.samples) + 1}/4  evidence {ctx.evidence.value}/{ctx.evidence.target}"
    cv2.putText(frame, progress, (10, 60), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 1)
    cv2.putText(frame, f"Face: {ctx.face_quality.value}", (w - 160, 30),
                cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2)

    if ctx.error:
        cv2.putText(frame, ctx.error, (10, h - 20), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 255), 2)


def print_banner(text: str, char: str = "="):
    line = char * 60
    print(f"\n{line}")
    print(text)
    print(line)


def main():
    parser = argparse.ArgumentParser(description="Run the liveness challenge with a webcam")
    parser.add_argument("owner_id", nargs="?", default=None,
                        help="Owner to enroll, or to verify in login mode (omit for 1:N login)")
    parser.add_argument("--mode", choices=["enroll", "login"], default="enroll")
    parser.add_argument("--camera", type=int, default=0, help="Webcam index")
    args = parser.parse_args()

    if args.mode == "enroll" and not args.owner_id:
        parser.error("owner_id is required for enrollment")

    print_banner(f"Liveness Challenge ({args.mode})")
    print("Controls:")
    print("  c - Capture neutral sample")
    print("  r - Retry after failure")
    print("  q - Quit")

    face_config = get_face_detection_config()
    padding = face_config.get("face_padding", 0.3)

    print("Initializing landmark and embedding oracles...")
    landmark_oracle = get_landmark_oracle(face_config)
    embedder = get_face_embedder()

    print("Opening webcam...")
    cap = cv2.VideoCapture(args.camera)
    if not cap.isOpened():
        print("ERROR: Could not open webcam!")
        print("Make sure your webcam is connected and not used by another application.")
        return 1

    cap.set(cv2.CAP_PROP_FRAME_WIDTH, 640)
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, 480)

    current = {"frame": None, "reading": None}

    def capture_face():
        if current["frame"] is None or current["reading"] is None:
            return None
        return landmark_oracle.crop_face_region(current["frame"], current["reading"], padding)

    def submit(samples):
        if args.mode == "enroll":
            return get_enrollment_pipeline().enroll(args.owner_id, samples)
        return get_matching_engine().match_samples(samples, owner_id=args.owner_id)

    engine = ChallengeEngine(
        embedder,
        quality_validator=get_quality_validator(),
        config=get_challenge_config(),
        capture_fn=capture_face,
        submit_fn=submit,
        release_fn=cap.release,
    )

    try:
        while cap.isOpened():
            ret, frame = cap.read()
            if not ret:
                print("Failed to read frame from webcam")
                break

            # Mirror the frame for more intuitive interaction
            frame = cv2.flip(frame, 1)
            timestamp = time.monotonic()

            reading = landmark_oracle.detect(frame, timestamp)
            current["frame"] = frame
            current["reading"] = reading

            result = engine.process_frame(reading, timestamp)
            if result.capture is not None and result.capture.success:
                print(f"Captured {result.capture.capture_type.value} "
                      f"(quality={result.capture.sample.quality_score:.2f})")

            draw_overlay(frame, engine)
            cv2.imshow("Liveness Challenge", frame)

            if engine.state is ChallengeState.SUCCESS:
                cv2.waitKey(1000)
                break

            key = cv2.waitKey(1) & 0xFF
            if key == ord('q'):
                print("Quitting...")
                engine.abort()
                break
            elif key == ord('c'):
                outcome = engine.trigger_capture()
                if not outcome.success:
                    print(f"Capture failed: {outcome.error}")
            elif key == ord('r') and engine.state is ChallengeState.FAILED:
                engine.retry()
                print("Challenge reset")

    finally:
        cap.release()
        landmark_oracle.close()
        cv2.destroyAllWindows()

    if engine.state is not ChallengeState.SUCCESS:
        if isinstance(engine.submission_error, EnrollmentError):
            for rejected in engine.submission_error.rejected:
                print(f"  rejected {rejected.capture_type.value}: {rejected.reason}")
        print_banner(f"Challenge ended: {engine.error}")
        return 1

    result = engine.submission_result
    if args.mode == "enroll":
        print_banner(f"Enrolled {result.owner_id}: {result.accepted} sample(s) stored")
        for rejected in result.rejected:
            print(f"  rejected {rejected.capture_type.value}: {rejected.reason}")
        return 0

    if result.is_match:
        print_banner(
            f"Authenticated as {result.candidate_owner_id} "
            f"(similarity={result.fused_similarity:.3f}, tier={result.confidence_tier.value})"
        )
        return 0

    print_banner(f"No match (best similarity={result.fused_similarity:.3f})")
    return 1


if __name__ == "__main__":
    sys.exit(main())
