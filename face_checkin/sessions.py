"""Per-camera capture sessions: enrollment and attendance scanning.

Each tick runs detection, quality gating, matching and the stability vote to
completion before the next frame is read, so a slow embedding step never
queues frames. Per-frame conditions come back as ``FrameOutcome`` values; only
camera failures escape ``run()``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from threading import Event
from typing import Callable, Optional

import cv2
import numpy as np

from .attendance_service import AttendanceService, MarkOutcome
from .camera import CameraStream
from .config import JPEG_QUALITY, MATCH_DISTANCE_THRESHOLD, POLL_INTERVAL_SECONDS
from .exceptions import DatabaseError, FaceEngineError
from .logger import setup_logger
from .matcher import Gallery, match
from .quality import DEFAULT_THRESHOLDS, MEDIAPIPE_LAYOUT, LandmarkLayout, QualityThresholds, evaluate
from .stability import Action, StabilityTracker
from .types import Detection, EmbeddingProvider, Frame, Identity, MatchResult, QualityAssessment


class FrameState(str, Enum):
    SEARCHING = "searching"
    ADJUST = "adjust"
    HOLD_STILL = "hold_still"
    CAPTURED = "captured"
    UNRECOGNIZED = "unrecognized"
    MATCHED = "matched"
    SUPPRESSED = "suppressed"
    ENGINE_ERROR = "engine_error"
    STORE_ERROR = "store_error"


@dataclass
class EnrollmentCapture:
    descriptor: np.ndarray
    image_jpeg: bytes
    quality_score: float
    captured_at: datetime


@dataclass
class FrameOutcome:
    state: FrameState
    message: str
    detection: Optional[Detection] = None
    quality: Optional[QualityAssessment] = None
    match: Optional[MatchResult] = None
    capture: Optional[EnrollmentCapture] = None
    mark: Optional[MarkOutcome] = None
    progress: float = 0.0


OutcomeCallback = Callable[[Frame, FrameOutcome], None]


class CaptureSession:
    def __init__(
        self,
        provider: EmbeddingProvider,
        tracker: StabilityTracker,
        layout: LandmarkLayout = MEDIAPIPE_LAYOUT,
        thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ):
        self.provider = provider
        self.tracker = tracker
        self.layout = layout
        self.thresholds = thresholds
        self.poll_interval = max(0.0, poll_interval)
        self.frames_processed = 0
        self._stop = Event()
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()

    def process_frame(self, frame: Frame) -> FrameOutcome:
        self.frames_processed += 1
        try:
            detection = self.provider.detect(frame)
        except FaceEngineError as exc:
            self.logger.warning("Face engine error on frame %d: %s", self.frames_processed, exc)
            self.tracker.on_frame_result(False)
            return FrameOutcome(FrameState.ENGINE_ERROR, "Face engine error, retrying...")
        except Exception:
            self.logger.exception("Unexpected provider failure on frame %d", self.frames_processed)
            self.tracker.on_frame_result(False)
            return FrameOutcome(FrameState.ENGINE_ERROR, "Face engine error, retrying...")

        if detection is None:
            self.tracker.on_frame_result(False)
            return FrameOutcome(FrameState.SEARCHING, "Looking for face...")

        quality = evaluate(detection, (frame.width, frame.height), self.layout, self.thresholds)
        if not quality.passed:
            self.tracker.on_frame_result(False)
            return FrameOutcome(FrameState.ADJUST, quality.message, detection=detection, quality=quality)

        return self._handle_good_frame(frame, detection, quality)

    def run(self, camera: CameraStream, on_outcome: Optional[OutcomeCallback] = None) -> None:
        self.logger.info("Starting %s", self.__class__.__name__)
        with camera:
            while not self._stop.is_set():
                frame = camera.read()
                outcome = self.process_frame(frame)
                if on_outcome is not None:
                    on_outcome(frame, outcome)
                if self._finished(outcome):
                    break
                self._stop.wait(self.poll_interval)
        self.logger.info("%s ended after %d frames", self.__class__.__name__, self.frames_processed)

    def _handle_good_frame(self, frame: Frame, detection: Detection, quality: QualityAssessment) -> FrameOutcome:
        raise NotImplementedError

    def _finished(self, outcome: FrameOutcome) -> bool:
        return False


class EnrollmentSession(CaptureSession):
    """Captures one reference descriptor once the face has been steady long enough."""

    def __init__(self, provider: EmbeddingProvider, tracker: Optional[StabilityTracker] = None, **kwargs):
        super().__init__(provider, tracker or StabilityTracker.for_enrollment(), **kwargs)
        self.capture: Optional[EnrollmentCapture] = None

    def _handle_good_frame(self, frame: Frame, detection: Detection, quality: QualityAssessment) -> FrameOutcome:
        if self.tracker.on_frame_result(True) is Action.CONTINUE:
            return FrameOutcome(
                FrameState.HOLD_STILL,
                quality.message,
                detection=detection,
                quality=quality,
                progress=self.tracker.progress,
            )

        self.tracker.on_emit()
        self.capture = EnrollmentCapture(
            descriptor=np.asarray(detection.descriptor, dtype=np.float32).copy(),
            image_jpeg=_encode_jpeg(frame.image),
            quality_score=quality.score,
            captured_at=datetime.now(),
        )
        self.logger.info("Face captured with quality %.1f", quality.score)
        return FrameOutcome(
            FrameState.CAPTURED,
            "Face Captured!",
            detection=detection,
            quality=quality,
            capture=self.capture,
            progress=1.0,
        )

    def _finished(self, outcome: FrameOutcome) -> bool:
        return outcome.state is FrameState.CAPTURED


class ScanSession(CaptureSession):
    """Matches each good frame against the gallery and marks attendance on a steady match."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        gallery: Gallery,
        attendance: AttendanceService,
        tracker: Optional[StabilityTracker] = None,
        match_threshold: float = MATCH_DISTANCE_THRESHOLD,
        **kwargs,
    ):
        super().__init__(provider, tracker or StabilityTracker.for_scan(), **kwargs)
        self.gallery = gallery
        self.attendance = attendance
        self.match_threshold = match_threshold
        self._candidate: Optional[Identity] = None
        if len(gallery) == 0:
            self.logger.warning("Scanning with an empty gallery; every face will be unknown.")

    def _handle_good_frame(self, frame: Frame, detection: Detection, quality: QualityAssessment) -> FrameOutcome:
        result = match(self.gallery, detection.descriptor, self.match_threshold)
        if not result.is_known:
            self.tracker.on_frame_result(False)
            return FrameOutcome(
                FrameState.UNRECOGNIZED,
                "Face not recognized",
                detection=detection,
                quality=quality,
                match=result,
            )

        identity = result.identity
        if self._candidate is not None and self._candidate.identity_id != identity.identity_id:
            # A different face restarts the run and is not held back by the previous cooldown.
            self.logger.debug("Candidate changed from %s to %s", self._candidate.identity_id, identity.identity_id)
            self.tracker.reset()
        self._candidate = identity

        if self.tracker.on_frame_result(True) is Action.CONTINUE:
            return FrameOutcome(
                FrameState.HOLD_STILL,
                f"Hold still, {identity.display_name}",
                detection=detection,
                quality=quality,
                match=result,
                progress=self.tracker.progress,
            )

        self.tracker.on_emit()
        try:
            outcome = self.attendance.mark(identity, result.confidence)
        except DatabaseError as exc:
            self.logger.error("Could not record attendance for %s: %s", identity.identity_id, exc)
            return FrameOutcome(
                FrameState.STORE_ERROR,
                "Could not save attendance, please try again.",
                detection=detection,
                quality=quality,
                match=result,
            )

        return FrameOutcome(
            FrameState.MATCHED if outcome.recorded else FrameState.SUPPRESSED,
            outcome.message,
            detection=detection,
            quality=quality,
            match=result,
            mark=outcome,
            progress=1.0,
        )


def _encode_jpeg(image: np.ndarray) -> bytes:
    ok, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), JPEG_QUALITY])
    if not ok:
        return b""
    return buffer.tobytes()
