import os
import tempfile
from datetime import datetime
from typing import Optional

os.environ.setdefault("FACE_LOG_DIR", tempfile.mkdtemp(prefix="face-checkin-logs-"))

import numpy as np
import pytest

from face_checkin.types import (
    AttendanceEvent,
    AttendanceStatus,
    BoundingBox,
    Detection,
    Direction,
    EventConflict,
    Frame,
    Identity,
    LabeledDescriptor,
)

FRAME_WIDTH = 640
FRAME_HEIGHT = 480


def make_detection(
    width_ratio: float = 0.4,
    center: Optional[tuple] = None,
    nose_shift: float = 0.0,
    confidence: float = 0.95,
    descriptor=None,
) -> Detection:
    """A face box of ``width_ratio * FRAME_WIDTH`` with mediapipe-style keypoints."""
    cx, cy = center if center is not None else (FRAME_WIDTH / 2, FRAME_HEIGHT / 2)
    side = FRAME_WIDTH * width_ratio
    eye_offset = side * 0.2
    landmarks = np.array(
        [
            [cx - eye_offset, cy - side * 0.1],  # right eye
            [cx + eye_offset, cy - side * 0.1],  # left eye
            [cx + nose_shift, cy],  # nose tip
            [cx, cy + side * 0.2],  # mouth
            [cx - side * 0.45, cy],  # right ear
            [cx + side * 0.45, cy],  # left ear
        ],
        dtype=np.float32,
    )
    if descriptor is None:
        descriptor = np.zeros(128, dtype=np.float32)
    return Detection(
        box=BoundingBox(x=cx - side / 2, y=cy - side / 2, width=side, height=side),
        landmarks=landmarks,
        descriptor=np.asarray(descriptor, dtype=np.float32),
        confidence=confidence,
    )


def unit_descriptor(index: int, dim: int = 128, scale: float = 1.0) -> np.ndarray:
    vector = np.zeros(dim, dtype=np.float32)
    vector[index] = scale
    return vector


def blank_frame() -> Frame:
    return Frame.from_image(np.zeros((FRAME_HEIGHT, FRAME_WIDTH, 3), dtype=np.uint8))


class FakeProvider:
    """Replays a scripted list of detections; exceptions in the script are raised."""

    def __init__(self, script, repeat_last: bool = True):
        self.script = list(script)
        self.repeat_last = repeat_last
        self.calls = 0

    def detect(self, frame: Frame):
        if self.calls < len(self.script):
            item = self.script[self.calls]
        elif self.repeat_last and self.script:
            item = self.script[-1]
        else:
            item = None
        self.calls += 1
        if isinstance(item, Exception):
            raise item
        return item


class FakeCamera:
    def __init__(self, frames: int = 1000, fail_after: Optional[int] = None):
        self.frames = frames
        self.fail_after = fail_after
        self.reads = 0
        self.opened = False
        self.closed = False

    def __enter__(self):
        self.opened = True
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True

    def read(self) -> Frame:
        from face_checkin.exceptions import CameraError

        if self.fail_after is not None and self.reads >= self.fail_after:
            raise CameraError("Failed to read frame from webcam.")
        self.reads += 1
        return blank_frame()


class MemorySink:
    """Attendance sink keeping events in a list, newest last."""

    def __init__(self):
        self.events: list[AttendanceEvent] = []
        self.conflict: Optional[str] = None

    def last_event_today(self, identity_id: str, now: datetime):
        for event in reversed(self.events):
            if event.identity_id == identity_id and event.timestamp.date() == now.date():
                return event
        return None

    def record_event(
        self,
        identity_id: str,
        confidence: float,
        direction: Direction,
        status: AttendanceStatus,
        timestamp: datetime,
    ):
        if self.conflict:
            return EventConflict(reason=self.conflict, last_event=self.last_event_today(identity_id, timestamp))
        event = AttendanceEvent(
            event_id=len(self.events) + 1,
            identity_id=identity_id,
            timestamp=timestamp,
            direction=direction,
            status=status,
            confidence=confidence,
        )
        self.events.append(event)
        return event


class FixedSchedule:
    def __init__(self, starts: dict):
        self.starts = starts

    def get_expected_start(self, identity_id: str):
        return self.starts.get(identity_id)


@pytest.fixture
def ann() -> Identity:
    return Identity(identity_id="m-ann", display_name="Ann Lee", code="E001")


@pytest.fixture
def bob() -> Identity:
    return Identity(identity_id="m-bob", display_name="Bob Stone", code="E002")


@pytest.fixture
def labeled(ann, bob) -> list:
    return [
        LabeledDescriptor(identity=ann, descriptors=[unit_descriptor(0)]),
        LabeledDescriptor(identity=bob, descriptors=[unit_descriptor(1)]),
    ]


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()
