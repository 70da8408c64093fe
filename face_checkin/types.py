from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol, Sequence

import numpy as np

UNKNOWN_LABEL = "unknown"


@dataclass
class Frame:
    image: np.ndarray
    width: int
    height: int

    @classmethod
    def from_image(cls, image: np.ndarray) -> "Frame":
        height, width = image.shape[:2]
        return cls(image=image, width=int(width), height=int(height))


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2.0, self.y + self.height / 2.0

    def as_corners(self) -> tuple[int, int, int, int]:
        return (
            int(self.x),
            int(self.y),
            int(self.x + self.width),
            int(self.y + self.height),
        )


@dataclass
class Detection:
    box: BoundingBox
    landmarks: np.ndarray
    descriptor: np.ndarray
    confidence: float


class QualityReason(str, Enum):
    NONE = "none"
    TOO_FAR = "too_far"
    TOO_CLOSE = "too_close"
    OFF_CENTER = "off_center"
    HEAD_TURNED = "head_turned"
    INVALID_FRAME = "invalid_frame"


@dataclass
class QualityAssessment:
    score: float
    passed: bool
    reason: QualityReason
    checks: dict[str, bool] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return GUIDANCE_MESSAGES[self.reason]


GUIDANCE_MESSAGES = {
    QualityReason.NONE: "Hold still...",
    QualityReason.TOO_FAR: "Move closer",
    QualityReason.TOO_CLOSE: "Move back",
    QualityReason.OFF_CENTER: "Center your face",
    QualityReason.HEAD_TURNED: "Look straight at the camera",
    QualityReason.INVALID_FRAME: "Waiting for camera...",
}


@dataclass(frozen=True)
class Identity:
    identity_id: str
    display_name: str
    code: Optional[str] = None


@dataclass
class LabeledDescriptor:
    identity: Identity
    descriptors: list[np.ndarray]


@dataclass
class MatchResult:
    label: str
    distance: float
    identity: Optional[Identity] = None

    @property
    def is_known(self) -> bool:
        return self.identity is not None

    @property
    def confidence(self) -> float:
        # Distance 0 is a perfect match.
        return float(min(1.0, max(0.0, 1.0 - self.distance)))


class Direction(str, Enum):
    IN = "IN"
    OUT = "OUT"

    def toggled(self) -> "Direction":
        return Direction.OUT if self is Direction.IN else Direction.IN


class AttendanceStatus(str, Enum):
    PRESENT = "Present"
    LATE = "Late"


@dataclass
class AttendanceEvent:
    event_id: int
    identity_id: str
    timestamp: datetime
    direction: Direction
    status: AttendanceStatus
    confidence: float


@dataclass
class EventConflict:
    reason: str
    last_event: Optional[AttendanceEvent] = None


class EmbeddingProvider(Protocol):
    def detect(self, frame: Frame) -> Optional[Detection]:
        ...


class GallerySource(Protocol):
    def load_gallery(self, branch_id: Optional[str] = None) -> Sequence[LabeledDescriptor]:
        ...


class AttendanceSink(Protocol):
    def last_event_today(self, identity_id: str, now: datetime) -> Optional[AttendanceEvent]:
        ...

    def record_event(
        self,
        identity_id: str,
        confidence: float,
        direction: Direction,
        status: AttendanceStatus,
        timestamp: datetime,
    ) -> AttendanceEvent | EventConflict:
        ...


class ScheduleSource(Protocol):
    def get_expected_start(self, identity_id: str) -> Optional[str]:
        ...
