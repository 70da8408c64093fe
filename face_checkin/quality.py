"""Geometric quality gate for a single detected face.

Checks run in a fixed order (distance, centering, head pose) and the first
failing check names the rejection reason, so the user always gets one piece of
guidance at a time. The numeric score is informative only; gating is decided on
the three boolean checks.
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .config import (
    CENTER_TOLERANCE_RATIO,
    CENTERING_PENALTY,
    DISTANCE_PENALTY,
    HEAD_POSE_PENALTY,
    MAX_FACE_WIDTH_RATIO,
    MAX_POSE_RATIO,
    MIN_FACE_WIDTH_RATIO,
    MIN_POSE_RATIO,
)
from .types import Detection, QualityAssessment, QualityReason


@dataclass(frozen=True)
class LandmarkLayout:
    """Indices of the points the head-pose check needs in a landmark set."""

    nose_tip: int
    left_eye_outer: int
    right_eye_outer: int

    @property
    def min_points(self) -> int:
        return max(self.nose_tip, self.left_eye_outer, self.right_eye_outer) + 1


# mediapipe short-range detector: right eye, left eye, nose tip, mouth, right ear, left ear
MEDIAPIPE_LAYOUT = LandmarkLayout(nose_tip=2, left_eye_outer=1, right_eye_outer=0)
# iBUG 68-point annotation (dlib, face-api.js)
IBUG68_LAYOUT = LandmarkLayout(nose_tip=30, left_eye_outer=36, right_eye_outer=45)


@dataclass(frozen=True)
class QualityThresholds:
    min_width_ratio: float = MIN_FACE_WIDTH_RATIO
    max_width_ratio: float = MAX_FACE_WIDTH_RATIO
    center_tolerance: float = CENTER_TOLERANCE_RATIO
    min_pose_ratio: float = MIN_POSE_RATIO
    max_pose_ratio: float = MAX_POSE_RATIO
    distance_penalty: float = DISTANCE_PENALTY
    centering_penalty: float = CENTERING_PENALTY
    head_pose_penalty: float = HEAD_POSE_PENALTY


DEFAULT_THRESHOLDS = QualityThresholds()


def check_distance(detection: Detection, frame_width: int, thresholds: QualityThresholds) -> QualityReason:
    width_ratio = detection.box.width / float(frame_width)
    if width_ratio < thresholds.min_width_ratio:
        return QualityReason.TOO_FAR
    if width_ratio > thresholds.max_width_ratio:
        return QualityReason.TOO_CLOSE
    return QualityReason.NONE


def check_centering(
    detection: Detection,
    frame_width: int,
    frame_height: int,
    thresholds: QualityThresholds,
) -> bool:
    center_x, center_y = detection.box.center
    offset_x = abs(center_x - frame_width / 2.0)
    offset_y = abs(center_y - frame_height / 2.0)
    return (
        offset_x <= frame_width * thresholds.center_tolerance
        and offset_y <= frame_height * thresholds.center_tolerance
    )


def head_pose_ratio(landmarks: np.ndarray, layout: LandmarkLayout) -> float:
    """Ratio of the horizontal nose-to-eye-corner offsets, 1.0 for a frontal face.

    Returns ``inf`` when the nose sits exactly on the right eye corner.
    """
    points = np.asarray(landmarks, dtype=np.float64).reshape(-1, 2)
    if points.shape[0] < layout.min_points:
        raise ValueError(
            f"Landmark set has {points.shape[0]} points, layout needs {layout.min_points}."
        )

    nose_x = points[layout.nose_tip, 0]
    to_left = abs(nose_x - points[layout.left_eye_outer, 0])
    to_right = abs(nose_x - points[layout.right_eye_outer, 0])
    if to_right == 0.0:
        return float("inf")
    return float(to_left / to_right)


def check_head_pose(detection: Detection, layout: LandmarkLayout, thresholds: QualityThresholds) -> bool:
    ratio = head_pose_ratio(detection.landmarks, layout)
    return thresholds.min_pose_ratio < ratio < thresholds.max_pose_ratio


def evaluate(
    detection: Detection,
    frame_size: tuple[int, int],
    layout: LandmarkLayout = MEDIAPIPE_LAYOUT,
    thresholds: QualityThresholds = DEFAULT_THRESHOLDS,
) -> QualityAssessment:
    frame_width, frame_height = frame_size
    if frame_width <= 0 or frame_height <= 0:
        return QualityAssessment(score=0.0, passed=False, reason=QualityReason.INVALID_FRAME)

    score = float(detection.confidence) * 100.0
    reason = QualityReason.NONE

    distance_reason = check_distance(detection, frame_width, thresholds)
    distance_ok = distance_reason is QualityReason.NONE
    if not distance_ok:
        score -= thresholds.distance_penalty
        reason = distance_reason

    centered = check_centering(detection, frame_width, frame_height, thresholds)
    if not centered:
        score -= thresholds.centering_penalty
        if reason is QualityReason.NONE:
            reason = QualityReason.OFF_CENTER

    frontal = check_head_pose(detection, layout, thresholds)
    if not frontal:
        score -= thresholds.head_pose_penalty
        if reason is QualityReason.NONE:
            reason = QualityReason.HEAD_TURNED

    return QualityAssessment(
        score=min(100.0, max(0.0, score)),
        passed=distance_ok and centered and frontal,
        reason=reason,
        checks={"distance": distance_ok, "centered": centered, "frontal": frontal},
    )
