from dataclasses import replace

import numpy as np
import pytest

from face_checkin.quality import IBUG68_LAYOUT, MEDIAPIPE_LAYOUT, head_pose_ratio, evaluate
from face_checkin.types import BoundingBox, QualityReason

from conftest import FRAME_HEIGHT, FRAME_WIDTH, make_detection

FRAME = (FRAME_WIDTH, FRAME_HEIGHT)


def test_well_placed_face_passes_with_confidence_score():
    result = evaluate(make_detection(confidence=0.95), FRAME)
    assert result.passed is True
    assert result.reason is QualityReason.NONE
    assert result.score == pytest.approx(95.0)
    assert result.message == "Hold still..."


def test_small_face_is_too_far():
    result = evaluate(make_detection(width_ratio=0.2), FRAME)
    assert result.passed is False
    assert result.reason is QualityReason.TOO_FAR
    assert result.message == "Move closer"
    assert result.score == pytest.approx(75.0)


def test_large_face_is_too_close():
    result = evaluate(make_detection(width_ratio=0.6, nose_shift=0.0), FRAME)
    assert result.passed is True

    result = evaluate(make_detection(width_ratio=0.75), FRAME)
    assert result.reason is QualityReason.TOO_CLOSE
    assert result.message == "Move back"


def _with_width(side):
    detection = make_detection(width_ratio=side / FRAME_WIDTH)
    cx, cy = FRAME_WIDTH / 2, FRAME_HEIGHT / 2
    return replace(detection, box=BoundingBox(x=cx - side / 2, y=cy - side / 2, width=side, height=side))


def test_width_bounds_are_inclusive():
    # 160 / 640 == 0.25 and 448 / 640 == 0.70 exactly.
    lower = evaluate(_with_width(160.0), FRAME)
    upper = evaluate(_with_width(448.0), FRAME)
    assert lower.checks["distance"] is True
    assert upper.checks["distance"] is True
    assert upper.passed is True


def test_width_just_outside_bounds():
    assert evaluate(_with_width(159.0), FRAME).reason is QualityReason.TOO_FAR
    assert evaluate(_with_width(449.0), FRAME).reason is QualityReason.TOO_CLOSE


@pytest.mark.parametrize(
    "center, centered",
    [
        ((FRAME_WIDTH / 2 + 96.0, FRAME_HEIGHT / 2), True),
        ((FRAME_WIDTH / 2 - 96.0, FRAME_HEIGHT / 2), True),
        ((FRAME_WIDTH / 2, FRAME_HEIGHT / 2 + 72.0), True),
        ((FRAME_WIDTH / 2 + 96.0, FRAME_HEIGHT / 2 - 72.0), True),
        ((FRAME_WIDTH / 2 + 96.5, FRAME_HEIGHT / 2), False),
        ((FRAME_WIDTH / 2, FRAME_HEIGHT / 2 + 72.5), False),
    ],
)
def test_centering_tolerance_is_inclusive(center, centered):
    # 15% of 640 x 480 is 96 x 72 pixels.
    result = evaluate(make_detection(center=center), FRAME)
    assert result.checks["centered"] is centered
    assert result.reason is (QualityReason.NONE if centered else QualityReason.OFF_CENTER)


def test_off_center_face():
    result = evaluate(make_detection(center=(FRAME_WIDTH * 0.8, FRAME_HEIGHT / 2)), FRAME)
    assert result.reason is QualityReason.OFF_CENTER
    assert result.score == pytest.approx(75.0)

    result = evaluate(make_detection(center=(FRAME_WIDTH / 2, FRAME_HEIGHT * 0.7)), FRAME)
    assert result.reason is QualityReason.OFF_CENTER


def test_turned_head_fails_pose_check():
    # Nose almost on top of the right eye.
    detection = make_detection(nose_shift=-45.0)
    result = evaluate(detection, FRAME)
    assert result.passed is False
    assert result.reason is QualityReason.HEAD_TURNED
    assert result.score == pytest.approx(65.0)


def test_first_failing_check_names_the_reason():
    detection = make_detection(width_ratio=0.1, center=(50, 50), nose_shift=-10.0)
    result = evaluate(detection, FRAME)
    assert result.reason is QualityReason.TOO_FAR
    assert result.checks == {"distance": False, "centered": False, "frontal": False}


def test_score_is_clamped_at_zero():
    detection = make_detection(width_ratio=0.1, center=(50, 50), nose_shift=-10.0, confidence=0.5)
    assert evaluate(detection, FRAME).score == 0.0


def test_each_failed_check_lowers_the_score():
    base = evaluate(make_detection(), FRAME).score
    variants = [
        make_detection(width_ratio=0.1),
        make_detection(center=(FRAME_WIDTH * 0.85, FRAME_HEIGHT / 2)),
        make_detection(nose_shift=-45.0),
    ]
    for detection in variants:
        result = evaluate(detection, FRAME)
        assert result.passed is False
        assert result.score < base

    both = evaluate(make_detection(width_ratio=0.1, center=(FRAME_WIDTH * 0.85, FRAME_HEIGHT / 2)), FRAME)
    assert both.score <= evaluate(make_detection(width_ratio=0.1), FRAME).score


@pytest.mark.parametrize("frame", [(0, 480), (640, 0), (0, 0)])
def test_unsized_frame_fails_closed(frame):
    result = evaluate(make_detection(), frame)
    assert result.passed is False
    assert result.reason is QualityReason.INVALID_FRAME
    assert result.score == 0.0


def test_pose_ratio_for_frontal_and_profile_faces():
    frontal = make_detection().landmarks
    assert head_pose_ratio(frontal, MEDIAPIPE_LAYOUT) == pytest.approx(1.0)

    profile = np.array([[100.0, 50.0], [180.0, 50.0], [100.0, 80.0]])
    assert head_pose_ratio(profile, MEDIAPIPE_LAYOUT) == float("inf")
    assert evaluate(make_detection(), FRAME, layout=MEDIAPIPE_LAYOUT).checks["frontal"] is True


def test_ibug68_layout_uses_eye_corners():
    points = np.zeros((68, 2), dtype=np.float32)
    points[30] = [100.0, 100.0]
    points[36] = [60.0, 90.0]
    points[45] = [140.0, 90.0]
    assert head_pose_ratio(points, IBUG68_LAYOUT) == pytest.approx(1.0)

    points[30, 0] = 125.0
    assert head_pose_ratio(points, IBUG68_LAYOUT) > 2.0


def test_too_few_landmarks_is_rejected():
    with pytest.raises(ValueError):
        head_pose_ratio(np.zeros((3, 2)), IBUG68_LAYOUT)
