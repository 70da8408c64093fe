import cv2
import numpy as np

from .config import DRAW_LANDMARKS
from .labels import display_text
from .sessions import FrameOutcome, FrameState

_GOOD = (30, 180, 30)
_BAD = (20, 20, 220)
_LANDMARK = (240, 200, 40)

_GOOD_STATES = {FrameState.HOLD_STILL, FrameState.CAPTURED, FrameState.MATCHED}


def draw_outcome(image: np.ndarray, outcome: FrameOutcome) -> None:
    if outcome.detection is not None:
        color = _GOOD if outcome.state in _GOOD_STATES else _BAD
        x1, y1, x2, y2 = outcome.detection.box.as_corners()
        cv2.rectangle(image, (x1, y1), (x2, y2), color, 2)
        if DRAW_LANDMARKS:
            for px, py in outcome.detection.landmarks:
                cv2.circle(image, (int(px), int(py)), 3, _LANDMARK, -1)

        caption = _caption(outcome)
        if caption:
            cv2.putText(
                image,
                caption,
                (x1, max(20, y1 - 10)),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.65,
                color,
                2,
                cv2.LINE_AA,
            )

    _draw_progress(image, outcome.progress)
    _draw_status_bar(image, outcome.message)


def _caption(outcome: FrameOutcome) -> str:
    if outcome.match is not None:
        name = display_text(outcome.match.identity) if outcome.match.identity else "unknown"
        return f"{name} ({outcome.match.distance:.2f})"
    if outcome.quality is not None:
        return f"quality {outcome.quality.score:.0f}%"
    return ""


def _draw_progress(image: np.ndarray, progress: float) -> None:
    if progress <= 0.0:
        return
    height, width = image.shape[:2]
    filled = int(width * min(1.0, progress))
    cv2.rectangle(image, (0, height - 8), (filled, height), _GOOD, -1)


def _draw_status_bar(image: np.ndarray, message: str) -> None:
    cv2.rectangle(image, (0, 0), (image.shape[1], 50), (35, 35, 35), -1)
    cv2.putText(
        image,
        message,
        (20, 33),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.8,
        (255, 255, 255),
        2,
        cv2.LINE_AA,
    )
