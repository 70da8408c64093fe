from __future__ import annotations

from enum import Enum

from .config import ENROLL_STABILITY_FRAMES, SCAN_STABILITY_FRAMES, STABILITY_COOLDOWN_FRAMES


class Action(str, Enum):
    CONTINUE = "continue"
    EMIT = "emit"


class StabilityTracker:
    """Run-length vote over per-frame pass/fail results.

    ``threshold`` consecutive passing frames produce a single EMIT. After the
    caller consumes it with ``on_emit()``, the next ``cooldown_frames`` passing
    frames are swallowed before counting starts again.
    """

    def __init__(self, threshold: int, cooldown_frames: int = STABILITY_COOLDOWN_FRAMES):
        if threshold < 1:
            raise ValueError("threshold must be at least 1.")
        if cooldown_frames < 0:
            raise ValueError("cooldown_frames cannot be negative.")
        self.threshold = threshold
        self.cooldown_frames = cooldown_frames
        self.consecutive_passes = 0
        self.cooldown_remaining = 0

    @classmethod
    def for_enrollment(cls) -> "StabilityTracker":
        return cls(threshold=ENROLL_STABILITY_FRAMES)

    @classmethod
    def for_scan(cls) -> "StabilityTracker":
        return cls(threshold=SCAN_STABILITY_FRAMES)

    @property
    def cooling_down(self) -> bool:
        return self.cooldown_remaining > 0

    @property
    def progress(self) -> float:
        if self.cooling_down:
            return 0.0
        return min(1.0, self.consecutive_passes / float(self.threshold))

    def on_frame_result(self, passed: bool) -> Action:
        if not passed:
            self.consecutive_passes = 0
            return Action.CONTINUE

        if self.cooldown_remaining > 0:
            self.cooldown_remaining -= 1
            return Action.CONTINUE

        self.consecutive_passes += 1
        if self.consecutive_passes >= self.threshold:
            self.consecutive_passes = 0
            return Action.EMIT
        return Action.CONTINUE

    def on_emit(self) -> None:
        self.consecutive_passes = 0
        self.cooldown_remaining = self.cooldown_frames

    def reset(self) -> None:
        self.consecutive_passes = 0
        self.cooldown_remaining = 0
