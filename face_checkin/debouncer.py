"""IN/OUT toggle with a wall-clock cooldown, derived from the last stored event.

The debouncer keeps no state of its own: the current direction of an identity is
recomputed from its most recent event of the day, so the same ``last_event``
always yields the same decision.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Optional

from .config import ATTENDANCE_COOLDOWN_SECONDS, LATE_GRACE_MINUTES
from .types import AttendanceEvent, AttendanceStatus, Direction


class DecisionAction(str, Enum):
    EMIT = "emit"
    SUPPRESS = "suppress"


@dataclass
class Decision:
    action: DecisionAction
    direction: Direction
    reason: str = ""

    @property
    def emit(self) -> bool:
        return self.action is DecisionAction.EMIT


class AttendanceDebouncer:
    def __init__(self, cooldown_seconds: float = ATTENDANCE_COOLDOWN_SECONDS):
        if cooldown_seconds < 0:
            raise ValueError("cooldown_seconds cannot be negative.")
        self.cooldown = timedelta(seconds=cooldown_seconds)

    def decide(
        self,
        identity_id: str,
        now: datetime,
        last_event: Optional[AttendanceEvent],
    ) -> Decision:
        if last_event is not None and last_event.identity_id != identity_id:
            raise ValueError(
                f"Last event belongs to {last_event.identity_id}, not {identity_id}."
            )

        if last_event is None or last_event.timestamp.date() != now.date():
            return Decision(DecisionAction.EMIT, Direction.IN)

        if now - last_event.timestamp < self.cooldown:
            return Decision(
                DecisionAction.SUPPRESS,
                last_event.direction,
                reason=f"too soon, still {last_event.direction.value}",
            )

        return Decision(DecisionAction.EMIT, last_event.direction.toggled())


def parse_clock(value: str) -> time:
    """Parse an ``HH:MM`` schedule string."""
    hours, sep, minutes = value.strip().partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit():
        raise ValueError(f"Expected HH:MM, got {value!r}")
    return time(hour=int(hours), minute=int(minutes))


def resolve_status(
    direction: Direction,
    now: datetime,
    expected_start: Optional[str],
    grace_minutes: int = LATE_GRACE_MINUTES,
) -> AttendanceStatus:
    """Late only for a check-in strictly after ``expected_start + grace``.

    Same-day local wall clock; ``now`` exactly on the boundary is still Present.
    """
    if direction is not Direction.IN or not expected_start:
        return AttendanceStatus.PRESENT

    start = parse_clock(expected_start)
    deadline = datetime.combine(now.date(), start, tzinfo=now.tzinfo) + timedelta(minutes=grace_minutes)
    if now > deadline:
        return AttendanceStatus.LATE
    return AttendanceStatus.PRESENT
