from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .debouncer import AttendanceDebouncer, resolve_status
from .labels import display_text
from .logger import setup_logger
from .types import (
    AttendanceEvent,
    AttendanceSink,
    AttendanceStatus,
    Direction,
    EventConflict,
    Identity,
    ScheduleSource,
)


@dataclass
class MarkOutcome:
    recorded: bool
    direction: Direction
    message: str
    status: Optional[AttendanceStatus] = None
    event: Optional[AttendanceEvent] = None
    reason: str = ""


class AttendanceService:
    def __init__(
        self,
        sink: AttendanceSink,
        schedule: Optional[ScheduleSource] = None,
        debouncer: Optional[AttendanceDebouncer] = None,
    ):
        self.sink = sink
        self.schedule = schedule
        self.debouncer = debouncer or AttendanceDebouncer()
        self.logger = setup_logger(self.__class__.__name__)

    def mark(self, identity: Identity, confidence: float, now: Optional[datetime] = None) -> MarkOutcome:
        now = now or datetime.now()
        last_event = self.sink.last_event_today(identity.identity_id, now)
        decision = self.debouncer.decide(identity.identity_id, now, last_event)

        if not decision.emit:
            self.logger.info("Suppressed scan for %s: %s", identity.identity_id, decision.reason)
            return MarkOutcome(
                recorded=False,
                direction=decision.direction,
                message=_too_soon_message(decision.direction),
                reason=decision.reason,
            )

        expected_start = None
        if self.schedule is not None and decision.direction is Direction.IN:
            expected_start = self.schedule.get_expected_start(identity.identity_id)
        status = resolve_status(decision.direction, now, expected_start)

        result = self.sink.record_event(
            identity_id=identity.identity_id,
            confidence=confidence,
            direction=decision.direction,
            status=status,
            timestamp=now,
        )
        if isinstance(result, EventConflict):
            self.logger.warning("Attendance for %s rejected by store: %s", identity.identity_id, result.reason)
            direction = result.last_event.direction if result.last_event else decision.direction
            return MarkOutcome(
                recorded=False,
                direction=direction,
                message=_too_soon_message(direction),
                reason=result.reason,
            )

        self.logger.info(
            "Checked %s: %s (%s) status=%s confidence=%.3f",
            result.direction.value,
            display_text(identity),
            identity.identity_id,
            result.status.value,
            confidence,
        )
        return MarkOutcome(
            recorded=True,
            direction=result.direction,
            message=_welcome_message(identity, result.direction, result.status),
            status=result.status,
            event=result,
        )


def _welcome_message(identity: Identity, direction: Direction, status: AttendanceStatus) -> str:
    if direction is Direction.OUT:
        return f"Goodbye, {identity.display_name}"
    suffix = " (Late)" if status is AttendanceStatus.LATE else ""
    return f"Welcome, {identity.display_name}{suffix}"


def _too_soon_message(direction: Direction) -> str:
    return f"Already checked {direction.value} recently. Please wait a moment."
