from datetime import datetime
from typing import Optional

from .camera import CameraStream
from .config import MATCH_DISTANCE_THRESHOLD
from .database import AttendanceDatabase
from .debouncer import parse_clock
from .exceptions import AttendanceError
from .labels import validate_display_name
from .logger import setup_logger
from .matcher import build_gallery, match
from .sessions import EnrollmentCapture, EnrollmentSession, OutcomeCallback
from .types import EmbeddingProvider


class RegistrationService:
    def __init__(
        self,
        db: AttendanceDatabase,
        provider: EmbeddingProvider,
        duplicate_threshold: float = MATCH_DISTANCE_THRESHOLD,
    ):
        self.db = db
        self.provider = provider
        self.duplicate_threshold = duplicate_threshold
        self.logger = setup_logger(self.__class__.__name__)

    def enroll_member(
        self,
        member_id: str,
        name: str,
        employee_code: str,
        camera: CameraStream,
        branch_id: str = "default",
        custom_start_time: Optional[str] = None,
        on_outcome: Optional[OutcomeCallback] = None,
        session: Optional[EnrollmentSession] = None,
    ) -> EnrollmentCapture:
        member_id = member_id.strip()
        name = name.strip()
        employee_code = employee_code.strip()
        if not member_id:
            raise AttendanceError("member_id cannot be empty.")
        if not name:
            raise AttendanceError("name cannot be empty.")
        try:
            validate_display_name(name)
            validate_display_name(employee_code)
            if custom_start_time:
                parse_clock(custom_start_time)
        except ValueError as exc:
            raise AttendanceError(str(exc)) from exc

        start_time = datetime.now()
        self.logger.info("Starting enrollment for %s (%s)", member_id, name)

        session = session or EnrollmentSession(self.provider)
        session.run(camera, on_outcome)
        if session.capture is None:
            raise AttendanceError("Enrollment cancelled before a face was captured.")

        self.save_capture(member_id, name, employee_code, session.capture, branch_id, custom_start_time)

        elapsed = (datetime.now() - start_time).total_seconds()
        self.logger.info(
            "Member %s enrolled in %.1fs (quality %.1f)",
            member_id,
            elapsed,
            session.capture.quality_score,
        )
        return session.capture

    def save_capture(
        self,
        member_id: str,
        name: str,
        employee_code: str,
        capture: EnrollmentCapture,
        branch_id: str = "default",
        custom_start_time: Optional[str] = None,
    ) -> None:
        self._validate_identity_uniqueness(capture, member_id, branch_id)
        self.db.upsert_member(
            member_id=member_id,
            name=name,
            employee_code=employee_code,
            descriptor=capture.descriptor,
            branch_id=branch_id,
            image_jpeg=capture.image_jpeg or None,
            custom_start_time=custom_start_time,
        )

    def _validate_identity_uniqueness(self, capture: EnrollmentCapture, member_id: str, branch_id: str) -> None:
        gallery = build_gallery(self.db.load_gallery(branch_id)).without(member_id)
        result = match(gallery, capture.descriptor, self.duplicate_threshold)
        if result.is_known:
            raise AttendanceError(
                f"Captured face is too similar to existing member '{result.identity.display_name}' "
                f"({result.identity.identity_id}). Use a different person or capture again."
            )
