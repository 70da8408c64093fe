import argparse
import sys
from datetime import date

import cv2

from face_checkin.attendance_service import AttendanceService
from face_checkin.camera import CameraStream
from face_checkin.config import CAMERA_INDEX, DB_PATH, MATCH_DISTANCE_THRESHOLD
from face_checkin.database import AttendanceDatabase
from face_checkin.exceptions import AttendanceError
from face_checkin.logger import setup_logger
from face_checkin.matcher import build_gallery
from face_checkin.model_loader import get_face_engine
from face_checkin.overlay import draw_outcome
from face_checkin.registration_service import RegistrationService
from face_checkin.sessions import CaptureSession, EnrollmentSession, FrameOutcome, ScanSession
from face_checkin.types import Frame


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Face check-in attendance")
    parser.add_argument("--db", default=str(DB_PATH), help="sqlite database path")
    parser.add_argument("--branch", default="default", help="Branch id")

    subparsers = parser.add_subparsers(dest="command", required=True)

    enroll = subparsers.add_parser("enroll", help="Enroll or update a member face")
    enroll.add_argument("--id", required=True, dest="member_id", help="Member ID")
    enroll.add_argument("--name", required=True, help="Full name")
    enroll.add_argument("--code", required=True, help="Employee code")
    enroll.add_argument("--start-time", default=None, help="Custom expected start time (HH:MM)")
    enroll.add_argument("--camera", type=int, default=CAMERA_INDEX, help="Webcam index")

    scan = subparsers.add_parser("scan", help="Run the live attendance scanner")
    scan.add_argument("--camera", type=int, default=CAMERA_INDEX, help="Webcam index")
    scan.add_argument(
        "--threshold",
        type=float,
        default=MATCH_DISTANCE_THRESHOLD,
        help="Maximum descriptor distance accepted as a match",
    )

    shift = subparsers.add_parser("shift", help="Create a shift")
    shift.add_argument("--name", required=True, help="Shift name")
    shift.add_argument("--start", required=True, help="Start time (HH:MM)")
    shift.add_argument("--end", required=True, help="End time (HH:MM)")

    assign = subparsers.add_parser("assign-shift", help="Assign a shift to a member")
    assign.add_argument("--id", required=True, dest="member_id", help="Member ID")
    assign.add_argument("--shift", type=int, default=None, help="Shift ID (omit to clear)")

    stats = subparsers.add_parser("stats", help="Show attendance for a day")
    stats.add_argument("--date", default=None, help="Day (YYYY-MM-DD), defaults to today")

    return parser


def _window_callback(session: CaptureSession, window_name: str):
    def on_outcome(frame: Frame, outcome: FrameOutcome) -> None:
        draw_outcome(frame.image, outcome)
        cv2.imshow(window_name, frame.image)
        key = cv2.waitKey(1) & 0xFF
        if key == ord("q"):
            session.stop()

    return on_outcome


def run_enroll(args: argparse.Namespace, db: AttendanceDatabase) -> None:
    engine = get_face_engine()
    session = EnrollmentSession(engine)
    service = RegistrationService(db, engine)
    try:
        service.enroll_member(
            member_id=args.member_id,
            name=args.name,
            employee_code=args.code,
            camera=CameraStream(args.camera),
            branch_id=args.branch,
            custom_start_time=args.start_time,
            on_outcome=_window_callback(session, "Enrollment - Press Q to cancel"),
            session=session,
        )
    finally:
        cv2.destroyAllWindows()
    print(f"Enrolled {args.name} ({args.member_id})")


def run_scan(args: argparse.Namespace, db: AttendanceDatabase) -> None:
    gallery = build_gallery(db.load_gallery(args.branch))
    if len(gallery) == 0:
        raise AttendanceError("No enrolled members found. Run enroll first.")

    engine = get_face_engine()
    session = ScanSession(
        engine,
        gallery,
        AttendanceService(sink=db, schedule=db),
        match_threshold=args.threshold,
    )
    try:
        session.run(CameraStream(args.camera), _window_callback(session, "Attendance - Press Q to exit"))
    finally:
        cv2.destroyAllWindows()


def run_stats(args: argparse.Namespace, db: AttendanceDatabase) -> None:
    day = date.fromisoformat(args.date) if args.date else date.today()
    stats = db.daily_stats(day, branch_id=args.branch)
    print(f"{day.isoformat()} [{args.branch}]: present={stats['present']} late={stats['late']}")
    for event in db.events_for_day(day, branch_id=args.branch):
        print(
            f"  {event.timestamp:%H:%M:%S} {event.direction.value:<3} {event.identity_id} "
            f"{event.status.value} ({event.confidence:.2f})"
        )


def main() -> int:
    args = build_parser().parse_args()
    logger = setup_logger("main")

    try:
        db = AttendanceDatabase(args.db)
        if args.command == "enroll":
            run_enroll(args, db)
        elif args.command == "scan":
            run_scan(args, db)
        elif args.command == "shift":
            shift_id = db.add_shift(args.name, args.start, args.end, branch_id=args.branch)
            print(f"Created shift {shift_id}")
        elif args.command == "assign-shift":
            if not db.assign_shift(args.member_id, args.shift):
                raise AttendanceError(f"Member {args.member_id} not found.")
            print(f"Assigned shift {args.shift} to {args.member_id}")
        elif args.command == "stats":
            run_stats(args, db)
        return 0
    except AttendanceError as exc:
        logger.error("Application error: %s", exc)
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 1
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
