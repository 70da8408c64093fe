import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

import numpy as np

from .config import ATTENDANCE_COOLDOWN_SECONDS
from .debouncer import AttendanceDebouncer, parse_clock
from .exceptions import DatabaseError
from .labels import validate_display_name
from .types import (
    AttendanceEvent,
    AttendanceStatus,
    Direction,
    EventConflict,
    Identity,
    LabeledDescriptor,
)


@dataclass
class MemberRecord:
    member_id: str
    name: str
    employee_code: str
    branch_id: str
    descriptor: np.ndarray
    custom_start_time: Optional[str] = None
    shift_id: Optional[int] = None

    @property
    def identity(self) -> Identity:
        return Identity(identity_id=self.member_id, display_name=self.name, code=self.employee_code)


@dataclass
class ShiftRecord:
    shift_id: int
    name: str
    start_time: str
    end_time: str
    branch_id: str


class AttendanceDatabase:
    """sqlite store for members, shifts and attendance events."""

    def __init__(self, db_path: Path, cooldown_seconds: float = ATTENDANCE_COOLDOWN_SECONDS):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.debouncer = AttendanceDebouncer(cooldown_seconds)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _initialize(self) -> None:
        try:
            with self._connect() as conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS shifts (
                        shift_id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        branch_id TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS members (
                        member_id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        employee_code TEXT NOT NULL,
                        branch_id TEXT NOT NULL,
                        face_descriptor BLOB NOT NULL,
                        descriptor_dim INTEGER NOT NULL,
                        face_image BLOB,
                        custom_start_time TEXT,
                        shift_id INTEGER REFERENCES shifts(shift_id) ON DELETE SET NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS attendance (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        member_id TEXT NOT NULL,
                        direction TEXT NOT NULL CHECK (direction IN ('IN', 'OUT')),
                        status TEXT NOT NULL,
                        confidence REAL NOT NULL,
                        event_time TEXT NOT NULL,
                        attendance_date TEXT NOT NULL,
                        FOREIGN KEY (member_id) REFERENCES members(member_id) ON DELETE CASCADE
                    );

                    CREATE INDEX IF NOT EXISTS idx_attendance_member_day
                        ON attendance (member_id, attendance_date, event_time);
                    """
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to initialize database: {exc}") from exc

    # Members -----------------------------------------------------------

    def upsert_member(
        self,
        member_id: str,
        name: str,
        employee_code: str,
        descriptor: np.ndarray,
        branch_id: str = "default",
        image_jpeg: Optional[bytes] = None,
        custom_start_time: Optional[str] = None,
    ) -> None:
        vector = np.asarray(descriptor, dtype=np.float32)
        if vector.ndim != 1:
            raise DatabaseError("Descriptor must be a 1D vector.")
        try:
            validate_display_name(name)
            validate_display_name(employee_code)
            if custom_start_time:
                parse_clock(custom_start_time)
        except ValueError as exc:
            raise DatabaseError(str(exc)) from exc

        now = datetime.now().isoformat(timespec="seconds")
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO members (
                        member_id, name, employee_code, branch_id, face_descriptor, descriptor_dim,
                        face_image, custom_start_time, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(member_id) DO UPDATE SET
                        name = excluded.name,
                        employee_code = excluded.employee_code,
                        branch_id = excluded.branch_id,
                        face_descriptor = excluded.face_descriptor,
                        descriptor_dim = excluded.descriptor_dim,
                        face_image = COALESCE(excluded.face_image, members.face_image),
                        custom_start_time = excluded.custom_start_time,
                        updated_at = excluded.updated_at
                    """,
                    (
                        member_id,
                        name,
                        employee_code,
                        branch_id,
                        vector.tobytes(),
                        vector.size,
                        image_jpeg,
                        custom_start_time,
                        now,
                        now,
                    ),
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to save member {member_id}: {exc}") from exc

    def list_members(self, branch_id: Optional[str] = None) -> List[MemberRecord]:
        sql = """
            SELECT member_id, name, employee_code, branch_id, face_descriptor, descriptor_dim,
                   custom_start_time, shift_id
            FROM members
        """
        params: tuple = ()
        if branch_id is not None:
            sql += " WHERE branch_id = ?"
            params = (branch_id,)
        sql += " ORDER BY created_at ASC, member_id ASC"

        try:
            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load members: {exc}") from exc

        return [
            MemberRecord(
                member_id=row["member_id"],
                name=row["name"],
                employee_code=row["employee_code"],
                branch_id=row["branch_id"],
                descriptor=np.frombuffer(
                    row["face_descriptor"], dtype=np.float32, count=row["descriptor_dim"]
                ).copy(),
                custom_start_time=row["custom_start_time"],
                shift_id=row["shift_id"],
            )
            for row in rows
        ]

    def load_gallery(self, branch_id: Optional[str] = None) -> List[LabeledDescriptor]:
        return [
            LabeledDescriptor(identity=record.identity, descriptors=[record.descriptor])
            for record in self.list_members(branch_id)
        ]

    def delete_member(self, member_id: str) -> bool:
        try:
            with self._connect() as conn:
                cursor = conn.execute("DELETE FROM members WHERE member_id = ?", (member_id,))
                return cursor.rowcount > 0
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to delete member {member_id}: {exc}") from exc

    # Shifts ------------------------------------------------------------

    def add_shift(self, name: str, start_time: str, end_time: str, branch_id: str = "default") -> int:
        try:
            parse_clock(start_time)
            parse_clock(end_time)
        except ValueError as exc:
            raise DatabaseError(str(exc)) from exc

        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "INSERT INTO shifts (name, start_time, end_time, branch_id) VALUES (?, ?, ?, ?)",
                    (name, start_time, end_time, branch_id),
                )
                return int(cursor.lastrowid)
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to save shift {name}: {exc}") from exc

    def list_shifts(self, branch_id: Optional[str] = None) -> List[ShiftRecord]:
        sql = "SELECT shift_id, name, start_time, end_time, branch_id FROM shifts"
        params: tuple = ()
        if branch_id is not None:
            sql += " WHERE branch_id = ?"
            params = (branch_id,)
        try:
            with self._connect() as conn:
                rows = conn.execute(sql + " ORDER BY start_time ASC", params).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load shifts: {exc}") from exc
        return [ShiftRecord(**dict(row)) for row in rows]

    def assign_shift(self, member_id: str, shift_id: Optional[int]) -> bool:
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "UPDATE members SET shift_id = ?, updated_at = ? WHERE member_id = ?",
                    (shift_id, datetime.now().isoformat(timespec="seconds"), member_id),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to assign shift to {member_id}: {exc}") from exc

    def get_expected_start(self, identity_id: str) -> Optional[str]:
        """Member's own start time if set, otherwise the start of the assigned shift."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT m.custom_start_time AS custom_start, s.start_time AS shift_start
                    FROM members m
                    LEFT JOIN shifts s ON s.shift_id = m.shift_id
                    WHERE m.member_id = ?
                    """,
                    (identity_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load schedule for {identity_id}: {exc}") from exc

        if row is None:
            return None
        return row["custom_start"] or row["shift_start"]

    # Attendance --------------------------------------------------------

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> AttendanceEvent:
        return AttendanceEvent(
            event_id=row["id"],
            identity_id=row["member_id"],
            timestamp=datetime.fromisoformat(row["event_time"]),
            direction=Direction(row["direction"]),
            status=AttendanceStatus(row["status"]),
            confidence=float(row["confidence"]),
        )

    @classmethod
    def _last_event(cls, conn: sqlite3.Connection, member_id: str, day: date) -> Optional[AttendanceEvent]:
        row = conn.execute(
            """
            SELECT id, member_id, direction, status, confidence, event_time
            FROM attendance
            WHERE member_id = ? AND attendance_date = ?
            ORDER BY event_time DESC, id DESC
            LIMIT 1
            """,
            (member_id, day.isoformat()),
        ).fetchone()
        return cls._row_to_event(row) if row is not None else None

    def last_event_today(self, identity_id: str, now: datetime) -> Optional[AttendanceEvent]:
        try:
            with self._connect() as conn:
                return self._last_event(conn, identity_id, now.date())
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load last attendance for {identity_id}: {exc}") from exc

    def record_event(
        self,
        identity_id: str,
        confidence: float,
        direction: Direction,
        status: AttendanceStatus,
        timestamp: datetime,
    ) -> AttendanceEvent | EventConflict:
        """Insert an event after re-checking the cooldown and direction.

        The read and the insert share one ``BEGIN IMMEDIATE`` transaction, so
        two concurrent scans of the same member cannot both write an IN.
        """
        conn = None
        try:
            conn = self._connect()
            conn.isolation_level = None
            conn.execute("BEGIN IMMEDIATE")
            try:
                member = conn.execute(
                    "SELECT 1 FROM members WHERE member_id = ?", (identity_id,)
                ).fetchone()
                if member is None:
                    conn.execute("ROLLBACK")
                    return EventConflict(reason=f"unknown member {identity_id}")

                last_event = self._last_event(conn, identity_id, timestamp.date())
                decision = self.debouncer.decide(identity_id, timestamp, last_event)
                if not decision.emit:
                    conn.execute("ROLLBACK")
                    return EventConflict(reason=decision.reason, last_event=last_event)
                if decision.direction is not direction:
                    conn.execute("ROLLBACK")
                    return EventConflict(
                        reason=f"expected {decision.direction.value}, got {direction.value}",
                        last_event=last_event,
                    )

                cursor = conn.execute(
                    """
                    INSERT INTO attendance (member_id, direction, status, confidence, event_time, attendance_date)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        identity_id,
                        direction.value,
                        status.value,
                        float(confidence),
                        timestamp.isoformat(timespec="microseconds"),
                        timestamp.date().isoformat(),
                    ),
                )
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to record attendance for {identity_id}: {exc}") from exc
        finally:
            if conn is not None:
                conn.close()

        return AttendanceEvent(
            event_id=int(cursor.lastrowid),
            identity_id=identity_id,
            timestamp=timestamp,
            direction=direction,
            status=status,
            confidence=float(confidence),
        )

    def events_for_day(self, day: date, branch_id: Optional[str] = None) -> List[AttendanceEvent]:
        sql = """
            SELECT a.id AS id, a.member_id AS member_id, a.direction AS direction, a.status AS status,
                   a.confidence AS confidence, a.event_time AS event_time
            FROM attendance a
            JOIN members m ON m.member_id = a.member_id
            WHERE a.attendance_date = ?
        """
        params: tuple = (day.isoformat(),)
        if branch_id is not None:
            sql += " AND m.branch_id = ?"
            params += (branch_id,)
        sql += " ORDER BY a.event_time DESC, a.id DESC"

        try:
            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load attendance for {day}: {exc}") from exc
        return [self._row_to_event(row) for row in rows]

    def daily_stats(self, day: date, branch_id: Optional[str] = None) -> dict[str, int]:
        """Distinct members with an IN event on ``day``, and how many of them were late."""
        sql = """
            SELECT
                COUNT(DISTINCT a.member_id) AS present,
                COUNT(DISTINCT CASE WHEN a.status = ? THEN a.member_id END) AS late
            FROM attendance a
            JOIN members m ON m.member_id = a.member_id
            WHERE a.attendance_date = ? AND a.direction = ?
        """
        params: tuple = (AttendanceStatus.LATE.value, day.isoformat(), Direction.IN.value)
        if branch_id is not None:
            sql += " AND m.branch_id = ?"
            params += (branch_id,)

        try:
            with self._connect() as conn:
                row = conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load attendance stats: {exc}") from exc

        return {"present": int(row["present"]), "late": int(row["late"])}
