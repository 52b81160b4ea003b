import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import numpy as np

from .exceptions import DatabaseError
from .face_types import AttendanceStatus, RosterEntry


@dataclass
class AttendanceRecord:
    id: int
    student_id: str
    name: str
    status: str
    marked_at: str
    attendance_date: str


class RosterStore:
    """Local students, face descriptors and daily attendance for one class."""

    def __init__(self, db_path: Path, faces_dir: Path, class_name: str = "default"):
        self.db_path = Path(db_path)
        self.faces_dir = Path(faces_dir)
        self.class_name = class_name
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.faces_dir.mkdir(parents=True, exist_ok=True)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _initialize(self) -> None:
        try:
            with self._connect() as conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS students (
                        student_id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        roll_number TEXT NOT NULL DEFAULT '',
                        class_name TEXT NOT NULL,
                        face_descriptor BLOB,
                        descriptor_dim INTEGER,
                        photo_path TEXT,
                        face_enrolled_at TEXT,
                        created_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS attendance (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT NOT NULL,
                        status TEXT NOT NULL,
                        marked_at TEXT NOT NULL,
                        attendance_date TEXT NOT NULL,
                        FOREIGN KEY (student_id) REFERENCES students(student_id),
                        -- One attendance row per student per day.
                        UNIQUE(student_id, attendance_date)
                    );
                    """
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to initialize database: {exc}") from exc

    def add_student(self, student_id: str, name: str, roll_number: str = "") -> None:
        student_id = student_id.strip()
        name = name.strip()
        if not student_id:
            raise DatabaseError("Student ID cannot be empty.")
        if student_id in (".", "..") or any(sep in student_id for sep in ("/", "\\")):
            raise DatabaseError(f"Student ID {student_id!r} cannot contain path separators.")
        if not name:
            raise DatabaseError("Student name cannot be empty.")

        now = datetime.now().isoformat(timespec="seconds")
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO students (student_id, name, roll_number, class_name, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(student_id) DO UPDATE SET
                        name = excluded.name,
                        roll_number = excluded.roll_number
                    """,
                    (student_id, name, roll_number.strip(), self.class_name, now),
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to save student {student_id}: {exc}") from exc

    def list_students(self) -> List[RosterEntry]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT student_id, name, roll_number, face_descriptor, descriptor_dim
                    FROM students
                    WHERE class_name = ?
                    ORDER BY student_id ASC
                    """,
                    (self.class_name,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load students: {exc}") from exc

        entries: List[RosterEntry] = []
        for row in rows:
            descriptor: Optional[np.ndarray] = None
            if row["face_descriptor"] is not None and row["descriptor_dim"]:
                descriptor = np.frombuffer(
                    row["face_descriptor"], dtype=np.float32, count=row["descriptor_dim"]
                ).copy()
            entries.append(
                RosterEntry(
                    subject_id=row["student_id"],
                    name=row["name"],
                    roll_label=row["roll_number"],
                    descriptor=descriptor,
                )
            )
        return entries

    def save_face(self, student_id: str, descriptor: np.ndarray, image: bytes) -> Path:
        vector = np.asarray(descriptor, dtype=np.float32).reshape(-1)
        if vector.size == 0:
            raise DatabaseError("Face descriptor cannot be empty.")

        now = datetime.now()
        photo_path = self.faces_dir / f"{Path(student_id).name}_face_{int(now.timestamp() * 1000)}.jpg"
        try:
            photo_path.write_bytes(image)
        except OSError as exc:
            raise DatabaseError(f"Failed to store face photo for {student_id}: {exc}") from exc

        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE students
                    SET face_descriptor = ?, descriptor_dim = ?, photo_path = ?, face_enrolled_at = ?
                    WHERE student_id = ?
                    """,
                    (vector.tobytes(), vector.size, str(photo_path), now.isoformat(timespec="seconds"), student_id),
                )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to save face for {student_id}: {exc}") from exc
        if cursor.rowcount == 0:
            photo_path.unlink(missing_ok=True)
            raise DatabaseError(f"Student {student_id} not found.")
        return photo_path

    def mark_attendance(self, student_id: str, status: AttendanceStatus, marked_at: Optional[datetime] = None) -> bool:
        marked_at = marked_at or datetime.now()
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO attendance (student_id, status, marked_at, attendance_date)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        student_id,
                        AttendanceStatus(status).value,
                        marked_at.isoformat(timespec="seconds"),
                        marked_at.date().isoformat(),
                    ),
                )
                return cursor.rowcount == 1
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to mark attendance for {student_id}: {exc}") from exc

    def today_marked_ids(self) -> set[str]:
        today = datetime.now().date().isoformat()
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT student_id FROM attendance WHERE attendance_date = ?",
                    (today,),
                ).fetchall()
                return {row["student_id"] for row in rows}
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to query today's attendance: {exc}") from exc

    def attendance_for(self, attendance_date: str) -> List[AttendanceRecord]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT a.id, a.student_id, s.name, a.status, a.marked_at, a.attendance_date
                    FROM attendance a
                    JOIN students s ON s.student_id = a.student_id
                    WHERE a.attendance_date = ? AND s.class_name = ?
                    ORDER BY a.marked_at ASC
                    """,
                    (attendance_date, self.class_name),
                ).fetchall()
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to load attendance: {exc}") from exc

        return [
            AttendanceRecord(
                id=row["id"],
                student_id=row["student_id"],
                name=row["name"],
                status=row["status"],
                marked_at=row["marked_at"],
                attendance_date=row["attendance_date"],
            )
            for row in rows
        ]
