from typing import Set

from .database import RosterStore
from .face_types import AttendanceStatus
from .logger import setup_logger


class AttendanceService:
    def __init__(self, store: RosterStore):
        self.store = store
        self.logger = setup_logger(self.__class__.__name__)

    def mark(self, student_id: str, status: AttendanceStatus = AttendanceStatus.PRESENT) -> None:
        if self.store.mark_attendance(student_id, status):
            self.logger.info("Attendance recorded: %s (%s)", student_id, AttendanceStatus(status).value)

    def marked_ids(self) -> Set[str]:
        # Read per call so the set follows the calendar day.
        return self.store.today_marked_ids()
