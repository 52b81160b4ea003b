from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional, Sequence, Set

import numpy as np

from .camera import VideoStreamManager
from .config import PRESENCE_INTERVAL_MS
from .exceptions import AttendanceError, CameraError, NoFaceDetected
from .face_engine import FaceEngine
from .face_types import CaptureEvent, Facing, RosterEntry
from .frame_capture import capture_still
from .logger import setup_logger
from .permissions import CameraPermissionChecker
from .session import CameraSession, SessionListener


SaveFace = Callable[[str, np.ndarray, bytes], None]


class EnrollmentCapture(CameraSession):
    """One-shot face capture for enrollment.

    The background loop only answers "is there a face?" for the operator.
    The enrolled descriptor comes from the frame read inside ``capture()``,
    and the JPEG is encoded from that same frame.
    """

    def __init__(
        self,
        streams: VideoStreamManager,
        engine: FaceEngine,
        on_capture: Optional[Callable[[CaptureEvent], None]] = None,
        subject_name: Optional[str] = None,
        permissions: Optional[CameraPermissionChecker] = None,
        facing: Facing = Facing.USER,
        listener: Optional[SessionListener] = None,
        presence_interval_ms: int = PRESENCE_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(
            streams=streams,
            engine=engine,
            permissions=permissions,
            facing=facing,
            listener=listener,
            clock=clock,
        )
        self.on_capture = on_capture
        self.subject_name = subject_name
        self.presence_interval_ms = presence_interval_ms
        self.face_detected = False

    def capture(self) -> CaptureEvent:
        if not self.is_streaming:
            raise CameraError("Camera is not streaming.")

        with self._tick_lock:
            frame = self.sink.read_frame()
            if frame is None:
                raise CameraError("No frame available from the camera.")
            descriptor = self.engine.extract(frame)
            if descriptor is None:
                raise NoFaceDetected("No face detected. Please position your face clearly in the frame.")
            image = capture_still(frame)

        event = CaptureEvent(descriptor=descriptor, image=image)
        self.logger.info("Face captured%s", f" for {self.subject_name}" if self.subject_name else "")
        self._notify("captured", event)
        try:
            if self.on_capture is not None:
                self.on_capture(event)
        finally:
            self.close()
        return event

    def _interval_seconds(self) -> float:
        return max(0.01, self.presence_interval_ms / 1000.0)

    def _clear_transient(self) -> None:
        self.face_detected = False

    def _on_tick(self, token: threading.Event) -> bool:
        frame = self.sink.read_frame()
        try:
            detected = self.engine.extract(frame) is not None
        except AttendanceError as exc:
            self.logger.warning("Face detection error: %s", exc)
            detected = False

        with self._lock:
            if not self._is_current(token):
                return False
            self.tick_count += 1
            changed = detected != self.face_detected
            self.face_detected = detected
        if changed:
            self._notify("face_presence", detected)
        return detected


class BatchEnrollment:
    """Walks the not-yet-enrolled subjects one capture (or skip) at a time."""

    def __init__(
        self,
        roster: Sequence[RosterEntry],
        save_face: SaveFace,
        on_complete: Callable[[Set[str]], None],
        capture_factory: Optional[Callable[[RosterEntry, Callable[[CaptureEvent], None]], EnrollmentCapture]] = None,
    ):
        self.pending: List[RosterEntry] = [entry for entry in roster if not entry.enrolled]
        self.save_face = save_face
        self.on_complete = on_complete
        self.capture_factory = capture_factory
        self.logger = setup_logger(self.__class__.__name__)
        self.index = 0
        self.enrolled: Set[str] = set()
        self.completed = not self.pending
        self._notified = False

    @property
    def current(self) -> Optional[RosterEntry]:
        if self.index < len(self.pending):
            return self.pending[self.index]
        return None

    @property
    def progress(self) -> float:
        if not self.pending:
            return 1.0
        return len(self.enrolled) / float(len(self.pending))

    def begin_current(self) -> EnrollmentCapture:
        entry = self.current
        if entry is None:
            raise AttendanceError("No student left to enroll.")
        if self.capture_factory is None:
            raise AttendanceError("No capture factory configured.")
        return self.capture_factory(entry, self.record_capture)

    def record_capture(self, event: CaptureEvent) -> bool:
        entry = self.current
        if entry is None:
            return False
        try:
            self.save_face(entry.subject_id, event.descriptor, event.image)
        except Exception:
            self.logger.exception("Failed to enroll %s", entry.name)
            return False

        self.enrolled.add(entry.subject_id)
        self.logger.info("%s enrolled successfully", entry.name)
        self._advance()
        return True

    def skip(self) -> None:
        entry = self.current
        if entry is None:
            return
        self.logger.info("Skipped %s", entry.name)
        self._advance()

    def _advance(self) -> None:
        self.index += 1
        if self.index < len(self.pending):
            return
        self.completed = True
        if self._notified:
            return
        self._notified = True
        self.logger.info("Batch enrollment complete: %d students enrolled", len(self.enrolled))
        self.on_complete(set(self.enrolled))
