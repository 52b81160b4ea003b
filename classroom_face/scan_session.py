from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass, replace
from typing import Callable, Dict, Optional, Sequence, Set

import numpy as np

from .camera import VideoStreamManager
from .config import (
    ATTENDANCE_COOLDOWN_SECONDS,
    AUTO_MARK_THRESHOLD,
    AUTO_MARK_THRESHOLD_RANGE,
    CONFIDENCE_THRESHOLD,
    CONFIDENCE_THRESHOLD_RANGE,
    HAPTIC_FEEDBACK,
    HAPTIC_PATTERN_MS,
    MATCH_THRESHOLD,
    SCAN_INTERVAL_MS,
    SCAN_INTERVAL_RANGE_MS,
)
from .exceptions import AttendanceError
from .face_engine import FaceEngine
from .face_types import (
    AttendanceStatus,
    Facing,
    MatchEvent,
    MatchResult,
    RosterEntry,
    ScanSnapshot,
    enrolled_templates,
)
from .matcher import FaceMatcher
from .permissions import CameraPermissionChecker
from .session import CameraSession, SessionListener, SessionState


@dataclass(frozen=True)
class ScanSettings:
    confidence_threshold: float = CONFIDENCE_THRESHOLD
    auto_mark_threshold: float = AUTO_MARK_THRESHOLD
    match_threshold: float = MATCH_THRESHOLD
    haptic_feedback: bool = HAPTIC_FEEDBACK
    scan_interval_ms: int = SCAN_INTERVAL_MS
    cooldown_seconds: float = ATTENDANCE_COOLDOWN_SECONDS

    def clamped(self) -> "ScanSettings":
        return replace(
            self,
            confidence_threshold=float(np.clip(self.confidence_threshold, *CONFIDENCE_THRESHOLD_RANGE)),
            auto_mark_threshold=float(np.clip(self.auto_mark_threshold, *AUTO_MARK_THRESHOLD_RANGE)),
            match_threshold=max(0.0, float(self.match_threshold)),
            haptic_feedback=bool(self.haptic_feedback),
            scan_interval_ms=int(np.clip(self.scan_interval_ms, *SCAN_INTERVAL_RANGE_MS)),
            cooldown_seconds=max(0.0, float(self.cooldown_seconds)),
        )

    def as_dict(self) -> dict:
        return asdict(self)


class ScanSession(CameraSession):
    """Periodic capture, match and auto-mark for one class.

    After an automatic mark the loop pauses for ``cooldown_seconds`` and then
    resumes by itself. A manual pause stays until ``resume()``.
    """

    def __init__(
        self,
        streams: VideoStreamManager,
        engine: FaceEngine,
        roster: Callable[[], Sequence[RosterEntry]],
        mark_attendance: Callable[[str, AttendanceStatus], None],
        marked_ids: Callable[[], Set[str]],
        settings: Optional[ScanSettings] = None,
        permissions: Optional[CameraPermissionChecker] = None,
        facing: Facing = Facing.USER,
        listener: Optional[SessionListener] = None,
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
        self.roster = roster
        self.mark_attendance = mark_attendance
        self.marked_ids = marked_ids
        self.settings = settings or ScanSettings()
        self.matcher = FaceMatcher(threshold=self.settings.match_threshold)
        self.last_match: Optional[MatchEvent] = None
        self._cooldown_until: Optional[float] = None

    def scan_once(self) -> Optional[MatchResult]:
        return self.tick()

    def pause(self) -> None:
        with self._lock:
            if self._state != SessionState.SCANNING:
                return
            self._state = SessionState.PAUSED
            self._cooldown_until = None
        self.logger.info("Scanning paused")
        self._notify("scanning_paused")

    def resume(self) -> None:
        with self._lock:
            if self._state != SessionState.PAUSED:
                return
            self._state = SessionState.SCANNING
            self._cooldown_until = None
            self.tick_count = 0
        self.logger.info("Scanning resumed")
        self._notify("scanning_resumed")

    def toggle_scanning(self) -> None:
        if self.is_scanning:
            self.pause()
        else:
            self.resume()

    def update_settings(self, **changes) -> ScanSettings:
        with self._lock:
            self.settings = replace(self.settings, **changes).clamped()
            settings = self.settings
        self.logger.info("Scan settings updated: %s", settings.as_dict())
        return settings

    def snapshot(self) -> ScanSnapshot:
        roster = list(self.roster())
        marked = self.marked_ids()
        with self._lock:
            handle = self.handle
            return ScanSnapshot(
                state=self._state.value,
                is_streaming=self._state in (SessionState.SCANNING, SessionState.PAUSED),
                is_scanning=self._state == SessionState.SCANNING,
                tick_count=self.tick_count,
                facing=self.facing.value,
                last_match=self.last_match,
                error=self.error,
                enrolled_count=sum(1 for entry in roster if entry.enrolled),
                marked_count=len(marked),
                roster_count=len(roster),
                device=f"camera {handle.camera_index} via {handle.backend}" if handle else None,
            )

    def _interval_seconds(self) -> float:
        with self._lock:
            interval = self.settings.scan_interval_ms / 1000.0
            if self._state == SessionState.PAUSED and self._cooldown_until is not None:
                # Wake when the cooldown ends, not a full interval later.
                interval = min(interval, self._cooldown_until - self.clock())
            return max(0.01, interval)

    def _on_loop_iteration(self) -> None:
        self._maybe_resume()

    def _clear_transient(self) -> None:
        self.last_match = None
        self._cooldown_until = None

    def _maybe_resume(self) -> None:
        with self._lock:
            if self._state != SessionState.PAUSED or self._cooldown_until is None:
                return
            if self.clock() < self._cooldown_until:
                return
            self._state = SessionState.SCANNING
            self._cooldown_until = None
            self.tick_count = 0
        self.logger.info("Cooldown finished; scanning resumed")
        self._notify("scanning_resumed")

    def _on_tick(self, token: threading.Event) -> Optional[MatchResult]:
        frame = self.sink.read_frame()
        try:
            descriptor = self.engine.extract(frame)
        except AttendanceError as exc:
            self.logger.warning("Scan tick failed: %s", exc)
            descriptor = None

        with self._lock:
            if not self._is_current(token):
                return None
            self.tick_count += 1
            settings = self.settings

        if descriptor is None:
            self._show_match(token, None)
            return None

        roster = list(self.roster())
        by_id: Dict[str, RosterEntry] = {entry.subject_id: entry for entry in roster}
        self.matcher.reload(enrolled_templates(roster))
        self.matcher.threshold = settings.match_threshold
        match = self.matcher.match(descriptor)
        if match is None or match.confidence <= settings.confidence_threshold or match.subject_id not in by_id:
            self._show_match(token, None)
            return None

        event = MatchEvent(
            subject_id=match.subject_id,
            name=by_id[match.subject_id].name,
            confidence=match.confidence,
        )
        self._show_match(token, event)

        if match.confidence > settings.auto_mark_threshold and match.subject_id not in self.marked_ids():
            self._auto_mark(token, event, settings)
        return match

    def _show_match(self, token: threading.Event, event: Optional[MatchEvent]) -> None:
        with self._lock:
            if not self._is_current(token):
                return
            changed = self.last_match != event
            self.last_match = event
        if changed:
            self._notify("match", event)

    def _auto_mark(self, token: threading.Event, event: MatchEvent, settings: ScanSettings) -> None:
        with self._lock:
            if not self._is_current(token) or self._state != SessionState.SCANNING:
                return
            self._state = SessionState.PAUSED
            self._cooldown_until = self.clock() + settings.cooldown_seconds

        try:
            self.mark_attendance(event.subject_id, AttendanceStatus.PRESENT)
        except Exception:
            self.logger.exception("Attendance callback failed for %s", event.subject_id)
        else:
            self.logger.info(
                "%s marked as present (%d%% confidence)",
                event.name,
                round(event.confidence * 100),
            )
            self._notify("attendance_marked", event)
            if settings.haptic_feedback:
                self._notify("haptic_pulse", HAPTIC_PATTERN_MS)
        self._notify("scanning_paused")
