from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Callable, Optional

from .camera import CameraHandle, VideoSink, VideoStreamManager
from .exceptions import AcquisitionCancelled, AttendanceError
from .face_engine import FaceEngine
from .face_types import CaptureEvent, Facing, MatchEvent
from .logger import setup_logger
from .permissions import CameraPermissionChecker


class SessionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    SCANNING = "scanning"
    PAUSED = "paused"
    STOPPED = "stopped"


STREAMING_STATES = (SessionState.SCANNING, SessionState.PAUSED)
LIVE_STATES = (SessionState.STARTING, SessionState.SCANNING, SessionState.PAUSED)


class SessionListener:
    """Lifecycle and result notifications. Override what you need."""

    def streaming_started(self, handle: CameraHandle) -> None:
        pass

    def streaming_failed(self, reason: str) -> None:
        pass

    def scanning_paused(self) -> None:
        pass

    def scanning_resumed(self) -> None:
        pass

    def match(self, event: Optional[MatchEvent]) -> None:
        pass

    def attendance_marked(self, event: MatchEvent) -> None:
        pass

    def haptic_pulse(self, pattern: tuple[int, ...]) -> None:
        pass

    def face_presence(self, detected: bool) -> None:
        pass

    def captured(self, event: CaptureEvent) -> None:
        pass


class CameraSession:
    """Camera lifecycle shared by the scan loop and enrollment capture.

    ``open()`` runs startup (support check, permission check, acquisition,
    model load) and then a repeating tick on a worker thread. Every open gets
    its own cancel token; ``close()`` sets it, releases the camera and joins
    the worker. Results computed under a cancelled token are dropped.
    """

    join_timeout_seconds = 5.0

    def __init__(
        self,
        streams: VideoStreamManager,
        engine: FaceEngine,
        permissions: Optional[CameraPermissionChecker] = None,
        facing: Facing = Facing.USER,
        listener: Optional[SessionListener] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.streams = streams
        self.engine = engine
        self.permissions = permissions or CameraPermissionChecker(streams.backend, camera_index=streams.camera_index)
        self.facing = facing
        self.listener = listener or SessionListener()
        self.clock = clock
        self.sink = VideoSink(name=self.__class__.__name__)
        self.logger = setup_logger(self.__class__.__name__)

        self.handle: Optional[CameraHandle] = None
        self.error: Optional[str] = None
        self.tick_count = 0

        self._lock = threading.RLock()
        self._tick_lock = threading.Lock()
        self._state = SessionState.IDLE
        self._token: Optional[threading.Event] = None
        self._startup_done = threading.Event()
        self._worker: Optional[threading.Thread] = None

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def is_streaming(self) -> bool:
        return self.state in STREAMING_STATES

    @property
    def is_scanning(self) -> bool:
        return self.state == SessionState.SCANNING

    def open(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        with self._lock:
            if self._state in LIVE_STATES:
                return
            token = self._begin()
            worker = threading.Thread(
                target=self._run,
                args=(token,),
                name=f"{self.__class__.__name__.lower()}-worker",
                daemon=True,
            )
            self._worker = worker
        worker.start()
        if wait:
            self.wait_until_started(timeout)

    def start(self) -> bool:
        """Run startup on the calling thread without the repeating tick."""
        with self._lock:
            if self._state in LIVE_STATES:
                return self._state in STREAMING_STATES
            token = self._begin()
        return self._startup(token)

    def wait_until_started(self, timeout: Optional[float] = None) -> bool:
        self._startup_done.wait(timeout)
        return self.is_streaming

    def close(self) -> None:
        with self._lock:
            token = self._token
            worker = self._worker
            previous = self._state
            if token is not None:
                token.set()
            self._state = SessionState.STOPPED
            self.handle = None
            self._worker = None
            self._clear_transient()

        self.streams.release_sink(self.sink)
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=self.join_timeout_seconds)
        if previous in LIVE_STATES:
            self.logger.info("Session closed (was %s)", previous.value)

    def switch_facing(self, facing: Optional[Facing] = None) -> None:
        was_live = self.state in LIVE_STATES
        self.close()
        self.facing = facing or self.facing.toggled()
        self.logger.info("Camera facing set to %s", self.facing.value)
        if was_live:
            self.open()

    def tick(self):
        """Run one tick unless another is still in flight or the session is not active."""
        with self._lock:
            token = self._token
            if token is None or token.is_set() or not self._should_tick():
                return None
        if not self._tick_lock.acquire(blocking=False):
            self.logger.debug("Skipping tick; previous tick still running")
            return None
        try:
            return self._on_tick(token)
        finally:
            self._tick_lock.release()

    # Hooks for subclasses.

    def _interval_seconds(self) -> float:
        raise NotImplementedError

    def _should_tick(self) -> bool:
        return self._state == SessionState.SCANNING

    def _on_tick(self, token: threading.Event):
        raise NotImplementedError

    def _on_loop_iteration(self) -> None:
        return None

    def _clear_transient(self) -> None:
        return None

    # Internals.

    def _begin(self) -> threading.Event:
        token = threading.Event()
        self._token = token
        self._state = SessionState.STARTING
        self._startup_done = threading.Event()
        self.error = None
        self.tick_count = 0
        return token

    def _is_current(self, token: threading.Event) -> bool:
        return self._token is token and not token.is_set()

    def _run(self, token: threading.Event) -> None:
        if not self._startup(token):
            return
        try:
            self._loop(token)
        except Exception as exc:
            self.logger.exception("Session loop crashed")
            self._fail(token, f"Unexpected error: {exc}")

    def _loop(self, token: threading.Event) -> None:
        while not token.is_set():
            if token.wait(self._interval_seconds()):
                break
            self._on_loop_iteration()
            self.tick()

    def _startup(self, token: threading.Event) -> bool:
        try:
            return self._start_stream(token)
        finally:
            self._startup_done.set()

    def _start_stream(self, token: threading.Event) -> bool:
        support = self.permissions.check_support()
        if not support.supported:
            self._fail(token, support.error or "Camera not supported")
            return False

        permission = self.permissions.request_permission(self.streams.resolve_index(self.facing))
        if not permission.granted:
            self._fail(token, permission.error or "Camera permission denied")
            return False

        try:
            handle = self.streams.acquire(self.sink, self.facing, cancel=token)
        except AcquisitionCancelled:
            self.logger.info("Camera start cancelled")
            return False
        except AttendanceError as exc:
            self._fail(token, str(exc))
            return False

        try:
            self.engine.ensure_models_loaded()
        except AttendanceError as exc:
            self._discard(handle)
            self._fail(token, str(exc))
            return False

        with self._lock:
            current = self._is_current(token)
            if current:
                self.handle = handle
                self._state = SessionState.SCANNING
        if not current:
            self._discard(handle)
            return False

        self.logger.info("Camera started on index %s", handle.camera_index)
        self._notify("streaming_started", handle)
        return True

    def _discard(self, handle: CameraHandle) -> None:
        self.streams.release(handle)
        if self.sink.source is handle:
            self.sink.clear()

    def _fail(self, token: threading.Event, message: str) -> None:
        with self._lock:
            if not self._is_current(token):
                return
            token.set()
            self._state = SessionState.STOPPED
            self.error = message
            self.handle = None
            self._clear_transient()
        self.streams.release_sink(self.sink)
        self.logger.error("Camera session failed: %s", message)
        self._notify("streaming_failed", message)

    def _notify(self, name: str, *args) -> None:
        try:
            getattr(self.listener, name)(*args)
        except Exception:
            self.logger.exception("Listener %s failed", name)
