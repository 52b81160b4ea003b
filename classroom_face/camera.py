from __future__ import annotations

import threading
import time
from typing import List, Optional

import cv2
import numpy as np

from .camera_capture import (
    OpenedCapture,
    PermissionState,
    Range,
    StreamConstraints,
    camera_api_available,
    can_query_permission,
    configure_capture,
    open_camera_capture,
    query_permission,
)
from .camera_discovery import discover_cameras, pick_camera_index
from .config import (
    ACQUISITION_TIMEOUT_SECONDS,
    CAMERA_INDEX,
    CAMERA_SCAN_MAX_INDEX,
    FRAME_FPS,
    FRAME_FPS_MAX,
    FRAME_FPS_MIN,
    FRAME_HEIGHT,
    FRAME_HEIGHT_MAX,
    FRAME_HEIGHT_MIN,
    FRAME_WIDTH,
    FRAME_WIDTH_MAX,
    FRAME_WIDTH_MIN,
)
from .exceptions import AcquisitionCancelled, AcquisitionTimeout, CameraError
from .face_types import CameraDevice, Facing
from .logger import setup_logger


def default_constraints() -> StreamConstraints:
    return StreamConstraints(
        width=Range(ideal=FRAME_WIDTH, min=FRAME_WIDTH_MIN, max=FRAME_WIDTH_MAX),
        height=Range(ideal=FRAME_HEIGHT, min=FRAME_HEIGHT_MIN, max=FRAME_HEIGHT_MAX),
        fps=Range(ideal=FRAME_FPS, min=FRAME_FPS_MIN, max=FRAME_FPS_MAX),
    )


class CameraBackend:
    """Platform boundary for camera access. The default talks to OpenCV."""

    name = "opencv"

    def __init__(self, max_index: int = CAMERA_SCAN_MAX_INDEX, user_facing_index: int = CAMERA_INDEX):
        self.max_index = max_index
        self.user_facing_index = user_facing_index

    def is_supported(self) -> bool:
        return camera_api_available()

    def can_query_permission(self) -> bool:
        return can_query_permission()

    def query_permission(self, camera_index: int) -> PermissionState:
        return query_permission(camera_index)

    def list_devices(self) -> List[CameraDevice]:
        return discover_cameras(max_index=self.max_index, user_facing_index=self.user_facing_index)

    def open(self, camera_index: int, constraints: Optional[StreamConstraints] = None) -> OpenedCapture:
        cap, backend_name = open_camera_capture(camera_index)
        cv2.setUseOptimized(True)
        if constraints is None:
            return OpenedCapture(capture=cap, backend=backend_name, width=0, height=0, fps=0)
        try:
            width, height, fps = configure_capture(cap, constraints)
        except Exception:
            cap.release()
            raise
        return OpenedCapture(capture=cap, backend=backend_name, width=width, height=height, fps=fps)


class CameraHandle:
    def __init__(self, opened: OpenedCapture, camera_index: int, facing: Facing):
        self.camera_index = camera_index
        self.facing = facing
        self.backend = opened.backend
        self.width = opened.width
        self.height = opened.height
        self.fps = opened.fps
        self._capture = opened.capture
        self._lock = threading.Lock()
        self._released = False

    @property
    def active(self) -> bool:
        return not self._released

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._released:
                return None
            ok, frame = self._capture.read()
        if not ok or frame is None or frame.size == 0:
            return None
        return frame

    def stop(self) -> bool:
        with self._lock:
            if self._released:
                return False
            self._released = True
            self._capture.release()
        return True


class VideoSink:
    """Where frames of the bound camera are read from."""

    def __init__(self, name: str = "preview"):
        self.name = name
        self.source: Optional[CameraHandle] = None
        self.frame_width = 0
        self.frame_height = 0
        self.ready = False

    def bind(self, handle: CameraHandle) -> None:
        self.source = handle
        self.ready = False

    def clear(self) -> None:
        self.source = None
        self.ready = False
        self.frame_width = 0
        self.frame_height = 0

    def read_frame(self) -> Optional[np.ndarray]:
        source = self.source
        if source is None:
            return None
        frame = source.read()
        if frame is not None:
            self.frame_height, self.frame_width = frame.shape[:2]
        return frame


class VideoStreamManager:
    def __init__(
        self,
        backend: Optional[CameraBackend] = None,
        constraints: Optional[StreamConstraints] = None,
        timeout_seconds: float = ACQUISITION_TIMEOUT_SECONDS,
        camera_index: int = CAMERA_INDEX,
        poll_seconds: float = 0.03,
    ):
        self.backend = backend or CameraBackend()
        self.constraints = constraints or default_constraints()
        self.timeout_seconds = timeout_seconds
        self.camera_index = camera_index
        self.poll_seconds = poll_seconds
        self.logger = setup_logger(self.__class__.__name__)
        self._lock = threading.Lock()
        self._active: Optional[CameraHandle] = None
        self._devices: Optional[List[CameraDevice]] = None

    @property
    def active_handle(self) -> Optional[CameraHandle]:
        with self._lock:
            return self._active

    def devices(self, refresh: bool = False) -> List[CameraDevice]:
        if self._devices is None or refresh:
            try:
                self._devices = self.backend.list_devices()
            except Exception as exc:
                self.logger.warning("Camera enumeration failed: %s", exc)
                self._devices = []
        return list(self._devices)

    def resolve_index(self, facing: Facing) -> int:
        """Index that `acquire` would open for `facing`."""
        return pick_camera_index(facing, self.devices(), self.camera_index)

    def acquire(
        self,
        sink: VideoSink,
        facing: Facing = Facing.USER,
        cancel: Optional[threading.Event] = None,
    ) -> CameraHandle:
        self.release_sink(sink)
        with self._lock:
            previous = self._active
            self._active = None
        if previous is not None:
            self.release(previous)

        if cancel is not None and cancel.is_set():
            raise AcquisitionCancelled("Camera start cancelled.")

        camera_index = self.resolve_index(facing)
        self.logger.info("Requesting camera %s (facing=%s)", camera_index, facing.value)
        try:
            opened = self.backend.open(camera_index, self.constraints)
        except CameraError:
            raise
        except Exception as exc:
            raise CameraError(f"Camera setup failed: {exc}") from exc

        handle = CameraHandle(opened, camera_index=camera_index, facing=facing)
        with self._lock:
            self._active = handle

        try:
            sink.bind(handle)
            self._await_ready(sink, cancel)
        except BaseException:
            self.release(handle)
            sink.clear()
            raise

        self.logger.info(
            "Camera %s ready via %s backend (%sx%s)",
            camera_index,
            handle.backend,
            sink.frame_width,
            sink.frame_height,
        )
        return handle

    def release(self, handle: Optional[CameraHandle]) -> None:
        if handle is None:
            return
        if handle.stop():
            self.logger.info("Camera %s released", handle.camera_index)
        with self._lock:
            if self._active is handle:
                self._active = None

    def release_sink(self, sink: VideoSink) -> None:
        if sink.source is not None:
            self.release(sink.source)
        sink.clear()

    def _await_ready(self, sink: VideoSink, cancel: Optional[threading.Event]) -> None:
        deadline = time.monotonic() + self.timeout_seconds
        while True:
            if cancel is not None and cancel.is_set():
                raise AcquisitionCancelled("Camera start cancelled.")
            if sink.read_frame() is not None:
                sink.ready = True
                return
            if time.monotonic() >= deadline:
                raise AcquisitionTimeout("Video loading timeout")
            if cancel is not None:
                cancel.wait(self.poll_seconds)
            else:
                time.sleep(self.poll_seconds)
