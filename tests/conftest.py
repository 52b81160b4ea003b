import threading
from typing import List, Optional, Set

import numpy as np
import pytest

from classroom_face.camera import CameraBackend, VideoStreamManager
from classroom_face.camera_capture import OpenedCapture, PermissionState
from classroom_face.exceptions import DeviceNotFound
from classroom_face.face_engine import FaceEngine, FaceModels, ModelSource
from classroom_face.face_types import CameraDevice, Facing
from classroom_face.session import SessionListener


class FakeCapture:
    def __init__(self, camera_index: int, ready: bool = True):
        self.camera_index = camera_index
        self.ready = ready
        self.release_count = 0
        self.frame = np.zeros((480, 640, 3), dtype=np.uint8)

    @property
    def released(self) -> bool:
        return self.release_count > 0

    def read(self):
        if self.released or not self.ready:
            return False, None
        return True, self.frame.copy()

    def release(self) -> None:
        self.release_count += 1


class FakeCameraBackend(CameraBackend):
    name = "fake"

    def __init__(
        self,
        devices: Optional[List[CameraDevice]] = None,
        supported: bool = True,
        permission: Optional[PermissionState] = None,
        open_error: Optional[Exception] = None,
        frames_ready: bool = True,
        openable: Optional[Set[int]] = None,
    ):
        super().__init__(max_index=1, user_facing_index=0)
        self.devices = devices if devices is not None else [CameraDevice(index=0, backend="fake", facing=Facing.USER)]
        self.supported = supported
        self.permission = permission
        self.open_error = open_error
        self.frames_ready = frames_ready
        self.openable = openable
        self.captures: List[FakeCapture] = []
        self.opened = threading.Event()

    @property
    def active_count(self) -> int:
        return sum(1 for capture in self.captures if not capture.released)

    def is_supported(self) -> bool:
        return self.supported

    def can_query_permission(self) -> bool:
        return self.permission is not None

    def query_permission(self, camera_index: int) -> PermissionState:
        return self.permission

    def list_devices(self) -> List[CameraDevice]:
        return list(self.devices)

    def open(self, camera_index: int, constraints=None) -> OpenedCapture:
        if self.open_error is not None:
            raise self.open_error
        if self.openable is not None and camera_index not in self.openable:
            raise DeviceNotFound("No camera found on this device.")
        capture = FakeCapture(camera_index, ready=self.frames_ready)
        self.captures.append(capture)
        if constraints is not None:
            self.opened.set()
        return OpenedCapture(capture=capture, backend=self.name, width=640, height=480, fps=30)


class FakeModels(FaceModels):
    source = "fake"

    def __init__(self, descriptor=None):
        self.descriptor = descriptor
        self.error: Optional[Exception] = None
        self.calls = 0
        self.closed = False

    def describe(self, frame_bgr):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.descriptor is None:
            return None
        return np.asarray(self.descriptor, dtype=np.float32)

    def close(self) -> None:
        self.closed = True


class RecordingListener(SessionListener):
    def __init__(self):
        self.events = []

    def streaming_started(self, handle):
        self.events.append(("streaming_started", handle.camera_index))

    def streaming_failed(self, reason):
        self.events.append(("streaming_failed", reason))

    def scanning_paused(self):
        self.events.append(("scanning_paused",))

    def scanning_resumed(self):
        self.events.append(("scanning_resumed",))

    def match(self, event):
        self.events.append(("match", event))

    def attendance_marked(self, event):
        self.events.append(("attendance_marked", event))

    def haptic_pulse(self, pattern):
        self.events.append(("haptic_pulse", pattern))

    def face_presence(self, detected):
        self.events.append(("face_presence", detected))

    def captured(self, event):
        self.events.append(("captured", event))

    def names(self):
        return [event[0] for event in self.events]


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_engine(models: FaceModels, descriptor_length: int = 2) -> FaceEngine:
    return FaceEngine(sources=[ModelSource(name="fake", load=lambda: models)], descriptor_length=descriptor_length)


@pytest.fixture
def backend():
    return FakeCameraBackend()


@pytest.fixture
def streams(backend):
    return VideoStreamManager(backend=backend, timeout_seconds=1.0, camera_index=0, poll_seconds=0.01)


@pytest.fixture
def models():
    return FakeModels(descriptor=[0.2, 0.3])


@pytest.fixture
def engine(models):
    return make_engine(models)


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def clock():
    return FakeClock()
