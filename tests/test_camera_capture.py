import cv2
import pytest

from classroom_face import camera_capture
from classroom_face.camera_capture import (
    PermissionState,
    Range,
    StreamConstraints,
    classify_open_failure,
    configure_capture,
    open_camera_capture,
    query_permission,
)
from classroom_face.exceptions import (
    ConstraintUnsatisfiable,
    DeviceBusy,
    DeviceNotFound,
    PermissionDenied,
    PolicyBlocked,
)


CONSTRAINTS = StreamConstraints(
    width=Range(ideal=640, min=320, max=1280),
    height=Range(ideal=480, min=240, max=720),
    fps=Range(ideal=30, min=15, max=60),
)


class ReportingCapture:
    def __init__(self, reported):
        self.reported = reported
        self.requested = {}

    def set(self, prop, value):
        self.requested[prop] = value
        return True

    def get(self, prop):
        return self.reported.get(prop, 0)


@pytest.fixture
def node(tmp_path, monkeypatch):
    path = tmp_path / "video2"
    monkeypatch.setattr(camera_capture, "_device_node", lambda camera_index: path)
    return path


def test_missing_device_node_is_not_found(node):
    assert isinstance(classify_open_failure(2), DeviceNotFound)
    assert query_permission(2) == PermissionState.PROMPT


def test_unreadable_device_node_is_permission_denied(node, monkeypatch):
    node.touch()
    monkeypatch.setattr(camera_capture.os, "access", lambda path, mode: False)

    assert isinstance(classify_open_failure(2), PermissionDenied)
    assert query_permission(2) == PermissionState.DENIED


def test_accessible_node_that_will_not_open_is_busy(node, monkeypatch):
    node.touch()
    monkeypatch.setattr(camera_capture.os, "access", lambda path, mode: True)

    assert isinstance(classify_open_failure(2), DeviceBusy)
    assert query_permission(2) == PermissionState.GRANTED


def test_platform_without_device_nodes_reports_not_found(monkeypatch):
    monkeypatch.setattr(camera_capture, "_device_node", lambda camera_index: None)

    error = classify_open_failure(3)
    assert isinstance(error, DeviceNotFound)
    assert "3" in str(error)
    assert query_permission(3) == PermissionState.PROMPT


def test_blocked_camera_never_reaches_opencv(monkeypatch):
    def _fail(*args):
        raise AssertionError("VideoCapture should not be constructed")

    monkeypatch.setattr(camera_capture, "CAMERA_ALLOWED", False)
    monkeypatch.setattr(camera_capture.cv2, "VideoCapture", _fail)

    with pytest.raises(PolicyBlocked):
        open_camera_capture(0)


def test_reported_size_outside_range_is_unsatisfiable():
    cap = ReportingCapture({cv2.CAP_PROP_FRAME_WIDTH: 100, cv2.CAP_PROP_FRAME_HEIGHT: 480, cv2.CAP_PROP_FPS: 30})

    with pytest.raises(ConstraintUnsatisfiable, match="100x480"):
        configure_capture(cap, CONSTRAINTS)
    assert cap.requested[cv2.CAP_PROP_FRAME_WIDTH] == 640


def test_unreported_properties_fall_back_to_ideals():
    cap = ReportingCapture({})

    assert configure_capture(cap, CONSTRAINTS) == (640, 480, 30)


def test_reported_values_within_range_are_returned():
    cap = ReportingCapture({cv2.CAP_PROP_FRAME_WIDTH: 1280, cv2.CAP_PROP_FRAME_HEIGHT: 720, cv2.CAP_PROP_FPS: 29.97})

    assert configure_capture(cap, CONSTRAINTS) == (1280, 720, 30)
