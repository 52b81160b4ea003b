from classroom_face.camera import VideoStreamManager
from classroom_face.camera_capture import PermissionState
from classroom_face.diagnostics import run_camera_checks
from classroom_face.face_engine import FaceEngine, ModelSource
from classroom_face.face_types import CameraDevice

from conftest import FakeCameraBackend


def _statuses(report):
    return [check.status for check in report.checks]


def test_all_checks_pass(streams, engine, backend):
    report = run_camera_checks(streams, engine)

    assert report.passed
    assert _statuses(report) == ["success"] * 5
    assert len(report.devices) == 1
    assert "640x480" in report.checks[3].message
    assert backend.active_count == 0
    assert engine.models_loaded


def test_permission_failure_stops_later_checks(engine):
    backend = FakeCameraBackend(permission=PermissionState.DENIED)
    report = run_camera_checks(VideoStreamManager(backend=backend), engine)

    assert report.has_errors
    assert _statuses(report) == ["success", "error", "pending", "pending", "pending"]
    assert not engine.models_loaded


def test_missing_devices_is_reported():
    backend = FakeCameraBackend(devices=[])
    engine = FaceEngine(sources=[], descriptor_length=2)
    report = run_camera_checks(VideoStreamManager(backend=backend), engine)

    assert report.checks[2].message == "No cameras found"
    assert report.as_dict()["passed"] is False


def test_model_failure_is_the_last_check(streams):
    def _broken():
        raise OSError("offline")

    engine = FaceEngine(sources=[ModelSource("only", _broken)], descriptor_length=2)
    report = run_camera_checks(streams, engine)

    assert _statuses(report) == ["success"] * 4 + ["error"]
    assert "offline" in report.checks[4].message


def test_checks_use_the_camera_that_would_stream(engine):
    backend = FakeCameraBackend(devices=[CameraDevice(index=2, backend="fake")], openable={2})
    report = run_camera_checks(VideoStreamManager(backend=backend, camera_index=0, poll_seconds=0.01), engine)

    assert report.passed
    assert backend.active_count == 0
