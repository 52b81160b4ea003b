from classroom_face.camera_capture import PermissionState
from classroom_face.exceptions import CameraErrorKind, DeviceBusy, DeviceNotFound, PermissionDenied
from classroom_face.permissions import CameraPermissionChecker

from conftest import FakeCameraBackend


def test_supported_platform_passes():
    checker = CameraPermissionChecker(FakeCameraBackend())
    assert checker.check_support().supported


def test_unsupported_platform_reports_message():
    result = CameraPermissionChecker(FakeCameraBackend(supported=False)).check_support()
    assert not result.supported
    assert result.error == "Camera access not supported on this platform"


def test_denied_permission_short_circuits_without_opening():
    backend = FakeCameraBackend(permission=PermissionState.DENIED)
    result = CameraPermissionChecker(backend).request_permission()

    assert not result.granted
    assert result.reason == CameraErrorKind.PERMISSION_DENIED
    assert "denied" in result.error
    assert backend.captures == []


def test_probe_open_is_released_immediately():
    backend = FakeCameraBackend(permission=PermissionState.PROMPT)
    result = CameraPermissionChecker(backend).request_permission()

    assert result.granted
    assert len(backend.captures) == 1
    assert backend.active_count == 0


def test_open_errors_map_to_user_messages():
    cases = [
        (PermissionDenied("denied"), CameraErrorKind.PERMISSION_DENIED, "Camera access denied"),
        (DeviceNotFound("missing"), CameraErrorKind.DEVICE_NOT_FOUND, "No camera found"),
        (DeviceBusy("busy"), CameraErrorKind.DEVICE_BUSY, "another application"),
    ]
    for error, kind, text in cases:
        result = CameraPermissionChecker(FakeCameraBackend(open_error=error)).request_permission()
        assert not result.granted
        assert result.reason == kind
        assert text in result.error


def test_unexpected_open_error_is_other():
    result = CameraPermissionChecker(FakeCameraBackend(open_error=OSError("boom"))).request_permission()
    assert not result.granted
    assert result.reason == CameraErrorKind.OTHER


def test_enumerate_devices_swallows_failures():
    backend = FakeCameraBackend()

    def _boom():
        raise RuntimeError("enumeration failed")

    backend.list_devices = _boom
    assert CameraPermissionChecker(backend).enumerate_devices() == []
