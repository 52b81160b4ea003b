from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .camera import VideoSink, VideoStreamManager
from .exceptions import AttendanceError
from .face_engine import FaceEngine
from .face_types import CameraDevice, Facing
from .logger import setup_logger
from .permissions import CameraPermissionChecker


CHECK_NAMES = ("Platform Support", "Camera Permission", "Camera Devices", "Video Stream", "Face Models")


@dataclass
class CheckResult:
    name: str
    status: str = "pending"
    message: Optional[str] = None


@dataclass
class DiagnosticsReport:
    checks: List[CheckResult] = field(default_factory=lambda: [CheckResult(name) for name in CHECK_NAMES])
    devices: List[CameraDevice] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(check.status == "success" for check in self.checks)

    @property
    def has_errors(self) -> bool:
        return any(check.status == "error" for check in self.checks)

    def update(self, name: str, status: str, message: Optional[str] = None) -> None:
        for check in self.checks:
            if check.name == name:
                check.status = status
                check.message = message
                return

    def as_dict(self) -> dict:
        return {
            "passed": self.passed,
            "checks": [{"name": c.name, "status": c.status, "message": c.message} for c in self.checks],
            "devices": [
                {"index": d.index, "label": d.label, "width": d.width, "height": d.height, "fps": round(d.fps, 1)}
                for d in self.devices
            ],
        }


def run_camera_checks(
    streams: VideoStreamManager,
    engine: FaceEngine,
    permissions: Optional[CameraPermissionChecker] = None,
) -> DiagnosticsReport:
    """Run the checks in order, stopping at the first camera failure."""
    logger = setup_logger("diagnostics")
    checker = permissions or CameraPermissionChecker(streams.backend, camera_index=streams.camera_index)
    report = DiagnosticsReport()

    support = checker.check_support()
    if not support.supported:
        report.update("Platform Support", "error", support.error)
        return report
    report.update("Platform Support", "success", "Camera API supported")

    permission = checker.request_permission(streams.resolve_index(Facing.USER))
    if not permission.granted:
        report.update("Camera Permission", "error", permission.error)
        return report
    report.update("Camera Permission", "success", "Permission granted")

    report.devices = checker.enumerate_devices()
    if not report.devices:
        report.update("Camera Devices", "error", "No cameras found")
        return report
    report.update("Camera Devices", "success", f"Found {len(report.devices)} camera(s)")

    sink = VideoSink(name="diagnostics")
    try:
        streams.acquire(sink, Facing.USER)
    except AttendanceError as exc:
        report.update("Video Stream", "error", f"Stream failed: {exc}")
        return report
    else:
        report.update("Video Stream", "success", f"Video stream active ({sink.frame_width}x{sink.frame_height})")
    finally:
        streams.release_sink(sink)

    try:
        engine.ensure_models_loaded()
    except AttendanceError as exc:
        logger.error("Model loading error: %s", exc)
        report.update("Face Models", "error", f"Models failed: {exc}")
    else:
        report.update("Face Models", "success", "Models loaded successfully")
    return report
