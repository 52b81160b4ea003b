from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from .camera import CameraBackend
from .camera_capture import PermissionState
from .config import CAMERA_INDEX
from .exceptions import CameraError, CameraErrorKind
from .face_types import CameraDevice
from .logger import setup_logger


@dataclass
class SupportCheck:
    supported: bool
    error: Optional[str] = None


@dataclass
class PermissionCheck:
    granted: bool
    error: Optional[str] = None
    reason: Optional[CameraErrorKind] = None


class CameraPermissionChecker:
    def __init__(self, backend: Optional[CameraBackend] = None, camera_index: int = CAMERA_INDEX):
        self.backend = backend or CameraBackend()
        self.camera_index = camera_index
        self.logger = setup_logger(self.__class__.__name__)

    def check_support(self) -> SupportCheck:
        try:
            supported = self.backend.is_supported()
        except Exception as exc:
            self.logger.error("Camera support check failed: %s", exc)
            supported = False
        if not supported:
            return SupportCheck(supported=False, error="Camera access not supported on this platform")
        return SupportCheck(supported=True)

    def request_permission(self, camera_index: Optional[int] = None) -> PermissionCheck:
        camera_index = self.camera_index if camera_index is None else camera_index
        if self.backend.can_query_permission():
            state = self.backend.query_permission(camera_index)
            self.logger.info("Camera permission status: %s", state.value)
            if state == PermissionState.DENIED:
                return PermissionCheck(
                    granted=False,
                    error="Camera permission denied. Please enable camera access in system settings.",
                    reason=CameraErrorKind.PERMISSION_DENIED,
                )

        # Opening the device is what triggers the OS prompt where one exists.
        try:
            opened = self.backend.open(camera_index)
        except CameraError as exc:
            self.logger.warning("Camera permission error: %s", exc)
            return PermissionCheck(granted=False, error=self._message_for(exc), reason=exc.kind)
        except Exception as exc:
            self.logger.warning("Camera permission error: %s", exc)
            return PermissionCheck(
                granted=False,
                error=f"Camera permission error: {exc}",
                reason=CameraErrorKind.OTHER,
            )

        opened.capture.release()
        return PermissionCheck(granted=True)

    def enumerate_devices(self) -> List[CameraDevice]:
        try:
            devices = self.backend.list_devices()
        except Exception as exc:
            self.logger.error("Error enumerating devices: %s", exc)
            return []
        self.logger.info("Available camera devices: %d", len(devices))
        return devices

    @staticmethod
    def _message_for(exc: CameraError) -> str:
        messages = {
            CameraErrorKind.PERMISSION_DENIED: "Camera access denied. Please allow camera permissions and try again.",
            CameraErrorKind.DEVICE_NOT_FOUND: "No camera found on this device.",
            CameraErrorKind.DEVICE_BUSY: "Camera is being used by another application.",
            CameraErrorKind.POLICY_BLOCKED: "Camera access blocked by security settings.",
        }
        return messages.get(exc.kind, f"Camera permission error: {exc}")
