from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, List, Tuple

import cv2

from .config import CAMERA_ALLOWED
from .exceptions import (
    CameraError,
    ConstraintUnsatisfiable,
    DeviceBusy,
    DeviceNotFound,
    PermissionDenied,
    PolicyBlocked,
)


class PermissionState(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"


@dataclass(frozen=True)
class Range:
    ideal: int
    min: int
    max: int

    def allows(self, value: float) -> bool:
        # Backends that cannot report a property return 0.
        if value <= 0:
            return True
        return self.min <= value <= self.max


@dataclass(frozen=True)
class StreamConstraints:
    width: Range
    height: Range
    fps: Range


@dataclass
class OpenedCapture:
    capture: Any
    backend: str
    width: int
    height: int
    fps: int


def _preferred_backend_order() -> list[str]:
    raw = os.getenv("FACE_CAMERA_BACKEND_ORDER", "").strip()
    if not raw:
        # Windows laptop webcams are generally more stable on DirectShow.
        if os.name == "nt":
            return ["DirectShow", "Media Foundation", "Auto"]
        return ["Auto", "V4L2", "AVFoundation"]
    ordered = [item.strip().lower() for item in raw.split(",") if item.strip()]
    mapping = {
        "auto": "Auto",
        "any": "Auto",
        "dshow": "DirectShow",
        "directshow": "DirectShow",
        "msmf": "Media Foundation",
        "mediafoundation": "Media Foundation",
        "media foundation": "Media Foundation",
        "v4l2": "V4L2",
        "avfoundation": "AVFoundation",
    }
    result: list[str] = []
    for item in ordered:
        name = mapping.get(item)
        if name and name not in result:
            result.append(name)
    return result or ["Auto"]


def capture_backends() -> List[Tuple[str, int | None]]:
    backend_map: dict[str, int | None] = {
        "Auto": getattr(cv2, "CAP_ANY", None),
        "DirectShow": getattr(cv2, "CAP_DSHOW", None),
        "Media Foundation": getattr(cv2, "CAP_MSMF", None),
        "V4L2": getattr(cv2, "CAP_V4L2", None),
        "AVFoundation": getattr(cv2, "CAP_AVFOUNDATION", None),
    }
    candidates: List[Tuple[str, int | None]] = []
    seen: set[int | None] = set()
    for name in _preferred_backend_order():
        backend = backend_map.get(name)
        if backend is None and name != "Auto":
            continue
        if backend in seen:
            continue
        seen.add(backend)
        candidates.append((name, backend))
    return candidates


def camera_api_available() -> bool:
    if not hasattr(cv2, "VideoCapture"):
        return False
    registry = getattr(cv2, "videoio_registry", None)
    if registry is None:
        return True
    try:
        return len(registry.getCameraBackends()) > 0
    except cv2.error:
        return False


def _device_node(camera_index: int) -> Path | None:
    if not sys.platform.startswith("linux"):
        return None
    return Path(f"/dev/video{camera_index}")


def can_query_permission() -> bool:
    return sys.platform.startswith("linux")


def query_permission(camera_index: int) -> PermissionState:
    node = _device_node(camera_index)
    if node is None or not node.exists():
        return PermissionState.PROMPT
    if os.access(node, os.R_OK | os.W_OK):
        return PermissionState.GRANTED
    return PermissionState.DENIED


def classify_open_failure(camera_index: int) -> CameraError:
    """Map a failed open to a typed error once, at the platform boundary."""
    node = _device_node(camera_index)
    if node is not None:
        if not node.exists():
            return DeviceNotFound("No camera found on this device.")
        if not os.access(node, os.R_OK | os.W_OK):
            return PermissionDenied(
                "Camera access denied. Please allow camera permissions and try again."
            )
        return DeviceBusy("Camera is being used by another application.")
    return DeviceNotFound(f"Unable to open camera index {camera_index}. No camera found on this device.")


def open_camera_capture(camera_index: int) -> tuple[cv2.VideoCapture, str]:
    if not CAMERA_ALLOWED:
        raise PolicyBlocked("Camera access blocked by security settings.")

    for backend_name, backend in capture_backends():
        try:
            if backend is None:
                cap = cv2.VideoCapture(camera_index)
            else:
                cap = cv2.VideoCapture(camera_index, backend)
        except cv2.error as exc:
            raise CameraError(f"Camera setup failed: {exc}") from exc

        if cap.isOpened():
            return cap, backend_name
        cap.release()

    raise classify_open_failure(camera_index)


def configure_capture(cap: Any, constraints: StreamConstraints) -> tuple[int, int, int]:
    cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width.ideal)
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height.ideal)
    cap.set(cv2.CAP_PROP_FPS, constraints.fps.ideal)

    actual_width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
    actual_height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
    actual_fps = int(round(cap.get(cv2.CAP_PROP_FPS) or 0))

    if not (
        constraints.width.allows(actual_width)
        and constraints.height.allows(actual_height)
        and constraints.fps.allows(actual_fps)
    ):
        raise ConstraintUnsatisfiable(
            "Camera constraints cannot be satisfied "
            f"({actual_width}x{actual_height} @ {actual_fps} FPS)."
        )
    return (
        actual_width or constraints.width.ideal,
        actual_height or constraints.height.ideal,
        actual_fps or constraints.fps.ideal,
    )
