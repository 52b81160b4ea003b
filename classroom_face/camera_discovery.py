from __future__ import annotations

import time
from typing import Any, List, Optional, Set

import cv2

from .camera_capture import capture_backends
from .face_types import CameraDevice, Facing


def _first_frame(cap: Any, attempts: int = 6, pause_seconds: float = 0.02):
    for _ in range(attempts):
        ok, frame = cap.read()
        if ok and frame is not None and frame.size > 0:
            return frame
        time.sleep(pause_seconds)
    return None


def probe_camera(camera_index: int) -> Optional[CameraDevice]:
    """Open ``camera_index`` on each backend until one delivers a frame."""
    for backend_name, backend in capture_backends():
        cap = cv2.VideoCapture(camera_index) if backend is None else cv2.VideoCapture(camera_index, backend)
        try:
            if not cap.isOpened():
                continue
            frame = _first_frame(cap)
            if frame is None:
                continue
            return CameraDevice(
                index=camera_index,
                width=int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or frame.shape[1]),
                height=int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or frame.shape[0]),
                fps=float(cap.get(cv2.CAP_PROP_FPS) or 0.0),
                backend=backend_name,
            )
        finally:
            cap.release()
    return None


def discover_cameras(
    max_index: int = 4,
    exclude_indices: Set[int] | None = None,
    user_facing_index: int = 0,
) -> List[CameraDevice]:
    excluded = exclude_indices or set()
    cameras = [
        device
        for device in (probe_camera(index) for index in range(max_index + 1) if index not in excluded)
        if device is not None
    ]
    assign_facing(cameras, user_facing_index)
    return cameras


def assign_facing(cameras: List[CameraDevice], user_facing_index: int) -> None:
    # OpenCV cannot report which way a lens points. The configured index (or
    # the first device found) is treated as the front camera.
    if not cameras:
        return
    indices = [camera.index for camera in cameras]
    front = user_facing_index if user_facing_index in indices else indices[0]
    for camera in cameras:
        if camera.facing is None:
            camera.facing = Facing.USER if camera.index == front else Facing.ENVIRONMENT


def pick_camera_index(
    facing: Facing,
    available: List[CameraDevice],
    preferred_index: int,
) -> int:
    """Facing is a soft preference: fall back to any available camera."""
    if not available:
        return preferred_index

    for camera in available:
        if camera.facing == facing:
            return camera.index

    available_indices = [entry.index for entry in available]
    if preferred_index in available_indices:
        return preferred_index
    return min(available_indices)
