from typing import Optional

import cv2
import numpy as np

from .config import JPEG_QUALITY
from .exceptions import EncodingFailure


def capture_still(frame: Optional[np.ndarray], quality: float = JPEG_QUALITY) -> bytes:
    """Encode a frame as JPEG at its native size. ``quality`` is in [0, 1]."""
    if frame is None or frame.size == 0 or frame.ndim < 2:
        raise EncodingFailure("Unable to get a frame to capture")
    height, width = frame.shape[:2]
    if width <= 0 or height <= 0:
        raise EncodingFailure("Unable to get a frame to capture")

    jpeg_quality = int(np.clip(round(quality * 100), 1, 100))
    try:
        ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), jpeg_quality])
    except cv2.error as exc:
        raise EncodingFailure(f"Failed to capture frame: {exc}") from exc
    if not ok or buffer is None or buffer.size == 0:
        raise EncodingFailure("Failed to capture frame")
    return buffer.tobytes()
