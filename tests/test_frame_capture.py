import cv2
import numpy as np
import pytest

from classroom_face.exceptions import EncodingFailure
from classroom_face.frame_capture import capture_still


def test_still_is_a_jpeg_at_native_size():
    frame = np.full((480, 640, 3), 127, dtype=np.uint8)
    data = capture_still(frame)

    assert data[:2] == b"\xff\xd8"
    decoded = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    assert decoded.shape == (480, 640, 3)


def test_lower_quality_produces_smaller_output():
    rng = np.random.default_rng(3)
    frame = rng.integers(0, 255, size=(240, 320, 3), dtype=np.uint8)
    assert len(capture_still(frame, quality=0.3)) < len(capture_still(frame, quality=0.95))


def test_missing_frame_is_an_encoding_failure():
    with pytest.raises(EncodingFailure):
        capture_still(None)
    with pytest.raises(EncodingFailure):
        capture_still(np.zeros((0, 0, 3), dtype=np.uint8))
