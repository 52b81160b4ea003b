import os
from pathlib import Path

import torch


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _csv_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values = tuple(token.strip() for token in raw.split(",") if token.strip())
    return values or default


BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("FACE_DATA_DIR", str(BASE_DIR / "data")))
LOG_DIR = Path(os.getenv("FACE_LOG_DIR", str(BASE_DIR / "logs")))
LOG_FILE = os.getenv("FACE_LOG_FILE", "attendance.log")
LOG_LEVEL = os.getenv("FACE_LOG_LEVEL", "INFO").strip().upper()
DB_PATH = DATA_DIR / "attendance.db"
FACES_DIR = DATA_DIR / "student-faces"
MODEL_DIR = Path(os.getenv("FACE_MODEL_DIR", str(BASE_DIR / "models")))

# Webcam settings
CAMERA_INDEX = _int_env("FACE_CAMERA_INDEX", 0)
CAMERA_ALLOWED = _bool_env("FACE_CAMERA_ALLOWED", True)
CAMERA_SCAN_MAX_INDEX = _int_env("FACE_CAMERA_SCAN_MAX_INDEX", 4)
FRAME_WIDTH = _int_env("FACE_FRAME_WIDTH", 640)
FRAME_WIDTH_MIN = _int_env("FACE_FRAME_WIDTH_MIN", 320)
FRAME_WIDTH_MAX = _int_env("FACE_FRAME_WIDTH_MAX", 1920)
FRAME_HEIGHT = _int_env("FACE_FRAME_HEIGHT", 480)
FRAME_HEIGHT_MIN = _int_env("FACE_FRAME_HEIGHT_MIN", 240)
FRAME_HEIGHT_MAX = _int_env("FACE_FRAME_HEIGHT_MAX", 1080)
FRAME_FPS = _int_env("FACE_FRAME_FPS", 30)
FRAME_FPS_MIN = _int_env("FACE_FRAME_FPS_MIN", 10)
FRAME_FPS_MAX = _int_env("FACE_FRAME_FPS_MAX", 60)
ACQUISITION_TIMEOUT_SECONDS = _float_env("FACE_ACQUISITION_TIMEOUT_SECONDS", 10.0)
JPEG_QUALITY = _float_env("FACE_JPEG_QUALITY", 0.8)

# Face model settings
DESCRIPTOR_LENGTH = 128
FACE_DETECTION_THRESHOLD = _float_env("FACE_DETECTION_THRESHOLD", 0.5)
MIN_FACE_SIZE = _int_env("FACE_MIN_FACE_SIZE", 60)
EMBEDDER_FILENAME = os.getenv("FACE_EMBEDDER_FILENAME", "face_embedder.pt")
MODEL_MIRRORS = _csv_env("FACE_MODEL_MIRRORS", ())

# Scan settings
MATCH_THRESHOLD = _float_env("FACE_MATCH_THRESHOLD", 0.6)
CONFIDENCE_THRESHOLD = _float_env("FACE_CONFIDENCE_THRESHOLD", 0.4)
AUTO_MARK_THRESHOLD = _float_env("FACE_AUTO_MARK_THRESHOLD", 0.6)
HAPTIC_FEEDBACK = _bool_env("FACE_HAPTIC_FEEDBACK", True)
SCAN_INTERVAL_MS = _int_env("FACE_SCAN_INTERVAL_MS", 1000)
PRESENCE_INTERVAL_MS = _int_env("FACE_PRESENCE_INTERVAL_MS", 500)
ATTENDANCE_COOLDOWN_SECONDS = _float_env("FACE_ATTENDANCE_COOLDOWN_SECONDS", 2.0)
HAPTIC_PATTERN_MS = (100, 50, 100)

# Slider ranges exposed by the settings surface.
CONFIDENCE_THRESHOLD_RANGE = (0.2, 0.8)
AUTO_MARK_THRESHOLD_RANGE = (0.4, 0.9)
SCAN_INTERVAL_RANGE_MS = (500, 3000)

# Runtime settings
DEVICE = "cuda" if torch.cuda.is_available() else "cpu"
