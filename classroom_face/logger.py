import logging
from logging.handlers import RotatingFileHandler

from .config import LOG_DIR, LOG_FILE, LOG_LEVEL

ROOT_LOGGER = "classroom_face"


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:
        return root

    LOG_DIR.mkdir(parents=True, exist_ok=True)
    root.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = RotatingFileHandler(
        LOG_DIR / LOG_FILE,
        maxBytes=2_000_000,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)
    root.propagate = False
    return root


def setup_logger(name: str) -> logging.Logger:
    """Child of the package logger; handlers live on the package logger only."""
    _configure_root()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
