from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

import numpy as np


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"


class Facing(str, Enum):
    USER = "user"
    ENVIRONMENT = "environment"

    def toggled(self) -> "Facing":
        return Facing.ENVIRONMENT if self is Facing.USER else Facing.USER


def as_descriptor(values: Iterable[float] | np.ndarray) -> np.ndarray:
    vector = np.asarray(values, dtype=np.float32).reshape(-1).copy()
    vector.setflags(write=False)
    return vector


@dataclass(frozen=True)
class FaceTemplate:
    subject_id: str
    descriptor: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "descriptor", as_descriptor(self.descriptor))


@dataclass(frozen=True)
class MatchResult:
    subject_id: str
    distance: float
    confidence: float


@dataclass
class RosterEntry:
    subject_id: str
    name: str
    roll_label: str = ""
    descriptor: Optional[np.ndarray] = None

    @property
    def enrolled(self) -> bool:
        return self.descriptor is not None and np.asarray(self.descriptor).size > 0


@dataclass
class CameraDevice:
    index: int
    width: int = 0
    height: int = 0
    fps: float = 0.0
    backend: str = "unknown"
    facing: Optional[Facing] = None

    @property
    def label(self) -> str:
        return f"Camera {self.index} ({self.backend})"


@dataclass(frozen=True)
class MatchEvent:
    subject_id: str
    name: str
    confidence: float


@dataclass(frozen=True)
class CaptureEvent:
    descriptor: np.ndarray
    image: bytes


@dataclass
class ScanSnapshot:
    state: str
    is_streaming: bool
    is_scanning: bool
    tick_count: int
    facing: str
    last_match: Optional[MatchEvent] = None
    error: Optional[str] = None
    enrolled_count: int = 0
    marked_count: int = 0
    roster_count: int = 0
    device: Optional[str] = None


def enrolled_templates(roster: Sequence[RosterEntry]) -> List[FaceTemplate]:
    return [
        FaceTemplate(subject_id=entry.subject_id, descriptor=entry.descriptor)
        for entry in roster
        if entry.enrolled
    ]
