from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

from .config import MATCH_THRESHOLD
from .exceptions import DescriptorLengthMismatch
from .face_types import FaceTemplate, MatchResult, as_descriptor


def euclidean_distance(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    left = np.asarray(a, dtype=np.float64).reshape(-1)
    right = np.asarray(b, dtype=np.float64).reshape(-1)
    if left.size != right.size:
        raise DescriptorLengthMismatch(
            f"Descriptors must have the same length ({left.size} != {right.size})."
        )
    return float(np.sqrt(np.sum((left - right) ** 2)))


def find_best_match(
    probe: Sequence[float] | np.ndarray,
    roster: Sequence[FaceTemplate],
    threshold: float = MATCH_THRESHOLD,
) -> Optional[MatchResult]:
    """Return the closest template with distance strictly below ``threshold``.

    Exact ties keep the template seen first, so the result depends on roster
    order when two templates are equidistant.
    """
    if not roster:
        return None

    best: Optional[MatchResult] = None
    min_distance = float("inf")
    for template in roster:
        distance = euclidean_distance(probe, template.descriptor)
        if distance < min_distance and distance < threshold:
            min_distance = distance
            best = MatchResult(
                subject_id=template.subject_id,
                distance=distance,
                confidence=max(0.0, 1.0 - distance),
            )
    return best


class FaceMatcher:
    def __init__(self, templates: Sequence[FaceTemplate] = (), threshold: float = MATCH_THRESHOLD):
        self.threshold = float(threshold)
        self.templates: List[FaceTemplate] = list(templates)

    def reload(self, templates: Sequence[FaceTemplate]) -> None:
        self.templates = list(templates)

    def match(self, probe: Sequence[float] | np.ndarray) -> Optional[MatchResult]:
        return find_best_match(as_descriptor(probe), self.templates, self.threshold)

    def __len__(self) -> int:
        return len(self.templates)
