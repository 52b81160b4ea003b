import numpy as np
import pytest

from classroom_face.exceptions import DescriptorLengthMismatch
from classroom_face.face_types import FaceTemplate
from classroom_face.matcher import FaceMatcher, euclidean_distance, find_best_match


ROSTER = [
    FaceTemplate(subject_id="A", descriptor=[0.1, 0.2]),
    FaceTemplate(subject_id="B", descriptor=[0.9, 0.8]),
]


def test_closest_template_below_threshold_wins():
    result = find_best_match([0.2, 0.3], ROSTER, threshold=0.6)

    assert result is not None
    assert result.subject_id == "A"
    assert result.distance == pytest.approx(0.1414, abs=1e-3)
    assert result.confidence == pytest.approx(0.8586, abs=1e-3)


def test_probe_far_from_everyone_has_no_match():
    assert find_best_match([5.0, 5.0], ROSTER, threshold=0.6) is None


def test_empty_roster_has_no_match():
    assert find_best_match([0.1, 0.2], [], threshold=0.6) is None


def test_distance_equal_to_threshold_is_rejected():
    roster = [FaceTemplate(subject_id="A", descriptor=[0.0, 0.0])]
    assert find_best_match([0.6, 0.0], roster, threshold=0.6) is None


def test_identical_descriptor_gives_full_confidence():
    result = find_best_match([0.9, 0.8], ROSTER, threshold=0.6)
    assert result.subject_id == "B"
    assert result.distance == pytest.approx(0.0, abs=1e-6)
    assert result.confidence == pytest.approx(1.0, abs=1e-6)


def test_equal_distances_keep_first_template():
    roster = [
        FaceTemplate(subject_id="first", descriptor=[0.1, 0.0]),
        FaceTemplate(subject_id="second", descriptor=[-0.1, 0.0]),
    ]
    assert find_best_match([0.0, 0.0], roster).subject_id == "first"
    assert find_best_match([0.0, 0.0], list(reversed(roster))).subject_id == "second"


def test_length_mismatch_is_an_error():
    with pytest.raises(DescriptorLengthMismatch):
        find_best_match([0.1, 0.2, 0.3], ROSTER)
    with pytest.raises(ValueError):
        euclidean_distance([1.0], [1.0, 2.0])


def test_distance_is_symmetric_and_non_negative():
    rng = np.random.default_rng(7)
    for _ in range(20):
        a = rng.normal(size=128)
        b = rng.normal(size=128)
        assert euclidean_distance(a, b) == pytest.approx(euclidean_distance(b, a))
        assert euclidean_distance(a, b) >= 0.0
        assert euclidean_distance(a, a) == 0.0


def test_confidence_is_never_negative():
    roster = [FaceTemplate(subject_id="A", descriptor=[0.0, 0.0])]
    result = find_best_match([1.2, 0.0], roster, threshold=5.0)
    assert result.distance == pytest.approx(1.2)
    assert result.confidence == 0.0


def test_matcher_is_deterministic_and_reloadable():
    matcher = FaceMatcher(ROSTER, threshold=0.6)
    first = matcher.match([0.2, 0.3])
    assert matcher.match([0.2, 0.3]) == first
    assert len(matcher) == 2

    matcher.reload([FaceTemplate(subject_id="C", descriptor=[0.2, 0.3])])
    assert matcher.match([0.2, 0.3]).subject_id == "C"
    assert len(matcher) == 1


def test_templates_are_read_only():
    template = FaceTemplate(subject_id="A", descriptor=[0.1, 0.2])
    with pytest.raises(ValueError):
        template.descriptor[0] = 1.0
