from datetime import datetime, timedelta

import numpy as np
import pytest

from classroom_face import database
from classroom_face.attendance_service import AttendanceService
from classroom_face.database import RosterStore
from classroom_face.exceptions import DatabaseError
from classroom_face.face_types import AttendanceStatus, enrolled_templates


@pytest.fixture
def store(tmp_path):
    return RosterStore(tmp_path / "attendance.db", tmp_path / "faces", class_name="5A")


def test_students_are_listed_in_id_order(store):
    store.add_student("s2", "Bilal", "12")
    store.add_student("s1", "Asha", "4")
    store.add_student("s2", "Bilal K", "12")

    students = store.list_students()
    assert [s.subject_id for s in students] == ["s1", "s2"]
    assert students[1].name == "Bilal K"
    assert not any(s.enrolled for s in students)


def test_blank_student_is_rejected(store):
    with pytest.raises(DatabaseError):
        store.add_student("  ", "Asha")
    with pytest.raises(DatabaseError):
        store.add_student("s1", "")


def test_saved_face_round_trips(store, tmp_path):
    store.add_student("s1", "Asha")
    descriptor = np.linspace(-1.0, 1.0, 128, dtype=np.float32)

    photo = store.save_face("s1", descriptor, b"\xff\xd8jpeg")

    assert photo.parent == tmp_path / "faces"
    assert photo.name.startswith("s1_face_")
    assert photo.read_bytes() == b"\xff\xd8jpeg"
    student = store.list_students()[0]
    assert student.enrolled
    np.testing.assert_array_equal(student.descriptor, descriptor)
    assert [t.subject_id for t in enrolled_templates(store.list_students())] == ["s1"]


def test_face_for_unknown_student_is_rejected(store, tmp_path):
    with pytest.raises(DatabaseError):
        store.save_face("ghost", np.ones(128, dtype=np.float32), b"jpeg")
    assert list((tmp_path / "faces").iterdir()) == []


def test_attendance_is_recorded_once_per_day(store):
    store.add_student("s1", "Asha")
    store.add_student("s2", "Bilal")

    assert store.mark_attendance("s1", AttendanceStatus.PRESENT)
    assert not store.mark_attendance("s1", AttendanceStatus.LATE)
    assert store.today_marked_ids() == {"s1"}

    yesterday = datetime.now() - timedelta(days=1)
    assert store.mark_attendance("s2", AttendanceStatus.PRESENT, marked_at=yesterday)
    assert store.today_marked_ids() == {"s1"}

    records = store.attendance_for(datetime.now().date().isoformat())
    assert [(r.student_id, r.name, r.status) for r in records] == [("s1", "Asha", "present")]


def test_classes_are_kept_apart(tmp_path):
    first = RosterStore(tmp_path / "attendance.db", tmp_path / "faces", class_name="5A")
    second = RosterStore(tmp_path / "attendance.db", tmp_path / "faces", class_name="5B")
    first.add_student("s1", "Asha")
    second.add_student("s9", "Dara")

    assert [s.subject_id for s in first.list_students()] == ["s1"]
    assert [s.subject_id for s in second.list_students()] == ["s9"]


def test_attendance_service_tracks_marked_set(store):
    store.add_student("s1", "Asha")
    store.mark_attendance("s1", AttendanceStatus.PRESENT)
    store.add_student("s2", "Bilal")

    service = AttendanceService(store)
    assert service.marked_ids() == {"s1"}

    service.mark("s2", AttendanceStatus.PRESENT)
    assert service.marked_ids() == {"s1", "s2"}
    assert store.today_marked_ids() == {"s1", "s2"}


def test_marked_set_rolls_over_at_midnight(store, monkeypatch):
    store.add_student("s1", "Asha")
    service = AttendanceService(store)
    service.mark("s1", AttendanceStatus.PRESENT)
    assert service.marked_ids() == {"s1"}

    tomorrow = datetime.now() + timedelta(days=1)

    class _Tomorrow(datetime):
        @classmethod
        def now(cls, tz=None):
            return tomorrow

    monkeypatch.setattr(database, "datetime", _Tomorrow)

    assert service.marked_ids() == set()
    service.mark("s1", AttendanceStatus.PRESENT)
    assert service.marked_ids() == {"s1"}


@pytest.mark.parametrize("student_id", ["../x", "a/b", "a\\b", ".."])
def test_student_id_cannot_escape_the_faces_directory(store, student_id):
    with pytest.raises(DatabaseError):
        store.add_student(student_id, "Asha")
    assert store.list_students() == []


def test_face_photo_stays_in_the_faces_directory(store, tmp_path):
    with pytest.raises(DatabaseError):
        store.save_face("../ghost", np.ones(128, dtype=np.float32), b"jpeg")
    assert list(tmp_path.glob("ghost_face_*")) == []
    assert list((tmp_path / "faces").iterdir()) == []
