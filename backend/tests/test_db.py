from datetime import date

import pytest

import database.db as db
from backend.errors import InputError, PersistenceError
from backend.models import AttendanceRecord

MON = date(2024, 3, 4)
TUE = date(2024, 3, 5)
WED = date(2024, 3, 6)


def _rec(student, day, status="Present", method="Manual", confidence=None):
    return AttendanceRecord(
        student_id=student.id,
        date=day,
        status=status,
        method=method,
        confidence=confidence,
    )


def _count_rows():
    conn = db.connect_db()
    cur = conn.cursor()
    cur.execute("SELECT COUNT(*) FROM attendance")
    count = cur.fetchone()[0]
    conn.close()
    return count


def test_create_tables_is_idempotent(ledger):
    db.create_tables()
    db.create_tables()
    assert db.get_attendance() == []


def test_students_keep_insertion_order_and_descriptors(section, students):
    loaded = db.get_students_by_class(section.id)
    assert [s.name for s in loaded] == ["Asha", "Bilal", "Chitra"]
    assert loaded[1].face_descriptor == [1.0, 1.0, 1.0]
    assert loaded[2].face_descriptor is None


def test_update_student_changes_only_given_fields(students):
    asha = students[0]
    updated = db.update_student(asha.id, roll_no="10", face_descriptor=[0.5, 0.5, 0.5])

    assert updated.roll_no == "10"
    assert updated.name == "Asha"
    assert db.get_student(asha.id).face_descriptor == [0.5, 0.5, 0.5]

    with pytest.raises(InputError):
        db.update_student(asha.id, class_id="elsewhere")
    with pytest.raises(InputError):
        db.update_student("student-missing", name="X")


def test_duplicate_class_name_is_rejected(school, section):
    with pytest.raises(InputError):
        db.add_class(school.id, "class 5")
    with pytest.raises(InputError):
        db.add_class("school-missing", "Class 6")

    assert db.get_assigned_class("teacher-1").id == section.id
    assert [c.name for c in db.get_classes_by_school(school.id)] == ["Class 5"]


def test_delete_class_cascades(section, students):
    db.save_attendance([_rec(students[0], MON)])

    assert db.delete_class(section.id)
    assert db.get_students_by_class(section.id) == []
    assert _count_rows() == 0


def test_save_replaces_existing_record_for_key(section, students):
    asha = students[0]
    db.save_attendance([_rec(asha, MON, "Present", "FaceScan", 0.91)])
    db.save_attendance([_rec(asha, MON, "Absent", "Manual")])

    records = db.get_attendance(student_id=asha.id)
    assert records == [_rec(asha, MON, "Absent", "Manual")]


def test_saving_same_batch_twice_is_idempotent(section, students):
    batch = [_rec(s, MON) for s in students] + [_rec(students[0], TUE, "Absent")]

    assert db.save_attendance(batch) == 4
    once = db.get_attendance(class_id=section.id)
    db.save_attendance(batch)

    assert db.get_attendance(class_id=section.id) == once
    assert _count_rows() == 4


def test_failed_batch_leaves_no_partial_writes(section, students):
    asha, bilal, _ = students
    db.save_attendance([_rec(asha, MON, "Absent")])

    ghost = AttendanceRecord(student_id="student-missing", date=MON, status="Present")
    with pytest.raises(PersistenceError):
        db.save_attendance([_rec(asha, MON), _rec(bilal, MON), ghost])

    # the earlier Absent row survives; neither new row is visible
    assert db.get_attendance(date=MON) == [_rec(asha, MON, "Absent")]


def test_invalid_status_mid_batch_rolls_back(section, students):
    asha, bilal, chitra = students
    bad = AttendanceRecord.model_construct(
        student_id=bilal.id,
        date=MON,
        status="Late",
        method="Manual",
        confidence=None,
    )

    with pytest.raises(PersistenceError):
        db.save_attendance([_rec(asha, MON), bad, _rec(chitra, MON)])
    assert _count_rows() == 0


def test_save_rejects_malformed_dicts(section, students):
    with pytest.raises(InputError):
        db.save_attendance([{"student_id": students[0].id, "date": "2024-03-04", "status": "Maybe"}])


def test_query_filters_are_conjunctive(school, section, students):
    other = db.add_class(school.id, "Class 6")
    outsider = db.add_student(other.id, "Esha", roll_no="1")
    asha, bilal, _ = students
    db.save_attendance([
        _rec(asha, MON),
        _rec(asha, TUE, "Absent"),
        _rec(bilal, TUE),
        _rec(asha, WED),
        _rec(outsider, TUE),
    ])

    assert len(db.get_attendance()) == 5
    assert len(db.get_attendance(class_id=section.id)) == 4
    assert db.get_attendance(class_id=section.id, date=TUE) == [
        _rec(asha, TUE, "Absent"),
        _rec(bilal, TUE),
    ]
    assert db.get_attendance(student_id=asha.id, date_range=(TUE, WED)) == [
        _rec(asha, TUE, "Absent"),
        _rec(asha, WED),
    ]
    assert db.get_attendance(class_id=other.id, student_id=asha.id) == []


def test_date_range_is_inclusive_and_validated(section, students):
    asha = students[0]
    db.save_attendance([_rec(asha, MON), _rec(asha, WED)])

    assert len(db.get_attendance(date_range=(MON, WED))) == 2
    assert len(db.get_attendance(date_range=("2024-03-04", "2024-03-04"))) == 1
    with pytest.raises(InputError):
        db.get_attendance(date_range=(WED, MON))
    with pytest.raises(InputError):
        db.get_attendance(date="04/03/2024")


def test_unknown_ids_in_filters_are_input_errors(section, students):
    with pytest.raises(InputError):
        db.get_attendance(class_id="class-missing")
    with pytest.raises(InputError):
        db.get_attendance(student_id="student-missing")


def test_holidays_upsert_and_range(school):
    db.set_holiday(school.id, MON, "Holi")
    updated = db.set_holiday(school.id, "2024-03-04", "Holi (observed)")
    db.set_holiday(school.id, date(2024, 8, 15), "Independence Day")

    assert updated.description == "Holi (observed)"
    march = db.get_holidays(school.id, date(2024, 3, 1), date(2024, 3, 31))
    assert [(h.date, h.description) for h in march] == [(MON, "Holi (observed)")]
    assert len(db.get_holidays(school.id)) == 2

    assert db.remove_holiday(school.id, MON)
    assert not db.remove_holiday(school.id, MON)
    with pytest.raises(InputError):
        db.set_holiday("school-missing", MON, "Nope")
