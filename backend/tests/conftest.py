import pytest

import backend.config as config
import database.db as db


@pytest.fixture()
def ledger(tmp_path, monkeypatch):
    test_db = tmp_path / "rollbook_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)

    db.create_tables()
    return test_db


@pytest.fixture()
def school(ledger):
    return db.add_school("Government Primary School", principal_name="R. Devi")


@pytest.fixture()
def section(school):
    return db.add_class(school.id, "Class 5", teacher_id="teacher-1")


@pytest.fixture()
def students(section):
    return [
        db.add_student(section.id, "Asha", roll_no="1", face_descriptor=[0.0, 0.0, 0.0]),
        db.add_student(section.id, "Bilal", roll_no="2", face_descriptor=[1.0, 1.0, 1.0]),
        db.add_student(section.id, "Chitra", roll_no="3"),
    ]
