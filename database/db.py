import json
import logging
import secrets
import sqlite3
from datetime import date as Date
from typing import Any, Iterable

from backend.config import DB_PATH
from backend.errors import InputError, PersistenceError
from backend.models import (
    AttendanceRecord,
    ClassSection,
    Holiday,
    School,
    Student,
    as_record,
    parse_date,
)

logger = logging.getLogger(__name__)

STUDENT_FIELDS = (
    "name",
    "roll_no",
    "father_name",
    "village",
    "photo",
    "face_descriptor",
    "consent_given",
)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{secrets.token_hex(8)}"


def connect_db():
    conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
    # recommended with FK tables
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables():
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS schools (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        principal_name TEXT NOT NULL DEFAULT '',
        contact_email TEXT NOT NULL DEFAULT '',
        contact_phone TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS classes (
        id TEXT PRIMARY KEY,
        school_id TEXT NOT NULL,
        name TEXT NOT NULL,
        teacher_id TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (school_id) REFERENCES schools(id) ON DELETE CASCADE,
        UNIQUE(school_id, name COLLATE NOCASE)
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS students (
        id TEXT PRIMARY KEY,
        class_id TEXT NOT NULL,
        name TEXT NOT NULL,
        roll_no TEXT NOT NULL DEFAULT '',
        father_name TEXT NOT NULL DEFAULT '',
        village TEXT NOT NULL DEFAULT '',
        photo TEXT,                      -- base64
        face_descriptor TEXT,            -- JSON float array
        consent_given INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (class_id) REFERENCES classes(id) ON DELETE CASCADE
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS holidays (
        id TEXT PRIMARY KEY,
        school_id TEXT NOT NULL,
        date TEXT NOT NULL,              -- YYYY-MM-DD
        description TEXT NOT NULL DEFAULT '',
        FOREIGN KEY (school_id) REFERENCES schools(id) ON DELETE CASCADE,
        UNIQUE(school_id, date)
    )
    """)

    # One row per student per date; saves replace the whole row.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance (
        id TEXT PRIMARY KEY,
        student_id TEXT NOT NULL,
        date TEXT NOT NULL,              -- YYYY-MM-DD
        status TEXT NOT NULL CHECK (status IN ('Present', 'Absent')),
        method TEXT NOT NULL CHECK (method IN ('Manual', 'FaceScan')),
        confidence REAL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (student_id) REFERENCES students(id) ON DELETE CASCADE,
        UNIQUE(student_id, date)
    )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance(date);")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_students_class ON students(class_id);")

    conn.commit()
    conn.close()


# -----------------------------
# Row mapping
# -----------------------------
def _school_from_row(row) -> School:
    return School(
        id=row[0],
        name=row[1],
        principal_name=row[2],
        contact_email=row[3],
        contact_phone=row[4],
    )


def _class_from_row(row) -> ClassSection:
    return ClassSection(id=row[0], school_id=row[1], name=row[2], teacher_id=row[3])


def _student_from_row(row) -> Student:
    descriptor = json.loads(row[8]) if row[8] else None
    return Student(
        id=row[0],
        class_id=row[1],
        name=row[2],
        roll_no=row[3],
        father_name=row[4],
        village=row[5],
        photo=row[6],
        consent_given=bool(row[7]),
        face_descriptor=descriptor,
    )


def _record_from_row(row) -> AttendanceRecord:
    return AttendanceRecord(
        student_id=row[0],
        date=row[1],
        status=row[2],
        method=row[3],
        confidence=row[4],
    )


_STUDENT_COLUMNS = """
    id, class_id, name, roll_no, father_name, village, photo, consent_given, face_descriptor
"""


# -----------------------------
# Schools
# -----------------------------
def add_school(
    name: str,
    *,
    principal_name: str = "",
    contact_email: str = "",
    contact_phone: str = "",
    school_id: str | None = None,
) -> School:
    clean_name = name.strip()
    if not clean_name:
        raise InputError("School name is required.")

    school = School(
        id=school_id or _new_id("school"),
        name=clean_name,
        principal_name=principal_name.strip(),
        contact_email=contact_email.strip(),
        contact_phone=contact_phone.strip(),
    )
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO schools (id, name, principal_name, contact_email, contact_phone)
        VALUES (?, ?, ?, ?, ?)
    """, (school.id, school.name, school.principal_name, school.contact_email, school.contact_phone))
    conn.commit()
    conn.close()
    return school


def get_school(school_id: str) -> School | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, name, principal_name, contact_email, contact_phone
        FROM schools
        WHERE id = ?
    """, (school_id,))
    row = cur.fetchone()
    conn.close()
    return _school_from_row(row) if row else None


# -----------------------------
# Classes
# -----------------------------
def add_class(school_id: str, name: str, *, teacher_id: str | None = None) -> ClassSection:
    clean_name = name.strip()
    if not clean_name:
        raise InputError("Class name is required.")

    section = ClassSection(id=_new_id("class"), school_id=school_id, name=clean_name, teacher_id=teacher_id)
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute("""
            INSERT INTO classes (id, school_id, name, teacher_id)
            VALUES (?, ?, ?, ?)
        """, (section.id, section.school_id, section.name, section.teacher_id))
        conn.commit()
    except sqlite3.IntegrityError as exc:
        # FK miss on school_id or duplicate (school, name)
        if get_school(school_id) is None:
            raise InputError(f"Unknown school: {school_id}") from exc
        raise InputError("A class with this name already exists in the school.") from exc
    finally:
        conn.close()
    return section


def get_class(class_id: str) -> ClassSection | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, school_id, name, teacher_id
        FROM classes
        WHERE id = ?
    """, (class_id,))
    row = cur.fetchone()
    conn.close()
    return _class_from_row(row) if row else None


def get_classes_by_school(school_id: str) -> list[ClassSection]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, school_id, name, teacher_id
        FROM classes
        WHERE school_id = ?
        ORDER BY name COLLATE NOCASE
    """, (school_id,))
    rows = cur.fetchall()
    conn.close()
    return [_class_from_row(r) for r in rows]


def get_assigned_class(teacher_id: str) -> ClassSection | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, school_id, name, teacher_id
        FROM classes
        WHERE teacher_id = ?
        ORDER BY rowid
        LIMIT 1
    """, (teacher_id,))
    row = cur.fetchone()
    conn.close()
    return _class_from_row(row) if row else None


def delete_class(class_id: str) -> bool:
    # students and their attendance go with the class (ON DELETE CASCADE)
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("DELETE FROM classes WHERE id = ?", (class_id,))
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


# -----------------------------
# Students
# -----------------------------
def add_student(
    class_id: str,
    name: str,
    *,
    roll_no: str = "",
    father_name: str = "",
    village: str = "",
    photo: str | None = None,
    face_descriptor: list[float] | None = None,
    consent_given: bool = False,
) -> Student:
    clean_name = name.strip()
    if not clean_name:
        raise InputError("Student name is required.")
    if get_class(class_id) is None:
        raise InputError(f"Unknown class: {class_id}")

    student = Student(
        id=_new_id("student"),
        class_id=class_id,
        name=clean_name,
        roll_no=roll_no.strip(),
        father_name=father_name.strip(),
        village=village.strip(),
        photo=photo,
        face_descriptor=face_descriptor,
        consent_given=consent_given,
    )
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO students (
            id, class_id, name, roll_no, father_name, village, photo, consent_given, face_descriptor
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (
        student.id,
        student.class_id,
        student.name,
        student.roll_no,
        student.father_name,
        student.village,
        student.photo,
        1 if student.consent_given else 0,
        json.dumps(student.face_descriptor) if student.face_descriptor else None,
    ))
    conn.commit()
    conn.close()
    return student


def get_student(student_id: str) -> Student | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"SELECT {_STUDENT_COLUMNS} FROM students WHERE id = ?", (student_id,))
    row = cur.fetchone()
    conn.close()
    return _student_from_row(row) if row else None


def get_students_by_class(class_id: str) -> list[Student]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"SELECT {_STUDENT_COLUMNS} FROM students WHERE class_id = ? ORDER BY rowid",
        (class_id,),
    )
    rows = cur.fetchall()
    conn.close()
    return [_student_from_row(r) for r in rows]


def update_student(student_id: str, **changes: Any) -> Student:
    unknown = set(changes) - set(STUDENT_FIELDS)
    if unknown:
        raise InputError(f"Cannot update student field(s): {', '.join(sorted(unknown))}")

    current = get_student(student_id)
    if current is None:
        raise InputError(f"Student not found: {student_id}")
    if not changes:
        return current

    updated = current.model_copy(update=changes)
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        UPDATE students
        SET name=?,
            roll_no=?,
            father_name=?,
            village=?,
            photo=?,
            consent_given=?,
            face_descriptor=?
        WHERE id=?
    """, (
        updated.name,
        updated.roll_no,
        updated.father_name,
        updated.village,
        updated.photo,
        1 if updated.consent_given else 0,
        json.dumps(updated.face_descriptor) if updated.face_descriptor else None,
        student_id,
    ))
    conn.commit()
    conn.close()
    return updated


# -----------------------------
# Holidays
# -----------------------------
def set_holiday(school_id: str, date: Date | str, description: str) -> Holiday:
    day = parse_date(date).isoformat()
    clean_description = description.strip()
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute("""
            INSERT INTO holidays (id, school_id, date, description)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(school_id, date) DO UPDATE SET description = excluded.description
        """, (_new_id("holiday"), school_id, day, clean_description))
        conn.commit()
        cur.execute("""
            SELECT id, date, description, school_id
            FROM holidays
            WHERE school_id = ? AND date = ?
        """, (school_id, day))
        row = cur.fetchone()
    except sqlite3.IntegrityError as exc:
        raise InputError(f"Unknown school: {school_id}") from exc
    finally:
        conn.close()
    return Holiday(id=row[0], date=row[1], description=row[2], school_id=row[3])


def remove_holiday(school_id: str, date: Date | str) -> bool:
    day = parse_date(date).isoformat()
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("DELETE FROM holidays WHERE school_id = ? AND date = ?", (school_id, day))
    removed = cur.rowcount > 0
    conn.commit()
    conn.close()
    return removed


def get_holidays(
    school_id: str,
    start: Date | str | None = None,
    end: Date | str | None = None,
) -> list[Holiday]:
    where = ["school_id = ?"]
    params: list[Any] = [school_id]
    if start is not None:
        where.append("date >= ?")
        params.append(parse_date(start).isoformat())
    if end is not None:
        where.append("date <= ?")
        params.append(parse_date(end).isoformat())

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT id, date, description, school_id
        FROM holidays
        WHERE {" AND ".join(where)}
        ORDER BY date ASC
    """, params)
    rows = cur.fetchall()
    conn.close()
    return [Holiday(id=r[0], date=r[1], description=r[2], school_id=r[3]) for r in rows]


# -----------------------------
# Attendance ledger
# -----------------------------
def save_attendance(records: Iterable[AttendanceRecord | dict]) -> int:
    """
    Upsert a batch keyed by (student_id, date): any existing row for the key is
    replaced wholesale. The batch commits as one transaction; on any storage
    failure nothing from it is visible and PersistenceError is raised.
    """
    batch = [as_record(r) for r in records]
    if not batch:
        return 0

    conn = connect_db()
    try:
        with conn:
            cur = conn.cursor()
            for record in batch:
                day = record.date.isoformat()
                cur.execute(
                    "DELETE FROM attendance WHERE student_id = ? AND date = ?",
                    (record.student_id, day),
                )
                cur.execute("""
                    INSERT INTO attendance (id, student_id, date, status, method, confidence)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    _new_id("att"),
                    record.student_id,
                    day,
                    record.status,
                    record.method,
                    record.confidence,
                ))
    except sqlite3.Error as exc:
        logger.error("Attendance batch of %d rejected: %s", len(batch), exc)
        raise PersistenceError(f"Failed to save attendance: {exc}") from exc
    finally:
        conn.close()

    logger.info("Saved attendance batch of %d record(s)", len(batch))
    return len(batch)


def _ensure_exists(cur: sqlite3.Cursor, table: str, key: str) -> None:
    cur.execute(f"SELECT 1 FROM {table} WHERE id = ?", (key,))
    if not cur.fetchone():
        label = "class" if table == "classes" else "student"
        raise InputError(f"Unknown {label}: {key}")


def get_attendance(
    *,
    class_id: str | None = None,
    student_id: str | None = None,
    date: Date | str | None = None,
    date_range: tuple[Date | str, Date | str] | None = None,
) -> list[AttendanceRecord]:
    """
    Filters are ANDed together; an omitted filter does not constrain.
    `date_range` is inclusive on both ends.
    """
    where: list[str] = []
    params: list[Any] = []

    if date is not None:
        where.append("a.date = ?")
        params.append(parse_date(date).isoformat())
    if date_range is not None:
        start, end = parse_date(date_range[0]), parse_date(date_range[1])
        if start > end:
            raise InputError(f"Invalid date range: {start} is after {end}.")
        where.append("a.date BETWEEN ? AND ?")
        params.extend([start.isoformat(), end.isoformat()])

    conn = connect_db()
    cur = conn.cursor()
    try:
        if class_id is not None:
            _ensure_exists(cur, "classes", class_id)
            where.append("s.class_id = ?")
            params.append(class_id)
        if student_id is not None:
            _ensure_exists(cur, "students", student_id)
            where.append("a.student_id = ?")
            params.append(student_id)

        clause = f"WHERE {' AND '.join(where)}" if where else ""
        cur.execute(f"""
            SELECT a.student_id, a.date, a.status, a.method, a.confidence
            FROM attendance a
            JOIN students s ON s.id = a.student_id
            {clause}
            ORDER BY a.date ASC, s.rowid ASC
        """, params)
        rows = cur.fetchall()
    finally:
        conn.close()
    return [_record_from_row(r) for r in rows]


def clear_attendance():
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("DELETE FROM attendance;")
    conn.commit()
    conn.close()
