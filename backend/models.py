import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from backend.errors import InputError

AttendanceStatus = Literal["Present", "Absent"]
MarkMethod = Literal["Manual", "FaceScan"]


class School(BaseModel):
    id: str
    name: str
    principal_name: str = ""
    contact_email: str = ""
    contact_phone: str = ""


class ClassSection(BaseModel):
    id: str
    name: str
    school_id: str
    teacher_id: str | None = None


class Student(BaseModel):
    id: str
    class_id: str
    name: str
    roll_no: str = ""
    father_name: str = ""
    village: str = ""
    photo: str | None = None  # base64 reference photo
    face_descriptor: list[float] | None = None
    consent_given: bool = False

    @property
    def has_face(self) -> bool:
        return bool(self.face_descriptor)


class Holiday(BaseModel):
    date: dt.date
    school_id: str
    description: str = ""
    id: str | None = None


class AttendanceRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    student_id: str
    date: dt.date
    status: AttendanceStatus
    method: MarkMethod = "Manual"
    confidence: float | None = None

    @property
    def key(self) -> tuple[str, dt.date]:
        return self.student_id, self.date


class MarkEvent(BaseModel):
    """
    In-memory (student, status, method) produced by a manual click or a
    recognition cycle. Becomes an AttendanceRecord once bound to a day.
    """

    model_config = ConfigDict(frozen=True)

    student_id: str
    status: AttendanceStatus = "Present"
    method: MarkMethod = "FaceScan"
    confidence: float | None = None

    def to_record(self, day: dt.date) -> AttendanceRecord:
        return AttendanceRecord(
            student_id=self.student_id,
            date=day,
            status=self.status,
            method=self.method,
            confidence=self.confidence,
        )


def parse_date(value: Any) -> dt.date:
    """Accepts a date or a YYYY-MM-DD string; anything else is an InputError."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        try:
            return dt.date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise InputError(f"Invalid date: {value!r}. Expected YYYY-MM-DD.")


def as_record(value: AttendanceRecord | dict) -> AttendanceRecord:
    if isinstance(value, AttendanceRecord):
        return value
    try:
        return AttendanceRecord.model_validate(value)
    except ValidationError as exc:
        raise InputError(f"Invalid attendance record: {exc.errors()[0]['msg']}") from exc
