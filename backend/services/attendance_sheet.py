import logging
from datetime import date as Date
from typing import Iterable

from backend.errors import InputError, PersistenceError
from backend.models import AttendanceRecord, AttendanceStatus, MarkEvent, MarkMethod, Student, parse_date
from backend.school_calendar import holiday_dates
from database.db import get_attendance, get_class, get_holidays, get_students_by_class, save_attendance

logger = logging.getLogger(__name__)


class AttendanceSheet:
    """
    Working set of one class's marks for one day.

    Every student starts Absent/Manual unless the ledger already holds a
    record for the day. Manual clicks and recognition events both land here;
    nothing reaches storage until save().
    """

    def __init__(self, class_id: str, day: Date, students: list[Student], *, is_holiday: bool = False):
        self.class_id = class_id
        self.day = day
        self.students = list(students)
        self.is_holiday = is_holiday
        self._marks: dict[str, AttendanceRecord] = {
            s.id: AttendanceRecord(student_id=s.id, date=day, status="Absent", method="Manual")
            for s in self.students
        }
        self.dirty = False

    @classmethod
    def load(cls, class_id: str, day: Date | str) -> "AttendanceSheet":
        target = parse_date(day)
        section = get_class(class_id)
        if section is None:
            raise InputError(f"Unknown class: {class_id}")

        holidays = holiday_dates(get_holidays(section.school_id, target, target))
        sheet = cls(class_id, target, get_students_by_class(class_id), is_holiday=target in holidays)
        for record in get_attendance(class_id=class_id, date=target):
            if record.student_id in sheet._marks:
                sheet._marks[record.student_id] = record

        logger.debug("Loaded attendance sheet for class %s on %s", class_id, target)
        return sheet

    # -----------------------------
    # Marking
    # -----------------------------
    def mark(
        self,
        student_id: str,
        status: AttendanceStatus,
        method: MarkMethod = "Manual",
        confidence: float | None = None,
    ) -> AttendanceRecord:
        if self.is_holiday:
            raise InputError(f"{self.day} is a holiday; attendance is not taken.")
        if student_id not in self._marks:
            raise InputError(f"Student {student_id} is not in class {self.class_id}.")

        record = AttendanceRecord(
            student_id=student_id,
            date=self.day,
            status=status,
            method=method,
            confidence=confidence,
        )
        self._marks[student_id] = record
        self.dirty = True
        return record

    def apply(self, events: Iterable[MarkEvent]) -> int:
        """Fold recognition events into the sheet; events for other classes are dropped."""
        applied = 0
        for event in events:
            if event.student_id not in self._marks:
                logger.warning("Ignoring mark for %s: not in class %s", event.student_id, self.class_id)
                continue
            self.mark(event.student_id, event.status, event.method, event.confidence)
            applied += 1
        return applied

    # -----------------------------
    # Views
    # -----------------------------
    def status_of(self, student_id: str) -> AttendanceRecord | None:
        return self._marks.get(student_id)

    def records(self) -> list[AttendanceRecord]:
        return [self._marks[s.id] for s in self.students]

    def present_ids(self) -> set[str]:
        return {sid for sid, r in self._marks.items() if r.status == "Present"}

    def counts(self) -> dict[str, int]:
        present = len(self.present_ids())
        return {"total": len(self._marks), "present": present, "absent": len(self._marks) - present}

    def save(self) -> int:
        """
        Persist every student's mark as one batch. On failure the sheet is left
        as it was so the caller can retry.
        """
        if self.is_holiday:
            raise InputError(f"{self.day} is a holiday; attendance is not taken.")
        try:
            saved = save_attendance(self.records())
        except PersistenceError:
            logger.error("Attendance for class %s on %s not saved; working set kept", self.class_id, self.day)
            raise
        self.dirty = False
        return saved
