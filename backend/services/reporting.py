import logging
from typing import Any, Iterable

from backend.errors import InputError
from backend.reports import AttendanceInsights, ReportMatrix, build_insights, build_report, resolve_range
from database.db import get_attendance, get_class, get_holidays, get_students_by_class

logger = logging.getLogger(__name__)


def _snapshot(class_id: str, period: str, anchor: Any):
    """Students, in-range records and in-range holidays, read once."""
    section = get_class(class_id)
    if section is None:
        raise InputError(f"Unknown class: {class_id}")

    rng = resolve_range(period, anchor)
    students = get_students_by_class(class_id)
    if rng.is_empty:
        return students, [], []

    records = get_attendance(class_id=class_id, date_range=(rng.start, rng.end))
    holidays = get_holidays(section.school_id, rng.start, rng.end)
    return students, records, holidays


def generate_report(
    class_id: str,
    period: str,
    anchor: Any,
    *,
    weekly_off: Iterable[int | str] | None = None,
) -> ReportMatrix:
    students, records, holidays = _snapshot(class_id, period, anchor)
    logger.debug("Report snapshot for %s: %d students, %d records", class_id, len(students), len(records))
    return build_report(period, anchor, students, records, holidays, weekly_off)


def generate_insights(
    class_id: str,
    period: str,
    anchor: Any,
    *,
    weekly_off: Iterable[int | str] | None = None,
) -> AttendanceInsights:
    students, records, holidays = _snapshot(class_id, period, anchor)
    return build_insights(period, anchor, students, records, holidays, weekly_off)
