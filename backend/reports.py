"""
Calendar-aware attendance registers.

Every builder is a pure function of (students, records, holidays): callers
snapshot those first and nothing here goes back to storage. Output is an
abstract table (head + body of str/int cells) for an exporter to encode.

Cell markers on register grids:
    P  present on a working day
    A  absent, or no record, on a working day
    H  school holiday
    S  weekly off day
Only working days count toward present/absent totals and percentages.
"""
import calendar
import logging
from dataclasses import dataclass, field
from datetime import date as Date, timedelta
from typing import Any, Iterable, Literal, NamedTuple, Sequence

from backend import config
from backend.errors import InputError
from backend.models import AttendanceRecord, Holiday, Student, parse_date
from backend.school_calendar import (
    HOLIDAY,
    WEEKLY_OFF,
    WORKING,
    classify,
    classify_range,
    holiday_dates,
    weekly_off_rule,
    working_dates,
)

logger = logging.getLogger(__name__)

ReportPeriod = Literal["daily", "weekly", "monthly", "yearly"]
PERIODS: tuple[str, ...] = ("daily", "weekly", "monthly", "yearly")

MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

MARKERS = {
    HOLIDAY: "H",
    WEEKLY_OFF: "S",
}
DAILY_STATUS = {
    HOLIDAY: "Holiday",
    WEEKLY_OFF: "Weekly Off",
}

NOTICE_NO_STUDENTS = "No students in this class."
NOTICE_NO_WORKING_DAYS = "No working days in the selected range."

Cell = str | int


class DateRange(NamedTuple):
    start: Date
    end: Date

    @property
    def is_empty(self) -> bool:
        return self.start > self.end

    @property
    def days(self) -> int:
        return max(0, (self.end - self.start).days + 1)


@dataclass(frozen=True)
class StudentSummary:
    student_id: str
    name: str
    roll_no: str
    present: int
    working_days: int
    percentage: int | None
    monthly_percentages: tuple[int | None, ...] = ()


@dataclass
class ReportMatrix:
    period: str
    start: Date
    end: Date
    head: list[str]
    body: list[list[Cell]]
    dates: list[Date] = field(default_factory=list)
    summaries: list[StudentSummary] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)

    def rows(self) -> list[list[Cell]]:
        return [list(self.head), *[list(r) for r in self.body]]


@dataclass
class AttendanceInsights:
    period: str
    start: Date
    end: Date
    total_students: int
    working_days: int
    total_possible: int
    total_present: int
    total_absent: int
    percentage: float
    daily_trend: list[tuple[Date, int]] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)


# -----------------------------
# Period -> date range
# -----------------------------
def get_week_range(anchor: Date | str) -> DateRange:
    """Monday..Sunday week holding `anchor`; a Sunday closes its own week."""
    day = parse_date(anchor)
    monday = day - timedelta(days=day.weekday())
    return DateRange(monday, monday + timedelta(days=6))


def get_month_range(anchor: Date | str) -> DateRange:
    if isinstance(anchor, str) and len(anchor.strip()) == 7:
        anchor = f"{anchor.strip()}-01"
    day = parse_date(anchor)
    last = calendar.monthrange(day.year, day.month)[1]
    return DateRange(day.replace(day=1), day.replace(day=last))


def _year_of(anchor: Any) -> int:
    if isinstance(anchor, int) and not isinstance(anchor, bool):
        year = anchor
    elif isinstance(anchor, str) and anchor.strip().isdigit():
        year = int(anchor.strip())
    else:
        year = parse_date(anchor).year
    if not 1 <= year <= 9999:
        raise InputError(f"Invalid year: {anchor!r}")
    return year


def get_year_range(anchor: Date | str | int) -> DateRange:
    year = _year_of(anchor)
    return DateRange(Date(year, 1, 1), Date(year, 12, 31))


def _normalize_period(period: str) -> str:
    normalized = (period or "").strip().lower()
    if normalized not in PERIODS:
        raise InputError(f"Unsupported report period: {period!r}")
    return normalized


def resolve_range(period: str, anchor: Any) -> DateRange:
    """
    Weekly and monthly registers also accept an explicit (start, end)
    selector, which is used verbatim; start > end gives an empty range.
    """
    period = _normalize_period(period)
    if isinstance(anchor, tuple):
        if period not in ("weekly", "monthly") or len(anchor) != 2:
            raise InputError(f"A (start, end) range is not valid for a {period} report.")
        return DateRange(parse_date(anchor[0]), parse_date(anchor[1]))

    if period == "daily":
        day = parse_date(anchor)
        return DateRange(day, day)
    if period == "weekly":
        return get_week_range(anchor)
    if period == "monthly":
        return get_month_range(anchor)
    return get_year_range(anchor)


# -----------------------------
# Percentages
# -----------------------------
def attendance_percentage(present: int, working_days: int) -> int | None:
    """present / working * 100 rounded half-up; None when there is no working day."""
    if working_days <= 0:
        return None
    return (200 * present + working_days) // (2 * working_days)


def format_percentage(value: int | None) -> str:
    return config.PERCENT_SENTINEL if value is None else f"{value}%"


def _index_records(records: Iterable[AttendanceRecord]) -> dict[tuple[str, Date], AttendanceRecord]:
    return {r.key: r for r in records}


def _is_present(index: dict, student_id: str, day: Date) -> bool:
    record = index.get((student_id, day))
    return record is not None and record.status == "Present"


# -----------------------------
# Builders
# -----------------------------
def _daily_report(rng, students, index, hols, rule) -> ReportMatrix:
    day = rng.start
    kind = classify(day, hols, rule)
    head = ["Student Name", "Roll No", "Status", "Method"]
    body: list[list[Cell]] = []
    summaries: list[StudentSummary] = []

    for student in students:
        record = index.get((student.id, day))
        method = record.method if record else "N/A"
        if kind == WORKING:
            status = record.status if record else "Absent"
            present = 1 if status == "Present" else 0
            working = 1
        else:
            status = DAILY_STATUS[kind]
            present = working = 0
        body.append([student.name, student.roll_no, status, method])
        summaries.append(
            StudentSummary(
                student.id,
                student.name,
                student.roll_no,
                present,
                working,
                attendance_percentage(present, working),
            )
        )

    return ReportMatrix("daily", rng.start, rng.end, head, body, [day], summaries)


def _date_label(period: str, day: Date) -> str:
    if period == "weekly":
        return f"{day:%a} {day.day}"
    return str(day.day)


def _register_report(period, rng, students, index, hols, rule) -> ReportMatrix:
    days = classify_range(rng.start, rng.end, hols, rule)
    head = ["Student", "Roll No", *[_date_label(period, d) for d, _ in days], "Total Present", "Percentage"]
    body: list[list[Cell]] = []
    summaries: list[StudentSummary] = []

    for student in students:
        row: list[Cell] = [student.name, student.roll_no]
        present = working = 0
        for day, kind in days:
            if kind != WORKING:
                row.append(MARKERS[kind])
                continue
            working += 1
            if _is_present(index, student.id, day):
                present += 1
                row.append("P")
            else:
                row.append("A")

        pct = attendance_percentage(present, working)
        row.extend([present, format_percentage(pct)])
        body.append(row)
        summaries.append(StudentSummary(student.id, student.name, student.roll_no, present, working, pct))

    return ReportMatrix(period, rng.start, rng.end, head, body, [d for d, _ in days], summaries)


def _yearly_report(rng, students, index, hols, rule) -> ReportMatrix:
    year = rng.start.year
    month_days = [
        working_dates(*get_month_range(Date(year, month, 1)), hols, rule)
        for month in range(1, 13)
    ]
    head = ["Student", "Roll No", *MONTH_LABELS, "Total %"]
    body: list[list[Cell]] = []
    summaries: list[StudentSummary] = []

    for student in students:
        row: list[Cell] = [student.name, student.roll_no]
        monthly: list[int | None] = []
        total_present = total_working = 0
        for days in month_days:
            present = sum(1 for d in days if _is_present(index, student.id, d))
            pct = attendance_percentage(present, len(days))
            monthly.append(pct)
            row.append(format_percentage(pct))
            total_present += present
            total_working += len(days)

        annual = attendance_percentage(total_present, total_working)
        row.append(format_percentage(annual))
        body.append(row)
        summaries.append(
            StudentSummary(
                student.id,
                student.name,
                student.roll_no,
                total_present,
                total_working,
                annual,
                tuple(monthly),
            )
        )

    return ReportMatrix("yearly", rng.start, rng.end, head, body, [], summaries)


def build_report(
    period: str,
    anchor: Any,
    students: Sequence[Student],
    records: Iterable[AttendanceRecord],
    holidays: Iterable[Holiday | Date | str],
    weekly_off: Iterable[int | str] | None = None,
) -> ReportMatrix:
    period = _normalize_period(period)
    rng = resolve_range(period, anchor)
    hols = holiday_dates(holidays)
    rule = weekly_off_rule(weekly_off)
    index = _index_records(records)

    if period == "daily":
        matrix = _daily_report(rng, students, index, hols, rule)
    elif period == "yearly":
        matrix = _yearly_report(rng, students, index, hols, rule)
    else:
        matrix = _register_report(period, rng, students, index, hols, rule)

    if not students:
        matrix.notices.append(NOTICE_NO_STUDENTS)
    if not working_dates(rng.start, rng.end, hols, rule):
        matrix.notices.append(NOTICE_NO_WORKING_DAYS)
    for notice in matrix.notices:
        logger.warning("%s report %s..%s: %s", period, rng.start, rng.end, notice)

    logger.info("Built %s report %s..%s for %d student(s)", period, rng.start, rng.end, len(students))
    return matrix


def build_insights(
    period: str,
    anchor: Any,
    students: Sequence[Student],
    records: Iterable[AttendanceRecord],
    holidays: Iterable[Holiday | Date | str],
    weekly_off: Iterable[int | str] | None = None,
) -> AttendanceInsights:
    period = _normalize_period(period)
    rng = resolve_range(period, anchor)
    working = working_dates(rng.start, rng.end, holiday_dates(holidays), weekly_off_rule(weekly_off))

    student_ids = {s.id for s in students}
    present_records = [
        r for r in records
        if r.status == "Present" and r.student_id in student_ids and rng.start <= r.date <= rng.end
    ]

    total_students = len(students)
    total_possible = total_students * len(working)
    total_present = len(present_records)
    percentage = 0.0
    if total_possible > 0:
        # tenths of a percent, half-up like attendance_percentage
        percentage = ((2000 * total_present + total_possible) // (2 * total_possible)) / 10

    trend: list[tuple[Date, int]] = []
    if period in ("weekly", "monthly"):
        per_day: dict[Date, int] = {}
        for record in present_records:
            per_day[record.date] = per_day.get(record.date, 0) + 1
        trend = [(d, per_day.get(d, 0)) for d in working]

    notices: list[str] = []
    if not students:
        notices.append(NOTICE_NO_STUDENTS)
    if not working:
        notices.append(NOTICE_NO_WORKING_DAYS)

    return AttendanceInsights(
        period=period,
        start=rng.start,
        end=rng.end,
        total_students=total_students,
        working_days=len(working),
        total_possible=total_possible,
        total_present=total_present,
        total_absent=total_possible - total_present,
        percentage=percentage,
        daily_trend=trend,
        notices=notices,
    )
