from datetime import date, timedelta

import pytest

import backend.config as config
from backend.errors import InputError
from backend.models import AttendanceRecord, Holiday, Student
from backend.reports import (
    MONTH_LABELS,
    NOTICE_NO_STUDENTS,
    NOTICE_NO_WORKING_DAYS,
    DateRange,
    attendance_percentage,
    build_insights,
    build_report,
    get_week_range,
    resolve_range,
)

MONDAY = date(2024, 3, 4)
SUNDAY = date(2024, 3, 10)

ASHA = Student(id="s1", class_id="c", name="Asha", roll_no="1")
BILAL = Student(id="s2", class_id="c", name="Bilal", roll_no="2")


def _present(student, *days):
    return [AttendanceRecord(student_id=student.id, date=d, status="Present") for d in days]


def _absent(student, *days):
    return [AttendanceRecord(student_id=student.id, date=d, status="Absent") for d in days]


# -----------------------------
# Ranges
# -----------------------------
def test_sunday_closes_its_own_week():
    assert get_week_range(SUNDAY) == DateRange(MONDAY, SUNDAY)
    assert get_week_range(MONDAY) == DateRange(MONDAY, SUNDAY)
    assert get_week_range(date(2024, 3, 6)) == DateRange(MONDAY, SUNDAY)


def test_resolve_range_per_period():
    assert resolve_range("daily", "2024-03-06") == DateRange(date(2024, 3, 6), date(2024, 3, 6))
    assert resolve_range("monthly", "2024-02") == DateRange(date(2024, 2, 1), date(2024, 2, 29))
    assert resolve_range("Monthly", date(2023, 2, 14)) == DateRange(date(2023, 2, 1), date(2023, 2, 28))
    assert resolve_range("yearly", 2024) == DateRange(date(2024, 1, 1), date(2024, 12, 31))
    assert resolve_range("yearly", "2024-06-01") == DateRange(date(2024, 1, 1), date(2024, 12, 31))


def test_resolve_range_rejects_bad_input():
    with pytest.raises(InputError):
        resolve_range("fortnightly", MONDAY)
    with pytest.raises(InputError):
        resolve_range("yearly", (MONDAY, SUNDAY))
    with pytest.raises(InputError):
        resolve_range("monthly", "March")


def test_percentage_rounds_half_up():
    assert attendance_percentage(3, 5) == 60
    assert attendance_percentage(1, 8) == 13   # 12.5
    assert attendance_percentage(2, 3) == 67
    assert attendance_percentage(0, 0) is None


# -----------------------------
# Registers
# -----------------------------
def test_five_weekdays_three_present_is_sixty_percent():
    records = _present(ASHA, MONDAY, MONDAY + timedelta(days=2), MONDAY + timedelta(days=4))
    records += _absent(ASHA, MONDAY + timedelta(days=1))

    report = build_report("weekly", MONDAY, [ASHA], records, [], weekly_off=["sat", "sun"])

    assert report.head == [
        "Student", "Roll No",
        "Mon 4", "Tue 5", "Wed 6", "Thu 7", "Fri 8", "Sat 9", "Sun 10",
        "Total Present", "Percentage",
    ]
    assert report.body == [["Asha", "1", "P", "A", "P", "A", "P", "S", "S", 3, "60%"]]
    summary = report.summaries[0]
    assert (summary.present, summary.working_days, summary.percentage) == (3, 5, 60)


def test_holiday_and_weekly_off_markers_leave_denominator():
    holidays = [Holiday(date=date(2024, 3, 8), school_id="sch", description="Holi")]
    # a stray record on the holiday must not count
    records = _present(ASHA, MONDAY, date(2024, 3, 8), SUNDAY)

    report = build_report("weekly", SUNDAY, [ASHA, BILAL], records, holidays)

    asha_row, bilal_row = report.body
    assert asha_row[2:9] == ["P", "A", "A", "A", "H", "A", "S"]
    assert asha_row[9:] == [1, "20%"]
    assert bilal_row[9:] == [0, "0%"]
    assert report.dates == [MONDAY + timedelta(days=i) for i in range(7)]
    assert report.rows()[0] == report.head


def test_monthly_headers_are_day_numbers():
    report = build_report("monthly", "2024-02", [ASHA], _present(ASHA, date(2024, 2, 1)), [])

    assert report.head[2:-2] == [str(d) for d in range(1, 30)]
    assert report.summaries[0].working_days == 25  # 29 days, 4 Sundays
    assert report.body[0][-2:] == [1, "4%"]


def test_daily_list_reports_status_and_method():
    records = [
        AttendanceRecord(student_id=ASHA.id, date=MONDAY, status="Present", method="FaceScan", confidence=0.92),
    ]

    report = build_report("daily", MONDAY, [ASHA, BILAL], records, [])

    assert report.head == ["Student Name", "Roll No", "Status", "Method"]
    assert report.body == [
        ["Asha", "1", "Present", "FaceScan"],
        ["Bilal", "2", "Absent", "N/A"],
    ]


def test_daily_list_on_holiday():
    holidays = [Holiday(date=MONDAY, school_id="sch", description="Holi")]
    report = build_report("daily", MONDAY, [ASHA], [], holidays)

    assert report.body == [["Asha", "1", "Holiday", "N/A"]]
    assert report.summaries[0].percentage is None
    assert NOTICE_NO_WORKING_DAYS in report.notices


def test_yearly_summary_has_monthly_and_annual_percentages():
    # January 2024: 31 days, 4 Sundays -> 27 working days
    january = [date(2024, 1, d) for d in range(1, 32) if date(2024, 1, d).weekday() != 6]
    records = _present(ASHA, *january) + _present(ASHA, date(2024, 2, 1))

    report = build_report("yearly", 2024, [ASHA], records, [])

    assert report.head == ["Student", "Roll No", *MONTH_LABELS, "Total %"]
    row = report.body[0]
    assert row[2] == "100%"
    assert row[3] == "4%"
    summary = report.summaries[0]
    assert len(summary.monthly_percentages) == 12
    assert summary.present == 28
    assert summary.working_days == 366 - 52
    assert row[-1] == f"{attendance_percentage(28, 314)}%"


def test_empty_range_has_no_date_columns(monkeypatch):
    monkeypatch.setattr(config, "PERCENT_SENTINEL", "--")

    report = build_report("weekly", (MONDAY, MONDAY - timedelta(days=1)), [ASHA], [], [])

    assert report.head == ["Student", "Roll No", "Total Present", "Percentage"]
    assert report.body == [["Asha", "1", 0, "--"]]
    assert report.dates == []
    assert report.summaries[0].percentage is None


def test_no_students_is_a_notice_not_an_error():
    report = build_report("monthly", MONDAY, [], [], [])
    assert report.body == []
    assert report.notices == [NOTICE_NO_STUDENTS]


# -----------------------------
# Insights
# -----------------------------
def test_insights_totals_and_trend():
    holidays = [date(2024, 3, 8)]
    records = _present(ASHA, MONDAY, date(2024, 3, 5)) + _present(BILAL, MONDAY)
    records += _absent(BILAL, date(2024, 3, 5))
    # outside the week
    records += _present(ASHA, date(2024, 3, 11))

    insights = build_insights("weekly", MONDAY, [ASHA, BILAL], records, holidays)

    assert insights.working_days == 5
    assert insights.total_possible == 10
    assert insights.total_present == 3
    assert insights.total_absent == 7
    assert insights.percentage == 30.0
    assert insights.daily_trend == [
        (date(2024, 3, 4), 2),
        (date(2024, 3, 5), 1),
        (date(2024, 3, 6), 0),
        (date(2024, 3, 7), 0),
        (date(2024, 3, 9), 0),
    ]


def test_insights_without_possible_attendance():
    insights = build_insights("daily", SUNDAY, [ASHA], [], [])
    assert insights.total_possible == 0
    assert insights.percentage == 0.0
    assert insights.daily_trend == []
    assert insights.notices == [NOTICE_NO_WORKING_DAYS]


def test_insight_percentage_rounds_half_up():
    # Mon 4 .. Tue 12 March minus Sunday 10th: 8 working days, 2 students
    insights = build_insights("weekly", (MONDAY, date(2024, 3, 12)), [ASHA, BILAL], _present(ASHA, MONDAY), [], weekly_off=[6])

    assert insights.total_possible == 16
    assert insights.percentage == 6.3  # 6.25
