from datetime import date as Date, datetime, timedelta, timezone
from typing import Iterable, Iterator, Literal

from backend import config
from backend.errors import InputError
from backend.models import Holiday, parse_date

DayKind = Literal["Working", "Holiday", "WeeklyOff"]

WORKING: DayKind = "Working"
HOLIDAY: DayKind = "Holiday"
WEEKLY_OFF: DayKind = "WeeklyOff"

HolidaySet = frozenset[Date]
WeeklyOffRule = frozenset[int]


def today() -> Date:
    """Current UTC calendar date; attendance days are keyed in UTC."""
    return datetime.now(timezone.utc).date()


def holiday_dates(holidays: Iterable[Holiday | Date | str]) -> HolidaySet:
    if isinstance(holidays, frozenset) and all(type(h) is Date for h in holidays):
        return holidays
    return frozenset(h.date if isinstance(h, Holiday) else parse_date(h) for h in holidays)


def weekly_off_rule(days: Iterable[int | str] | None = None) -> WeeklyOffRule:
    """
    Weekday numbers (Monday=0 .. Sunday=6) or names ("sun", "Saturday").
    None means the configured default.
    """
    if days is None:
        return config.WEEKLY_OFF_DAYS
    if isinstance(days, frozenset) and all(isinstance(d, int) for d in days):
        return days

    rule: set[int] = set()
    for day in days:
        if isinstance(day, int) and 0 <= day <= 6:
            rule.add(day)
        elif isinstance(day, str) and day[:3].lower() in config.WEEKDAY_NAMES:
            rule.add(config.WEEKDAY_NAMES.index(day[:3].lower()))
        else:
            raise InputError(f"Invalid weekly off day: {day!r}")
    return frozenset(rule)


def classify(
    day: Date | str,
    holidays: Iterable[Holiday | Date | str],
    weekly_off: Iterable[int | str] | None = None,
) -> DayKind:
    # a holiday on the weekly off day still counts as a holiday
    target = parse_date(day)
    if target in holiday_dates(holidays):
        return HOLIDAY
    if target.weekday() in weekly_off_rule(weekly_off):
        return WEEKLY_OFF
    return WORKING


def dates_in_range(start: Date | str, end: Date | str) -> Iterator[Date]:
    """Every calendar date from start to end inclusive; empty when start > end."""
    current, last = parse_date(start), parse_date(end)
    step = timedelta(days=1)
    while current <= last:
        yield current
        current += step


def classify_range(
    start: Date | str,
    end: Date | str,
    holidays: Iterable[Holiday | Date | str],
    weekly_off: Iterable[int | str] | None = None,
) -> list[tuple[Date, DayKind]]:
    hols = holiday_dates(holidays)
    rule = weekly_off_rule(weekly_off)
    return [(d, classify(d, hols, rule)) for d in dates_in_range(start, end)]


def working_dates(
    start: Date | str,
    end: Date | str,
    holidays: Iterable[Holiday | Date | str],
    weekly_off: Iterable[int | str] | None = None,
) -> list[Date]:
    return [d for d, kind in classify_range(start, end, holidays, weekly_off) if kind == WORKING]


def working_days_in_range(
    start: Date | str,
    end: Date | str,
    holidays: Iterable[Holiday | Date | str],
    weekly_off: Iterable[int | str] | None = None,
) -> int:
    return len(working_dates(start, end, holidays, weekly_off))
