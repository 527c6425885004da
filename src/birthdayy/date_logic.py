from __future__ import annotations

from datetime import datetime, timedelta, timezone

from birthdayy.models import DEFAULT_LEAP_DAY_RULE, CalendarDate, Comparison, Month

ALLOWED_LEAP_DAY_RULES = {"feb28", "mar1"}

_THIRTY_ONE_DAY_MONTHS = {
    Month.JANUARY,
    Month.MARCH,
    Month.MAY,
    Month.JULY,
    Month.AUGUST,
    Month.OCTOBER,
    Month.DECEMBER,
}


class InvalidBirthdayError(ValueError):
    pass


def resolve_now(now: datetime | int | float | None = None) -> datetime:
    """Normalize a reference instant to an aware UTC datetime.

    ``now`` may be an aware datetime, epoch milliseconds, or ``None`` for the
    current time. Naive datetimes are taken to be UTC.
    """
    if now is None:
        return datetime.now(timezone.utc)
    if isinstance(now, datetime):
        if now.tzinfo is None:
            return now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc)
    return datetime.fromtimestamp(now / 1000, tz=timezone.utc)


def is_leap_year(year: int) -> bool:
    return (year % 4 == 0 and year % 100 != 0) or year % 400 == 0


def is_valid_day_for_month(leap: bool, month: int, day: int) -> bool:
    if day < 1:
        return False

    if month == Month.FEBRUARY:
        return day <= (29 if leap else 28)
    if month in _THIRTY_ONE_DAY_MONTHS:
        return day <= 31
    return day <= 30


def validate_calendar_date(
    month: int,
    day: int,
    year: int | None = None,
    now: datetime | int | float | None = None,
) -> CalendarDate:
    if month < 1 or month > 12:
        raise InvalidBirthdayError(f"Invalid month: {month}")

    # Without a year, leap status comes from the reference year.
    leap_year = year if year is not None else resolve_now(now).year
    if not is_valid_day_for_month(is_leap_year(leap_year), month, day):
        raise InvalidBirthdayError(f"Invalid month/day combination: {month:02d}-{day:02d}")

    return CalendarDate(month=month, day=day, year=year)


def compare_to_today(month: int, day: int, now: datetime | int | float | None = None) -> Comparison:
    reference = resolve_now(now)

    if month < reference.month:
        return Comparison.BEFORE
    if month > reference.month:
        return Comparison.AFTER

    if day < reference.day:
        return Comparison.BEFORE
    if day > reference.day:
        return Comparison.AFTER

    return Comparison.SAME


def compute_age(birthday: CalendarDate, now: datetime | int | float | None = None) -> int | None:
    """Return completed years since ``birthday``, or None when the year is unknown.

    The birthday itself counts as already happened, so on 2021-03-18 someone
    born 2020-03-18 is 1 while someone born 2020-05-10 is still 0.
    """
    if birthday.year is None:
        return None

    reference = resolve_now(now)
    years = reference.year - birthday.year
    if compare_to_today(birthday.month, birthday.day, reference) is Comparison.AFTER:
        return years - 1
    return years


def turning_age(birthday: CalendarDate, occurrence: datetime) -> int | None:
    if birthday.year is None:
        return None
    return occurrence.year - birthday.year


def occurrence_in_year(
    year: int,
    month: int,
    day: int,
    leap_day_rule: str = DEFAULT_LEAP_DAY_RULE,
) -> datetime:
    """UTC midnight of ``month``/``day`` in ``year``.

    Feb 29 in a non-leap year follows ``leap_day_rule``: ``mar1`` rolls over
    to March 1st, ``feb28`` clamps to February 28th.
    """
    if leap_day_rule not in ALLOWED_LEAP_DAY_RULES:
        raise InvalidBirthdayError(f"Unsupported leap day rule: {leap_day_rule}")

    if month == Month.FEBRUARY and day == 29 and not is_leap_year(year):
        if leap_day_rule == "feb28":
            return datetime(year, 2, 28, tzinfo=timezone.utc)
        return datetime(year, 3, 1, tzinfo=timezone.utc)

    # Out-of-range days roll over into the neighbouring month.
    return datetime(year, month, 1, tzinfo=timezone.utc) + timedelta(days=day - 1)


def upcoming_occurrence(
    month: int,
    day: int,
    now: datetime | int | float | None = None,
    leap_day_rule: str = DEFAULT_LEAP_DAY_RULE,
) -> datetime:
    """First occurrence whose calendar date is today or later.

    Compares the real occurrence date rather than (month, day), so a Feb 29
    birthday moved to Mar 1 still counts as today on Mar 1.
    """
    reference = resolve_now(now)
    this_year = occurrence_in_year(reference.year, month, day, leap_day_rule)
    if this_year.date() >= reference.date():
        return this_year
    return occurrence_in_year(reference.year + 1, month, day, leap_day_rule)


def next_occurrence(
    month: int,
    day: int,
    now: datetime | int | float | None = None,
    *,
    repeat_if_today: bool = False,
    timezone_offset_ms: int = 0,
    leap_day_rule: str = DEFAULT_LEAP_DAY_RULE,
) -> datetime:
    reference = resolve_now(now)

    comparison = compare_to_today(month, day, reference)
    if repeat_if_today:
        next_year = comparison <= Comparison.SAME
    else:
        next_year = comparison < Comparison.SAME

    year = reference.year + (1 if next_year else 0)
    occurrence = occurrence_in_year(year, month, day, leap_day_rule)
    return occurrence + timedelta(milliseconds=timezone_offset_ms)


def month_name(month: int) -> str:
    return Month(month).name.capitalize()


def format_for_display(birthday: CalendarDate) -> str:
    formatted = f"{birthday.day}. {month_name(birthday.month)}"
    if birthday.year is not None:
        formatted += f" ({birthday.year})"
    return formatted
