from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


DEFAULT_ANNOUNCEMENT_MESSAGE = "{line}🎂 Happy birthday {user}!{line}Have a wonderful day."
DEFAULT_LEAP_DAY_RULE = "mar1"


class Month(IntEnum):
    JANUARY = 1
    FEBRUARY = 2
    MARCH = 3
    APRIL = 4
    MAY = 5
    JUNE = 6
    JULY = 7
    AUGUST = 8
    SEPTEMBER = 9
    OCTOBER = 10
    NOVEMBER = 11
    DECEMBER = 12


class Comparison(IntEnum):
    BEFORE = -1
    SAME = 0
    AFTER = 1


@dataclass(frozen=True)
class CalendarDate:
    month: int
    day: int
    year: int | None = None


@dataclass(frozen=True)
class BirthdayEntry:
    guild_id: int
    user_id: int
    month: int
    day: int
    year: int | None

    @property
    def date(self) -> CalendarDate:
        return CalendarDate(month=self.month, day=self.day, year=self.year)


@dataclass(frozen=True)
class GuildSettings:
    guild_id: int
    announcement_channel_id: int | None = None
    timezone_offset_hours: int = 0
    announcement_message: str = DEFAULT_ANNOUNCEMENT_MESSAGE
    leap_day_rule: str = DEFAULT_LEAP_DAY_RULE
    enabled: bool = True


@dataclass(frozen=True)
class AppConfig:
    guilds: list[GuildSettings]
    birthdays: list[BirthdayEntry]
