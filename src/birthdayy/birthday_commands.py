from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Callable

from birthdayy.config_store import (
    BirthdayNotFoundError,
    DuplicateBirthdayError,
    add_birthday,
    get_guild_member_birthday,
    get_guild_settings,
    list_guild_birthdays,
    load_config,
    remove_birthday,
    replace_birthday,
)
from birthdayy.date_logic import (
    InvalidBirthdayError,
    format_for_display,
    resolve_now,
    turning_age,
    upcoming_occurrence,
    validate_calendar_date,
)
from birthdayy.models import BirthdayEntry, CalendarDate
from birthdayy.reminder_service import local_reference

LOGGER = logging.getLogger(__name__)

_ISO_FULL = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
_ISO_SHORT = re.compile(r"(\d{1,2})-(\d{1,2})")
_DOTTED = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})?")


@dataclass(frozen=True)
class CommandReply:
    ok: bool
    message: str


@dataclass(frozen=True)
class UpcomingBirthday:
    user_id: int
    birthday: CalendarDate
    next_date: date
    days_until: int
    turning_age: int | None


def mention(user_id: int) -> str:
    return f"<@{user_id}>"


def parse_birthday_text(raw_text: str, now: datetime | int | float | None = None) -> CalendarDate:
    value = raw_text.strip()

    full_match = _ISO_FULL.fullmatch(value)
    if full_match:
        year, month, day = (int(group) for group in full_match.groups())
        return validate_calendar_date(month, day, year, now)

    short_match = _ISO_SHORT.fullmatch(value)
    if short_match:
        month, day = (int(group) for group in short_match.groups())
        return validate_calendar_date(month, day, None, now)

    dotted_match = _DOTTED.fullmatch(value) or _DOTTED.fullmatch(value + ".")
    if dotted_match:
        day = int(dotted_match.group(1))
        month = int(dotted_match.group(2))
        year = int(dotted_match.group(3)) if dotted_match.group(3) else None
        return validate_calendar_date(month, day, year, now)

    raise InvalidBirthdayError("Birthday must use YYYY-MM-DD, MM-DD, DD.MM.YYYY or DD.MM.")


def _forbidden(author_id: int, target_id: int, can_manage_roles: bool) -> bool:
    return author_id != target_id and not can_manage_roles


class BirthdayCommands:
    """Register, update, remove and query birthdays for guild members.

    Other members' birthdays may only be changed by someone with the
    Manage Roles permission; the caller decides that and passes it in.
    """

    def __init__(self, config_path: Path, now_provider: Callable[[], datetime] | None = None) -> None:
        self._config_path = config_path
        self._now_provider = now_provider or resolve_now

    def register(
        self,
        guild_id: int,
        author_id: int,
        target_id: int,
        raw_date: str,
        *,
        can_manage_roles: bool = False,
    ) -> CommandReply:
        if _forbidden(author_id, target_id, can_manage_roles):
            return CommandReply(False, "You don't have the permission to register other users birthdays.")

        try:
            birthday = parse_birthday_text(raw_date, self._now_provider())
        except InvalidBirthdayError:
            return CommandReply(False, "The date you entered is not valid.")

        entry = BirthdayEntry(
            guild_id=guild_id,
            user_id=target_id,
            month=birthday.month,
            day=birthday.day,
            year=birthday.year,
        )
        try:
            add_birthday(self._config_path, entry)
        except DuplicateBirthdayError:
            return CommandReply(False, "This user's birthday is already registered. Use /birthday update.")
        except ValueError as exc:
            LOGGER.warning("Rejected birthday for user %s in guild %s: %s", target_id, guild_id, exc)
            return CommandReply(False, "The date you entered is not valid.")

        LOGGER.info("Registered birthday for user %s in guild %s", target_id, guild_id)
        return CommandReply(True, f"The birthday of {mention(target_id)} was successfully registered.")

    def update(
        self,
        guild_id: int,
        author_id: int,
        target_id: int,
        raw_date: str,
        *,
        can_manage_roles: bool = False,
    ) -> CommandReply:
        if _forbidden(author_id, target_id, can_manage_roles):
            return CommandReply(False, "You don't have the permission to update other users birthdays.")

        try:
            birthday = parse_birthday_text(raw_date, self._now_provider())
        except InvalidBirthdayError:
            return CommandReply(False, "The date you entered is not valid.")

        entry = BirthdayEntry(
            guild_id=guild_id,
            user_id=target_id,
            month=birthday.month,
            day=birthday.day,
            year=birthday.year,
        )
        try:
            replace_birthday(self._config_path, entry)
        except BirthdayNotFoundError:
            return CommandReply(False, "This user has no birthday registered.")
        except ValueError as exc:
            LOGGER.warning("Rejected birthday for user %s in guild %s: %s", target_id, guild_id, exc)
            return CommandReply(False, "The date you entered is not valid.")

        LOGGER.info("Updated birthday for user %s in guild %s", target_id, guild_id)
        return CommandReply(True, f"The birthday of {mention(target_id)} was successfully updated.")

    def remove(
        self,
        guild_id: int,
        author_id: int,
        target_id: int,
        *,
        can_manage_roles: bool = False,
    ) -> CommandReply:
        if _forbidden(author_id, target_id, can_manage_roles):
            return CommandReply(False, "You don't have the permission to remove other users birthdays.")

        try:
            remove_birthday(self._config_path, guild_id, target_id)
        except BirthdayNotFoundError:
            return CommandReply(False, "This user has no birthday registered.")

        LOGGER.info("Removed birthday for user %s in guild %s", target_id, guild_id)
        return CommandReply(True, f"The birthday of {mention(target_id)} was successfully removed.")

    def show(self, guild_id: int, target_id: int) -> CommandReply:
        config = load_config(self._config_path)
        entry = get_guild_member_birthday(config, guild_id, target_id)
        if entry is None:
            return CommandReply(False, "This user doesn't have a birthday registered.")
        return CommandReply(True, f"{mention(target_id)}'s birthday is at the {format_for_display(entry.date)}.")

    def list_upcoming(self, guild_id: int, limit: int = 10) -> list[UpcomingBirthday]:
        config = load_config(self._config_path)
        guild = get_guild_settings(config, guild_id)
        local_now = local_reference(resolve_now(self._now_provider()), guild)

        rows: list[UpcomingBirthday] = []
        for entry in list_guild_birthdays(config, guild_id):
            occurrence = upcoming_occurrence(entry.month, entry.day, local_now, guild.leap_day_rule)
            next_date = occurrence.date()
            rows.append(
                UpcomingBirthday(
                    user_id=entry.user_id,
                    birthday=entry.date,
                    next_date=next_date,
                    days_until=(next_date - local_now.date()).days,
                    turning_age=turning_age(entry.date, occurrence),
                )
            )

        rows.sort(key=lambda row: (row.next_date, row.user_id))
        return rows[:limit]


def render_upcoming(rows: list[UpcomingBirthday]) -> str:
    if not rows:
        return "No birthdays are registered in this server."

    lines = [f"Upcoming birthdays ({len(rows)})"]
    for index, row in enumerate(rows, start=1):
        details = [format_for_display(row.birthday)]
        if row.days_until == 0:
            details.append("Today")
        else:
            details.append(f"In {row.days_until}d")
        if row.turning_age is not None:
            details.append(f"Turning {row.turning_age}")
        lines.append(f"{index}. {mention(row.user_id)} | {' | '.join(details)}")

    return "\n".join(lines)
