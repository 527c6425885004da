from __future__ import annotations

import logging
import os
import tempfile
import tomllib
from pathlib import Path

from birthdayy.date_logic import ALLOWED_LEAP_DAY_RULES, InvalidBirthdayError, validate_calendar_date
from birthdayy.models import (
    DEFAULT_ANNOUNCEMENT_MESSAGE,
    DEFAULT_LEAP_DAY_RULE,
    AppConfig,
    BirthdayEntry,
    GuildSettings,
)

LOGGER = logging.getLogger(__name__)

MIN_TIMEZONE_OFFSET = -12
MAX_TIMEZONE_OFFSET = 14


class DuplicateBirthdayError(ValueError):
    pass


class BirthdayNotFoundError(ValueError):
    pass


def _toml_escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
    )


def _validate_guild(settings: GuildSettings) -> GuildSettings:
    offset = int(settings.timezone_offset_hours)
    if offset < MIN_TIMEZONE_OFFSET or offset > MAX_TIMEZONE_OFFSET:
        raise ValueError(
            f"timezone_offset_hours must be between {MIN_TIMEZONE_OFFSET} and {MAX_TIMEZONE_OFFSET}"
        )

    leap_day_rule = settings.leap_day_rule.strip().lower()
    if leap_day_rule not in ALLOWED_LEAP_DAY_RULES:
        raise ValueError(f"leap_day_rule must be one of {sorted(ALLOWED_LEAP_DAY_RULES)}")

    if not settings.announcement_message.strip():
        raise ValueError("announcement_message must not be empty")

    return GuildSettings(
        guild_id=int(settings.guild_id),
        announcement_channel_id=(
            int(settings.announcement_channel_id) if settings.announcement_channel_id is not None else None
        ),
        timezone_offset_hours=offset,
        announcement_message=settings.announcement_message,
        leap_day_rule=leap_day_rule,
        enabled=bool(settings.enabled),
    )


def _validate_birthday(birthday: BirthdayEntry) -> BirthdayEntry:
    if birthday.year is not None and (birthday.year < 1900 or birthday.year > 3000):
        raise ValueError("year must be between 1900 and 3000 when provided")

    # Records without a year are stored for every year, Feb 29 included.
    try:
        validate_calendar_date(birthday.month, birthday.day, birthday.year if birthday.year is not None else 2000)
    except InvalidBirthdayError as exc:
        raise ValueError(str(exc)) from exc

    return BirthdayEntry(
        guild_id=int(birthday.guild_id),
        user_id=int(birthday.user_id),
        month=int(birthday.month),
        day=int(birthday.day),
        year=int(birthday.year) if birthday.year is not None else None,
    )


def validate_config(config: AppConfig) -> AppConfig:
    validated_guilds: list[GuildSettings] = []
    seen_guilds: set[int] = set()
    for guild in config.guilds:
        validated = _validate_guild(guild)
        if validated.guild_id in seen_guilds:
            raise ValueError(f"Duplicate guild settings: {validated.guild_id}")
        seen_guilds.add(validated.guild_id)
        validated_guilds.append(validated)

    validated_birthdays: list[BirthdayEntry] = []
    seen_members: set[tuple[int, int]] = set()
    for birthday in config.birthdays:
        validated = _validate_birthday(birthday)
        member_key = (validated.guild_id, validated.user_id)
        if member_key in seen_members:
            raise ValueError(f"Duplicate birthday for user {validated.user_id} in guild {validated.guild_id}")
        seen_members.add(member_key)
        validated_birthdays.append(validated)

    return AppConfig(guilds=validated_guilds, birthdays=validated_birthdays)


def load_config(path: Path) -> AppConfig:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with path.open("rb") as file_obj:
        data = tomllib.load(file_obj)

    guilds: list[GuildSettings] = []
    for row in data.get("guilds", []):
        guilds.append(
            GuildSettings(
                guild_id=int(row.get("guild_id", 0)),
                announcement_channel_id=(
                    int(row["announcement_channel_id"]) if row.get("announcement_channel_id") is not None else None
                ),
                timezone_offset_hours=int(row.get("timezone_offset_hours", 0)),
                announcement_message=str(row.get("announcement_message", DEFAULT_ANNOUNCEMENT_MESSAGE)),
                leap_day_rule=str(row.get("leap_day_rule", DEFAULT_LEAP_DAY_RULE)),
                enabled=bool(row.get("enabled", True)),
            )
        )

    birthdays: list[BirthdayEntry] = []
    for row in data.get("birthdays", []):
        birthdays.append(
            BirthdayEntry(
                guild_id=int(row.get("guild_id", 0)),
                user_id=int(row.get("user_id", 0)),
                month=int(row.get("month", 0)),
                day=int(row.get("day", 0)),
                year=int(row["year"]) if row.get("year") is not None else None,
            )
        )

    return validate_config(AppConfig(guilds=guilds, birthdays=birthdays))


def render_config(config: AppConfig) -> str:
    validated = validate_config(config)

    lines: list[str] = [
        "# Placeholders for announcement_message: {user}, {user.name}, {user.tag}, {age}, {age.ordinal}, {line}.",
        "",
    ]

    for guild in validated.guilds:
        lines.append("[[guilds]]")
        lines.append(f"guild_id = {guild.guild_id}")
        if guild.announcement_channel_id is not None:
            lines.append(f"announcement_channel_id = {guild.announcement_channel_id}")
        lines.append(f"timezone_offset_hours = {guild.timezone_offset_hours}")
        lines.append(f'announcement_message = "{_toml_escape(guild.announcement_message)}"')
        lines.append(f'leap_day_rule = "{guild.leap_day_rule}"')
        lines.append(f"enabled = {'true' if guild.enabled else 'false'}")
        lines.append("")

    for birthday in validated.birthdays:
        lines.append("[[birthdays]]")
        lines.append(f"guild_id = {birthday.guild_id}")
        lines.append(f"user_id = {birthday.user_id}")
        lines.append(f"month = {birthday.month}")
        lines.append(f"day = {birthday.day}")
        if birthday.year is not None:
            lines.append(f"year = {birthday.year}")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


def save_config_atomic(path: Path, config: AppConfig) -> None:
    rendered = render_config(config)
    path.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        delete=False,
    ) as temp_file:
        temp_file.write(rendered)
        temp_name = temp_file.name

    os.replace(temp_name, path)


def ensure_default_config(path: Path) -> None:
    if path.exists():
        return

    save_config_atomic(path, AppConfig(guilds=[], birthdays=[]))
    LOGGER.info("Created empty birthday config at %s", path)


def get_guild_settings(config: AppConfig, guild_id: int) -> GuildSettings:
    for guild in config.guilds:
        if guild.guild_id == guild_id:
            return guild
    return GuildSettings(guild_id=guild_id)


def get_guild_member_birthday(config: AppConfig, guild_id: int, user_id: int) -> BirthdayEntry | None:
    for birthday in config.birthdays:
        if birthday.guild_id == guild_id and birthday.user_id == user_id:
            return birthday
    return None


def list_guild_birthdays(config: AppConfig, guild_id: int) -> list[BirthdayEntry]:
    return [birthday for birthday in config.birthdays if birthday.guild_id == guild_id]


def guild_birthdays_on(config: AppConfig, guild_id: int, month: int, day: int) -> list[BirthdayEntry]:
    return [
        birthday
        for birthday in list_guild_birthdays(config, guild_id)
        if birthday.month == month and birthday.day == day
    ]


def add_birthday(path: Path, new_birthday: BirthdayEntry) -> AppConfig:
    config = load_config(path)
    if get_guild_member_birthday(config, new_birthday.guild_id, new_birthday.user_id) is not None:
        raise DuplicateBirthdayError(
            f"User {new_birthday.user_id} already has a birthday in guild {new_birthday.guild_id}"
        )

    updated = AppConfig(guilds=config.guilds, birthdays=[*config.birthdays, new_birthday])
    save_config_atomic(path, updated)
    return updated


def replace_birthday(path: Path, updated_birthday: BirthdayEntry) -> AppConfig:
    config = load_config(path)
    if get_guild_member_birthday(config, updated_birthday.guild_id, updated_birthday.user_id) is None:
        raise BirthdayNotFoundError(
            f"User {updated_birthday.user_id} has no birthday in guild {updated_birthday.guild_id}"
        )

    birthdays = [
        updated_birthday
        if (birthday.guild_id, birthday.user_id) == (updated_birthday.guild_id, updated_birthday.user_id)
        else birthday
        for birthday in config.birthdays
    ]
    updated = AppConfig(guilds=config.guilds, birthdays=birthdays)
    save_config_atomic(path, updated)
    return updated


def remove_birthday(path: Path, guild_id: int, user_id: int) -> AppConfig:
    config = load_config(path)
    birthdays = [
        birthday
        for birthday in config.birthdays
        if (birthday.guild_id, birthday.user_id) != (guild_id, user_id)
    ]
    if len(birthdays) == len(config.birthdays):
        raise BirthdayNotFoundError(f"User {user_id} has no birthday in guild {guild_id}")

    updated = AppConfig(guilds=config.guilds, birthdays=birthdays)
    save_config_atomic(path, updated)
    return updated


def upsert_guild_settings(path: Path, settings: GuildSettings) -> AppConfig:
    config = load_config(path)
    guilds = [guild for guild in config.guilds if guild.guild_id != settings.guild_id]
    guilds.append(settings)

    updated = AppConfig(guilds=guilds, birthdays=config.birthdays)
    save_config_atomic(path, updated)
    return updated
