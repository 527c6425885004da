from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Awaitable, Callable, Protocol

from birthdayy.config_store import get_guild_settings, load_config
from birthdayy.date_logic import (
    next_occurrence,
    occurrence_in_year,
    resolve_now,
    turning_age,
    upcoming_occurrence,
)
from birthdayy.message_template import MemberInfo, render_message
from birthdayy.models import AppConfig, GuildSettings
from birthdayy.reminder_state import (
    ReminderState,
    dedupe_key,
    load_state,
    prune_old_keys,
    record_sent,
    save_state_atomic,
)

LOGGER = logging.getLogger(__name__)

MILLIS_PER_HOUR = 3_600_000

MemberResolver = Callable[[int, int], Awaitable[MemberInfo | None]]


class DeliveryError(RuntimeError):
    pass


class MessageSender(Protocol):
    async def send_message(self, channel_id: int, text: str) -> None: ...


@dataclass(frozen=True)
class DueReminder:
    guild_id: int
    user_id: int
    channel_id: int
    occurrence_date: date
    age: int | None
    announcement_message: str


def local_reference(now: datetime, guild: GuildSettings) -> datetime:
    """Shift ``now`` so its UTC fields read as the guild's wall clock."""
    return now + timedelta(hours=guild.timezone_offset_hours)


class ReminderService:
    def __init__(
        self,
        *,
        sender: MessageSender,
        config_path: Path,
        reminder_state_path: Path,
        resolve_member: MemberResolver,
    ) -> None:
        self._sender = sender
        self._config_path = config_path
        self._reminder_state_path = reminder_state_path
        self._resolve_member = resolve_member

    def due_reminders(self, now: datetime | None = None, state: ReminderState | None = None) -> list[DueReminder]:
        reference = resolve_now(now)
        config = load_config(self._config_path)
        if state is None:
            state = load_state(self._reminder_state_path)
        return self._due_reminders(reference, config, state)

    def _due_reminders(self, now: datetime, config: AppConfig, state: ReminderState) -> list[DueReminder]:
        due: list[DueReminder] = []

        for entry in config.birthdays:
            guild = get_guild_settings(config, entry.guild_id)
            if not guild.enabled or guild.announcement_channel_id is None:
                continue

            local_now = local_reference(now, guild)
            occurrence = upcoming_occurrence(entry.month, entry.day, local_now, guild.leap_day_rule)
            if occurrence.date() != local_now.date():
                continue

            key = dedupe_key(occurrence.date(), entry.guild_id, entry.user_id)
            if key in state.sent_keys:
                continue

            due.append(
                DueReminder(
                    guild_id=entry.guild_id,
                    user_id=entry.user_id,
                    channel_id=guild.announcement_channel_id,
                    occurrence_date=occurrence.date(),
                    age=turning_age(entry.date, occurrence),
                    announcement_message=guild.announcement_message,
                )
            )

        due.sort(key=lambda item: (item.guild_id, item.user_id))
        return due

    async def dispatch_due(self, now: datetime | None = None) -> int:
        reference = resolve_now(now)
        config = load_config(self._config_path)

        state = load_state(self._reminder_state_path)
        prune_old_keys(state, reference.date())
        save_state_atomic(self._reminder_state_path, state)

        due = self._due_reminders(reference, config, state)
        if not due:
            return 0

        sent_count = 0
        for reminder in due:
            member = await self._resolve_member(reminder.guild_id, reminder.user_id)
            if member is None:
                LOGGER.warning(
                    "Skipping birthday of user %s in guild %s: member not found",
                    reminder.user_id,
                    reminder.guild_id,
                )
                continue

            message = render_message(reminder.announcement_message, member, reminder.age)
            try:
                await self._sender.send_message(reminder.channel_id, message)
            except DeliveryError:
                LOGGER.exception(
                    "Failed to announce birthday of user %s in guild %s; will retry",
                    reminder.user_id,
                    reminder.guild_id,
                )
                continue

            record_sent(
                self._reminder_state_path,
                state,
                reminder.occurrence_date,
                reminder.guild_id,
                reminder.user_id,
            )
            sent_count += 1

        LOGGER.info("Sent %s birthday reminders at %s", sent_count, reference.isoformat())
        return sent_count

    def next_reminder_at(self, now: datetime | None = None) -> datetime | None:
        reference = resolve_now(now)
        config = load_config(self._config_path)

        upcoming: list[datetime] = []
        for entry in config.birthdays:
            guild = get_guild_settings(config, entry.guild_id)
            if not guild.enabled or guild.announcement_channel_id is None:
                continue

            offset_ms = guild.timezone_offset_hours * MILLIS_PER_HOUR
            local_now = local_reference(reference, guild)
            fire_at = next_occurrence(
                entry.month,
                entry.day,
                local_now,
                repeat_if_today=True,
                timezone_offset_ms=-offset_ms,
                leap_day_rule=guild.leap_day_rule,
            )
            if fire_at <= reference:
                # A clamped Feb 28 occurrence can still sit in the past.
                fire_at = occurrence_in_year(
                    local_now.year + 1, entry.month, entry.day, guild.leap_day_rule
                ) - timedelta(milliseconds=offset_ms)
            upcoming.append(fire_at)

        return min(upcoming) if upcoming else None
