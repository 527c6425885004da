from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from birthdayy.config_store import save_config_atomic
from birthdayy.message_template import MemberInfo
from birthdayy.models import AppConfig, BirthdayEntry, GuildSettings
from birthdayy.reminder_service import DeliveryError, ReminderService
from birthdayy.reminder_state import dedupe_key, load_state


@dataclass
class FakeSender:
    sent_messages: list[tuple[int, str]] = field(default_factory=list)
    failing_channels: set[int] = field(default_factory=set)

    async def send_message(self, channel_id: int, text: str) -> None:
        if channel_id in self.failing_channels:
            raise DeliveryError(f"channel {channel_id} unavailable")
        self.sent_messages.append((channel_id, text))


async def resolve_member(guild_id: int, user_id: int) -> MemberInfo | None:
    if user_id == 404:
        return None
    return MemberInfo(mention=f"<@{user_id}>", name=f"user{user_id}", tag=f"@user{user_id}")


def _service(tmp_path: Path, config: AppConfig, sender: FakeSender) -> ReminderService:
    config_path = tmp_path / "birthdays.toml"
    save_config_atomic(config_path, config)
    return ReminderService(
        sender=sender,
        config_path=config_path,
        reminder_state_path=tmp_path / "reminder_state.json",
        resolve_member=resolve_member,
    )


def _guild(**overrides) -> GuildSettings:
    values = {
        "guild_id": 1,
        "announcement_channel_id": 10,
        "announcement_message": "Happy birthday {user}, {age}!",
    }
    values.update(overrides)
    return GuildSettings(**values)


def test_dispatch_deduplicates_same_day(tmp_path: Path) -> None:
    sender = FakeSender()
    service = _service(
        tmp_path,
        AppConfig(
            guilds=[_guild()],
            birthdays=[BirthdayEntry(guild_id=1, user_id=100, month=3, day=18, year=2000)],
        ),
        sender,
    )

    morning = datetime(2021, 3, 18, 8, tzinfo=timezone.utc)
    evening = datetime(2021, 3, 18, 20, tzinfo=timezone.utc)

    first_count = asyncio.run(service.dispatch_due(morning))
    second_count = asyncio.run(service.dispatch_due(evening))

    assert first_count == 1
    assert second_count == 0
    assert sender.sent_messages == [(10, "Happy birthday <@100>, 21!")]
    assert dedupe_key(date(2021, 3, 18), 1, 100) in load_state(tmp_path / "reminder_state.json").sent_keys


def test_dispatch_skips_other_days_and_unconfigured_guilds(tmp_path: Path) -> None:
    sender = FakeSender()
    service = _service(
        tmp_path,
        AppConfig(
            guilds=[_guild(), _guild(guild_id=2, enabled=False)],
            birthdays=[
                BirthdayEntry(guild_id=1, user_id=100, month=3, day=19, year=None),
                BirthdayEntry(guild_id=2, user_id=200, month=3, day=18, year=None),
                BirthdayEntry(guild_id=3, user_id=300, month=3, day=18, year=None),
            ],
        ),
        sender,
    )

    assert asyncio.run(service.dispatch_due(datetime(2021, 3, 18, 8, tzinfo=timezone.utc))) == 0
    assert sender.sent_messages == []


def test_dispatch_uses_guild_local_date(tmp_path: Path) -> None:
    sender = FakeSender()
    service = _service(
        tmp_path,
        AppConfig(
            guilds=[_guild(timezone_offset_hours=-5)],
            birthdays=[BirthdayEntry(guild_id=1, user_id=100, month=3, day=18, year=None)],
        ),
        sender,
    )

    # 02:00 UTC on the 19th is still the 18th at UTC-5.
    late = datetime(2021, 3, 19, 2, tzinfo=timezone.utc)
    due = service.due_reminders(late)

    assert [reminder.occurrence_date for reminder in due] == [date(2021, 3, 18)]
    assert asyncio.run(service.dispatch_due(late)) == 1
    assert sender.sent_messages == [(10, "Happy birthday <@100>, Unknown!")]


def test_dispatch_retries_after_failed_send(tmp_path: Path) -> None:
    sender = FakeSender(failing_channels={10})
    service = _service(
        tmp_path,
        AppConfig(
            guilds=[_guild()],
            birthdays=[BirthdayEntry(guild_id=1, user_id=100, month=3, day=18, year=2000)],
        ),
        sender,
    )
    now = datetime(2021, 3, 18, 8, tzinfo=timezone.utc)

    assert asyncio.run(service.dispatch_due(now)) == 0

    sender.failing_channels.clear()
    assert asyncio.run(service.dispatch_due(now)) == 1
    assert len(sender.sent_messages) == 1


def test_dispatch_skips_missing_member(tmp_path: Path) -> None:
    sender = FakeSender()
    service = _service(
        tmp_path,
        AppConfig(
            guilds=[_guild()],
            birthdays=[
                BirthdayEntry(guild_id=1, user_id=404, month=3, day=18, year=None),
                BirthdayEntry(guild_id=1, user_id=100, month=3, day=18, year=None),
            ],
        ),
        sender,
    )

    assert asyncio.run(service.dispatch_due(datetime(2021, 3, 18, tzinfo=timezone.utc))) == 1
    assert sender.sent_messages[0][1].startswith("Happy birthday <@100>")


def test_leap_day_birthday_follows_guild_rule(tmp_path: Path) -> None:
    sender = FakeSender()
    service = _service(
        tmp_path,
        AppConfig(
            guilds=[_guild(leap_day_rule="feb28"), _guild(guild_id=2, announcement_channel_id=20)],
            birthdays=[
                BirthdayEntry(guild_id=1, user_id=100, month=2, day=29, year=2000),
                BirthdayEntry(guild_id=2, user_id=200, month=2, day=29, year=2000),
            ],
        ),
        sender,
    )

    feb_28 = service.due_reminders(datetime(2021, 2, 28, 12, tzinfo=timezone.utc))
    mar_1 = service.due_reminders(datetime(2021, 3, 1, 12, tzinfo=timezone.utc))

    assert [(reminder.guild_id, reminder.age) for reminder in feb_28] == [(1, 21)]
    assert [(reminder.guild_id, reminder.age) for reminder in mar_1] == [(2, 21)]


def test_next_reminder_at_picks_earliest_future_instant(tmp_path: Path) -> None:
    service = _service(
        tmp_path,
        AppConfig(
            guilds=[_guild(timezone_offset_hours=2)],
            birthdays=[
                BirthdayEntry(guild_id=1, user_id=100, month=3, day=18, year=None),
                BirthdayEntry(guild_id=1, user_id=200, month=5, day=10, year=None),
            ],
        ),
        FakeSender(),
    )

    # Today's birthday already fired, so the May one comes next.
    now = datetime(2021, 3, 18, 12, tzinfo=timezone.utc)
    assert service.next_reminder_at(now) == datetime(2021, 5, 9, 22, tzinfo=timezone.utc)


def test_next_reminder_at_without_birthdays(tmp_path: Path) -> None:
    service = _service(tmp_path, AppConfig(guilds=[_guild()], birthdays=[]), FakeSender())

    assert service.next_reminder_at(datetime(2021, 3, 18, tzinfo=timezone.utc)) is None


@dataclass
class FlakySender:
    sent_messages: list[tuple[int, str]] = field(default_factory=list)

    async def send_message(self, channel_id: int, text: str) -> None:
        if self.sent_messages:
            raise AttributeError("channel cannot send")
        self.sent_messages.append((channel_id, text))


def test_sent_announcements_survive_a_later_crash(tmp_path: Path) -> None:
    sender = FlakySender()
    config_path = tmp_path / "birthdays.toml"
    state_path = tmp_path / "reminder_state.json"
    save_config_atomic(
        config_path,
        AppConfig(
            guilds=[_guild()],
            birthdays=[
                BirthdayEntry(guild_id=1, user_id=100, month=3, day=18, year=None),
                BirthdayEntry(guild_id=1, user_id=200, month=3, day=18, year=None),
            ],
        ),
    )
    service = ReminderService(
        sender=sender,
        config_path=config_path,
        reminder_state_path=state_path,
        resolve_member=resolve_member,
    )
    now = datetime(2021, 3, 18, 8, tzinfo=timezone.utc)

    with pytest.raises(AttributeError):
        asyncio.run(service.dispatch_due(now))

    assert len(sender.sent_messages) == 1
    assert load_state(state_path).sent_keys == {dedupe_key(date(2021, 3, 18), 1, 100)}
    assert [reminder.user_id for reminder in service.due_reminders(now)] == [200]


def test_leap_day_age_is_the_age_being_turned(tmp_path: Path) -> None:
    sender = FakeSender()
    service = _service(
        tmp_path,
        AppConfig(
            guilds=[_guild(leap_day_rule="feb28")],
            birthdays=[BirthdayEntry(guild_id=1, user_id=100, month=2, day=29, year=2000)],
        ),
        sender,
    )

    asyncio.run(service.dispatch_due(datetime(2021, 2, 28, 12, tzinfo=timezone.utc)))

    assert sender.sent_messages == [(10, "Happy birthday <@100>, 21!")]
