import asyncio
import logging
from datetime import datetime, timezone

import pytest

from birthdayy.main import birthday_group, run_reminder_pass


class BrokenService:
    def __init__(self) -> None:
        self.next_checked = False

    async def dispatch_due(self) -> int:
        raise OSError("disk full")

    def next_reminder_at(self) -> datetime | None:
        self.next_checked = True
        return None


class QuietService:
    async def dispatch_due(self) -> int:
        return 0

    def next_reminder_at(self) -> datetime | None:
        return datetime(2021, 5, 10, tzinfo=timezone.utc)


def test_reminder_pass_logs_and_survives_errors(caplog: pytest.LogCaptureFixture) -> None:
    service = BrokenService()

    with caplog.at_level(logging.ERROR, logger="birthdayy.main"):
        asyncio.run(run_reminder_pass(service))

    assert service.next_checked is False
    assert "Birthday reminder pass failed" in caplog.text


def test_reminder_pass_logs_next_reminder(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.DEBUG, logger="birthdayy.main"):
        asyncio.run(run_reminder_pass(QuietService()))

    assert "2021-05-10T00:00:00+00:00" in caplog.text


def test_birthday_group_exposes_member_commands() -> None:
    assert birthday_group.name == "birthday"
    assert sorted(command.name for command in birthday_group.commands) == [
        "list",
        "register",
        "remove",
        "show",
        "update",
    ]
