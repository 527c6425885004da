from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    discord_token: str
    birthday_config_path: Path
    reminder_state_path: Path
    reminder_interval_minutes: int
    debug: bool


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        raise ValueError(f"Missing required environment variable: {name}")
    return value.strip()


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


def load_settings() -> Settings:
    root = Path.cwd()

    token = _required_env("DISCORD_TOKEN")

    birthday_config_path = Path(
        os.getenv("BIRTHDAY_CONFIG_PATH", root / "config" / "birthdays.toml")
    )
    reminder_state_path = Path(
        os.getenv("REMINDER_STATE_PATH", root / "data" / "reminder_state.json")
    )

    interval = int(os.getenv("REMINDER_INTERVAL_MINUTES", "5"))
    if interval < 1:
        raise ValueError("REMINDER_INTERVAL_MINUTES must be at least 1")

    return Settings(
        discord_token=token,
        birthday_config_path=birthday_config_path,
        reminder_state_path=reminder_state_path,
        reminder_interval_minutes=interval,
        debug=_bool_env("DEBUG", False),
    )
