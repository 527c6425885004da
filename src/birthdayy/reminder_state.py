from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path

LOGGER = logging.getLogger(__name__)

KEY_SEPARATOR = "|"
RETENTION_DAYS = 400


@dataclass
class ReminderState:
    sent_keys: set[str] = field(default_factory=set)
    last_pruned: str | None = None


def dedupe_key(occurrence_date: date, guild_id: int, user_id: int) -> str:
    return KEY_SEPARATOR.join((occurrence_date.isoformat(), str(guild_id), str(user_id)))


def key_date(key: str) -> date | None:
    """Occurrence date of a ledger key, or ``None`` when the key is malformed."""
    parts = key.split(KEY_SEPARATOR)
    if len(parts) != 3:
        return None
    try:
        return date.fromisoformat(parts[0])
    except ValueError:
        return None


def load_state(path: Path) -> ReminderState:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return ReminderState()

    last_pruned = data.get("last_pruned")
    return ReminderState(
        sent_keys={str(key) for key in data.get("sent_keys", [])},
        last_pruned=str(last_pruned) if last_pruned else None,
    )


def save_state_atomic(path: Path, state: ReminderState) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    document = json.dumps(
        {"sent_keys": sorted(state.sent_keys), "last_pruned": state.last_pruned},
        indent=2,
    )

    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, prefix=f".{path.name}.", delete=False
    ) as handle:
        handle.write(document + "\n")

    Path(handle.name).replace(path)


def record_sent(path: Path, state: ReminderState, occurrence_date: date, guild_id: int, user_id: int) -> None:
    """Mark one announcement as sent and persist it immediately.

    Each send is written on its own so a later failure in the same pass
    cannot lose announcements that already went out.
    """
    state.sent_keys.add(dedupe_key(occurrence_date, guild_id, user_id))
    save_state_atomic(path, state)


def prune_old_keys(state: ReminderState, today: date, *, retention_days: int = RETENTION_DAYS) -> None:
    # Runs at most once per day.
    if state.last_pruned == today.isoformat():
        return

    cutoff = today - timedelta(days=retention_days)
    kept = set()
    for key in state.sent_keys:
        occurred = key_date(key)
        if occurred is None:
            LOGGER.debug("Dropping malformed reminder key %r", key)
        elif occurred >= cutoff:
            kept.add(key)

    state.sent_keys = kept
    state.last_pruned = today.isoformat()
