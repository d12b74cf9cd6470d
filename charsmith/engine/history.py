"""Timestamped log of levelling actions, kept under ``progression.history``."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from charsmith.models.character import Character, HistoryEntry


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def stamp_level(
    character: Character,
    class_name: str,
    level: int,
    now: Optional[datetime] = None,
) -> HistoryEntry:
    """Mark ``level`` of ``class_name`` as reached at ``now``; recorded choices are kept."""
    levels = character.progression.history.setdefault(class_name, {})
    entry = levels.get(level)
    if entry is None:
        entry = levels[level] = HistoryEntry()
    entry.timestamp = _now(now)
    return entry


def record_choice(
    character: Character,
    class_name: str,
    level: int,
    choices: Dict[str, Any],
    now: Optional[datetime] = None,
) -> HistoryEntry:
    levels = character.progression.history.setdefault(class_name, {})
    entry = levels.get(level)
    if entry is None:
        entry = levels[level] = HistoryEntry(timestamp=_now(now))
    entry.choices.update(choices)
    return entry


def choices_for(character: Character, class_name: str, level: int) -> Dict[str, Any]:
    entry = character.progression.history.get(class_name, {}).get(level)
    return dict(entry.choices) if entry else {}


def drop_level(character: Character, class_name: str, level: int) -> None:
    levels = character.progression.history.get(class_name)
    if not levels:
        return
    levels.pop(level, None)
    if not levels:
        del character.progression.history[class_name]


def clear_class(character: Character, class_name: str) -> None:
    character.progression.history.pop(class_name, None)


def last_levelled_class(character: Character, fallback_highest: bool = True) -> Optional[str]:
    """Name of the class levelled most recently.

    Ties on the timestamp keep the first class seen.  Without any timestamps
    the class with the highest level is returned, unless
    ``fallback_highest`` is off.
    """
    latest: Optional[datetime] = None
    picked: Optional[str] = None
    for entry in character.progression.classes:
        for record in character.progression.history.get(entry.name, {}).values():
            if record.timestamp is None:
                continue
            ts = _aware(record.timestamp)
            if latest is None or ts > latest:
                latest = ts
                picked = entry.name
    if picked is not None or not fallback_highest:
        return picked

    highest = None
    for entry in character.progression.classes:
        if highest is None or entry.level > highest.level:
            highest = entry
    return highest.name if highest else None


__all__ = [
    "choices_for",
    "clear_class",
    "drop_level",
    "last_levelled_class",
    "record_choice",
    "stamp_level",
]
