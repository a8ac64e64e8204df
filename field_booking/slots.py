from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable

from .booking import MINUTES_PER_DAY, format_minutes, has_conflict, to_minutes

WORK_START = 7 * 60
WORK_END = MINUTES_PER_DAY
STEP = 60
MIN_DURATION_HOURS = 1
MAX_DURATION_HOURS = 6


@dataclass(frozen=True)
class Slot:
    start: str
    end: str

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


def all_starts() -> list[str]:
    return [format_minutes(minute) for minute in range(WORK_START, WORK_END + 1, STEP)]


def end_for_start(start: str, duration_hours: int) -> str:
    return format_minutes(to_minutes(start) + duration_hours * STEP)


def available_starts(
    date_key: str,
    duration_hours: int,
    existing_reservations: Iterable[Any],
    today: date,
) -> list[Slot]:
    """List the start times whose ``duration_hours`` slot fits the window and is free.

    Past dates yield nothing. The result is ordered by start time.
    """
    if duration_hours <= 0:
        return []
    if date.fromisoformat(date_key) < today:
        return []

    existing = list(existing_reservations)
    slots: list[Slot] = []
    for minute in range(WORK_START, WORK_END, STEP):
        end_minute = minute + duration_hours * STEP
        if end_minute > WORK_END:
            break

        start = format_minutes(minute)
        end = format_minutes(end_minute)
        if not has_conflict(date_key, start, end, existing):
            slots.append(Slot(start=start, end=end))
    return slots
