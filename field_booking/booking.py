from __future__ import annotations

from typing import Any, Iterable, Mapping

MINUTES_PER_DAY = 24 * 60


def to_minutes(value: str | None) -> int:
    """Convert an ``HH:mm`` time of day to a minute offset.

    ``"00:00"`` is the end-of-day sentinel and maps to 1440 so closing times
    compare naturally. Empty values map to 0. A trailing ``:ss`` is ignored.
    """
    if not value:
        return 0

    parts = value.split(":")
    hours = int(parts[0])
    minutes = int(parts[1]) if len(parts) > 1 else 0
    if hours == 0 and minutes == 0:
        return MINUTES_PER_DAY
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    if minutes == MINUTES_PER_DAY:
        return "00:00"
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def ranges_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Return True when two half-open minute ranges share at least one minute.

    Touching boundaries (e.g. 09:00-10:00 and 10:00-11:00) do not overlap.
    """
    return a_start < b_end and b_start < a_end


def _field(reservation: Any, name: str) -> str:
    if isinstance(reservation, Mapping):
        return str(reservation.get(name) or "")
    return str(getattr(reservation, name, "") or "")


def has_conflict(date_key: str, start: str, end: str, existing_reservations: Iterable[Any]) -> bool:
    """Return True if ``[start, end)`` on ``date_key`` overlaps any existing reservation.

    Reservations may be records or plain mappings with ``date``/``start``/``end``.
    """
    start_minutes = to_minutes(start)
    end_minutes = to_minutes(end)

    for reservation in existing_reservations:
        if _field(reservation, "date") != date_key:
            continue
        if ranges_overlap(
            start_minutes,
            end_minutes,
            to_minutes(_field(reservation, "start")),
            to_minutes(_field(reservation, "end")),
        ):
            return True
    return False
