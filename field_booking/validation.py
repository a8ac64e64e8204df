from __future__ import annotations

import re
from datetime import date

from .errors import ValidationError

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}$")
# Italian numbering plan: optional +39, then a mobile (3xx) or landline (0x..) number.
_PHONE_RE = re.compile(
    r"^(\+39\s?)?((3[0-9]{2}|32[0-9]|33[0-9]|34[0-9]|36[0-9]|37[0-9]|38[0-9]|39[0-9])\s?\d{6,7}|0[1-9]\d{1,3}\s?\d{6,8})$"
)


def is_valid_phone(value: str | None) -> bool:
    if not value:
        return False
    return _PHONE_RE.match(value.strip()) is not None


def parse_date_key(value: str) -> date:
    if not _DATE_RE.match(value or ""):
        raise ValidationError("Invalid date format. Use YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError as error:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD") from error


def validate_time(value: str) -> str:
    if not _TIME_RE.match(value or ""):
        raise ValidationError("Invalid time format. Use HH:mm")

    hours, minutes = (int(part) for part in value.split(":"))
    if hours > 23 or minutes > 59:
        raise ValidationError("Invalid time format. Use HH:mm")
    return value


def require_fields(payload: dict[str, str | None], names: list[str]) -> None:
    for name in names:
        value = payload.get(name)
        if value is None or not str(value).strip():
            raise ValidationError(f"Missing required field: {name}")
