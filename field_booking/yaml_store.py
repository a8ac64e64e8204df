from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any
import logging
import random
import shutil
import threading
from uuid import uuid4

import yaml

from .booking import format_minutes, has_conflict, to_minutes
from .errors import ConflictError, CONFLICT_MESSAGE, NotFoundError, ReservationStorageError
from .slots import STEP, WORK_END, WORK_START, end_for_start

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class ReservationRecord:
    reservation_id: str
    date: str
    start: str
    end: str
    customer_name: str
    customer_phone: str
    created_at: datetime
    title: str | None = None
    customer_email: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "id": self.reservation_id,
            "date": self.date,
            "start": self.start,
            "end": self.end,
            "title": self.title,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "created_at": self.created_at.isoformat(timespec="seconds"),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ReservationRecord":
        return ReservationRecord(
            reservation_id=str(data["id"]),
            date=str(data["date"]),
            start=_strip_seconds(str(data["start"])),
            end=_strip_seconds(str(data["end"])),
            title=(str(data["title"]) if data.get("title") is not None else None),
            customer_name=str(data["customer_name"]),
            customer_phone=str(data["customer_phone"]),
            customer_email=(str(data["customer_email"]) if data.get("customer_email") else None),
            created_at=datetime.fromisoformat(str(data["created_at"])),
        )


class ReservationYamlRepository:
    """File-backed reservation storage.

    Conflict checks and writes happen under one repository lock, so two
    overlapping inserts can never both persist. Lock acquisition is bounded by
    ``lock_timeout`` and raises :class:`ReservationStorageError` when exceeded.
    """

    def __init__(self, base_dir: str | Path = "data", lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        self.base_dir = Path(base_dir)
        self.reservations_file = self.base_dir / "reservations.yaml"
        self.log_file = self.base_dir / "reservation_events.yaml"
        self.lock_timeout = lock_timeout
        self._lock = threading.RLock()
        self._ensure_files()

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in (self.reservations_file, self.log_file):
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")

    def _acquire(self) -> None:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise ReservationStorageError("Timed out waiting for the reservation store lock.")

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            elif path == self.log_file:
                logger.warning("Dropping event log row %s: row is not a mapping", index)
            else:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise ReservationStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            logger.warning("Could not back up corrupted file %s", path)

        logger.error("Recovered corrupted YAML file %s: %s", path.name, error)
        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self._log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def _log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        """Append an entry to the event log. Failures are logged, not raised."""
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        try:
            events = self._read_yaml_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml_list(self.log_file, events)
        except (OSError, ReservationStorageError):
            logger.exception("Could not record %s in the event log", event_type)

    def _load_records(self) -> list[ReservationRecord]:
        records: list[ReservationRecord] = []
        for row in self._read_yaml_list(self.reservations_file):
            try:
                records.append(ReservationRecord.from_dict(row))
            except (KeyError, TypeError, ValueError) as error:
                logger.warning("Skipping unreadable reservation row: %s", error)
        return records

    def list_reservations(self, date_key: str | None = None) -> list[ReservationRecord]:
        self._acquire()
        try:
            records = self._load_records()
        finally:
            self._lock.release()

        if date_key is not None:
            records = [record for record in records if record.date == date_key]
        return sorted(records, key=lambda record: (record.date, to_minutes(record.start)))

    def get_reservation(self, reservation_id: str) -> ReservationRecord | None:
        for record in self.list_reservations():
            if record.reservation_id == reservation_id:
                return record
        return None

    def insert_reservation(
        self,
        *,
        date_key: str,
        start: str,
        end: str,
        customer_name: str,
        customer_phone: str,
        title: str | None = None,
        customer_email: str | None = None,
        now: datetime | None = None,
    ) -> ReservationRecord:
        """Store a new reservation unless it overlaps one already stored on the same date."""
        effective_now = now or datetime.now()

        self._acquire()
        try:
            rows = self._read_yaml_list(self.reservations_file)
            same_date = [row for row in rows if str(row.get("date")) == date_key]
            if has_conflict(date_key, start, end, same_date):
                raise ConflictError(CONFLICT_MESSAGE)

            record = ReservationRecord(
                reservation_id=str(uuid4()),
                date=date_key,
                start=start,
                end=end,
                title=title,
                customer_name=customer_name,
                customer_phone=customer_phone,
                customer_email=customer_email,
                created_at=effective_now,
            )
            rows.append(record.to_dict())
            self._write_yaml_list(self.reservations_file, rows)

            self._log_event(
                "RESERVATION_CREATED",
                {
                    "reservation_id": record.reservation_id,
                    "date": record.date,
                    "start": record.start,
                    "end": record.end,
                },
                effective_now,
            )
        finally:
            self._lock.release()
        return record

    def delete_reservation(self, reservation_id: str, now: datetime | None = None) -> ReservationRecord:
        effective_now = now or datetime.now()

        self._acquire()
        try:
            rows = self._read_yaml_list(self.reservations_file)
            found_index = -1
            for index, row in enumerate(rows):
                if str(row.get("id")) == reservation_id:
                    found_index = index
                    break

            if found_index < 0:
                raise NotFoundError("reservation_id not found")

            deleted = ReservationRecord.from_dict(rows.pop(found_index))
            self._write_yaml_list(self.reservations_file, rows)

            self._log_event(
                "RESERVATION_CANCELLED",
                {
                    "reservation_id": deleted.reservation_id,
                    "date": deleted.date,
                    "start": deleted.start,
                    "end": deleted.end,
                },
                effective_now,
            )
        finally:
            self._lock.release()
        return deleted

    def seed_test_data(
        self,
        now: datetime | None = None,
        days: int = 14,
        overwrite: bool = True,
    ) -> list[ReservationRecord]:
        effective_now = now or datetime.now()
        generated = generate_test_reservations(effective_now.date(), days=days, now=effective_now)

        self._acquire()
        try:
            rows = [] if overwrite else self._read_yaml_list(self.reservations_file)
            rows.extend([row.to_dict() for row in generated])
            self._write_yaml_list(self.reservations_file, rows)

            self._log_event(
                "TEST_DATA_GENERATED",
                {
                    "count": len(generated),
                    "days": days,
                    "operating_window": f"{format_minutes(WORK_START)}-{format_minutes(WORK_END)}",
                    "overwrite": overwrite,
                },
                effective_now,
            )
        finally:
            self._lock.release()
        return generated


def generate_test_reservations(
    start_date: date,
    days: int = 14,
    per_day: int = 3,
    now: datetime | None = None,
) -> list[ReservationRecord]:
    """Build non-overlapping demo reservations for ``days`` consecutive dates."""
    if days <= 0:
        raise ValueError("days must be greater than zero")
    if per_day <= 0:
        raise ValueError("per_day must be greater than zero")

    rng = random.Random(f"test:{start_date.isoformat()}:{days}:{per_day}")
    created_at = now or datetime.now()
    names = ["Mario Rossi", "Giulia Bianchi", "Luca Verdi", "Anna Neri", "Paolo Russo", "Sara Costa"]

    records: list[ReservationRecord] = []
    for offset in range(days):
        day = (start_date + timedelta(days=offset)).isoformat()
        cursor = WORK_START
        for _ in range(per_day):
            cursor += rng.choice([0, 1, 2]) * STEP
            duration = rng.randint(1, 3)
            if cursor + duration * STEP > WORK_END:
                break

            start = format_minutes(cursor)
            name = rng.choice(names)
            records.append(
                ReservationRecord(
                    reservation_id=str(uuid4()),
                    date=day,
                    start=start,
                    end=end_for_start(start, duration),
                    title=f"Prenotazione {name}",
                    customer_name=name,
                    customer_phone=f"3{rng.randint(20, 99)}{rng.randint(1000000, 9999999)}",
                    created_at=created_at,
                )
            )
            cursor += duration * STEP

    return records


def _strip_seconds(value: str) -> str:
    parts = value.split(":")
    if len(parts) == 3:
        return f"{parts[0]}:{parts[1]}"
    return value
