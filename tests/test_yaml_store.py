import tempfile
import threading
import unittest
from datetime import date, datetime
from pathlib import Path
from unittest import mock

import yaml

from field_booking import (
    ConflictError,
    NotFoundError,
    ReservationStorageError,
    ReservationYamlRepository,
    generate_test_reservations,
    has_conflict,
)
from field_booking.booking import to_minutes
from field_booking.slots import WORK_END, WORK_START


NOW = datetime(2025, 5, 20, 9, 0)


def _insert(repo: ReservationYamlRepository, date_key: str, start: str, end: str, **extra):
    return repo.insert_reservation(
        date_key=date_key,
        start=start,
        end=end,
        customer_name=extra.pop("customer_name", "Mario Rossi"),
        customer_phone=extra.pop("customer_phone", "3331234567"),
        now=NOW,
        **extra,
    )


class TestGenerateTestReservations(unittest.TestCase):
    def test_generates_non_overlapping_reservations_inside_window(self) -> None:
        records = generate_test_reservations(date(2025, 6, 1), days=14, now=NOW)

        self.assertGreater(len(records), 0)
        dates = {record.date for record in records}
        self.assertTrue(dates <= {f"2025-06-{day:02d}" for day in range(1, 15)})

        for index, record in enumerate(records):
            start = to_minutes(record.start)
            end = to_minutes(record.end)
            self.assertGreaterEqual(start, WORK_START)
            self.assertLessEqual(end, WORK_END)
            self.assertLess(start, end)
            self.assertIn(end - start, (60, 120, 180))
            others = records[:index] + records[index + 1:]
            self.assertFalse(has_conflict(record.date, record.start, record.end, others))

    def test_generation_is_deterministic_for_same_start(self) -> None:
        first = generate_test_reservations(date(2025, 6, 1), days=3, now=NOW)
        second = generate_test_reservations(date(2025, 6, 1), days=3, now=NOW)

        self.assertEqual(
            [(r.date, r.start, r.end, r.customer_name) for r in first],
            [(r.date, r.start, r.end, r.customer_name) for r in second],
        )

    def test_raises_on_invalid_params(self) -> None:
        with self.assertRaises(ValueError):
            generate_test_reservations(date(2025, 6, 1), days=0)

        with self.assertRaises(ValueError):
            generate_test_reservations(date(2025, 6, 1), days=3, per_day=0)


class TestReservationYamlRepository(unittest.TestCase):
    def test_insert_and_list_sorted_by_date_and_start(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            _insert(repo, "2025-06-02", "09:00", "10:00")
            _insert(repo, "2025-06-01", "22:00", "00:00")
            _insert(repo, "2025-06-01", "08:00", "09:00")

            rows = repo.list_reservations()
            self.assertEqual(
                [(row.date, row.start) for row in rows],
                [("2025-06-01", "08:00"), ("2025-06-01", "22:00"), ("2025-06-02", "09:00")],
            )
            self.assertEqual(len(repo.list_reservations("2025-06-01")), 2)
            self.assertEqual(repo.list_reservations("2025-07-01"), [])

    def test_reservations_survive_reopening(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            created = _insert(ReservationYamlRepository(data_dir), "2025-06-01", "10:00", "12:00", title="Calcetto")

            reopened = ReservationYamlRepository(data_dir).get_reservation(created.reservation_id)

            self.assertIsNotNone(reopened)
            self.assertEqual(reopened.title, "Calcetto")
            self.assertEqual(reopened.end, "12:00")
            self.assertEqual(reopened.created_at, NOW)

    def test_overlapping_insert_raises_conflict(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            _insert(repo, "2025-06-01", "10:00", "12:00")

            with self.assertRaises(ConflictError):
                _insert(repo, "2025-06-01", "11:00", "13:00")

            _insert(repo, "2025-06-01", "12:00", "13:00")
            _insert(repo, "2025-06-02", "10:00", "12:00")
            self.assertEqual(len(repo.list_reservations()), 3)

    def test_concurrent_inserts_for_same_slot_store_exactly_one(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            barrier = threading.Barrier(4)
            outcomes: list[str] = []
            outcomes_lock = threading.Lock()

            def attempt(index: int) -> None:
                barrier.wait()
                try:
                    _insert(repo, "2025-06-01", "18:00", "20:00", customer_name=f"Cliente {index}")
                    result = "ok"
                except ConflictError:
                    result = "conflict"
                with outcomes_lock:
                    outcomes.append(result)

            threads = [threading.Thread(target=attempt, args=(index,)) for index in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(10)

            self.assertEqual(sorted(outcomes), ["conflict", "conflict", "conflict", "ok"])
            self.assertEqual(len(repo.list_reservations("2025-06-01")), 1)

    def test_delete_removes_reservation_and_unknown_id_raises(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            created = _insert(repo, "2025-06-01", "10:00", "12:00")

            deleted = repo.delete_reservation(created.reservation_id, now=NOW)

            self.assertEqual(deleted.reservation_id, created.reservation_id)
            self.assertIsNone(repo.get_reservation(created.reservation_id))
            with self.assertRaises(NotFoundError):
                repo.delete_reservation(created.reservation_id, now=NOW)

    def test_logs_create_and_cancel_events_without_phone(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            created = _insert(repo, "2025-06-01", "10:00", "12:00")
            repo.delete_reservation(created.reservation_id, now=NOW)

            contents = repo.log_file.read_text(encoding="utf-8")
            events = yaml.safe_load(contents)

            self.assertEqual([event["event_type"] for event in events], ["RESERVATION_CREATED", "RESERVATION_CANCELLED"])
            self.assertEqual(events[0]["payload"]["reservation_id"], created.reservation_id)
            self.assertNotIn("3331234567", contents)

    def test_recovers_corrupted_reservations_file(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = ReservationYamlRepository(data_dir)
            repo.reservations_file.write_text("- id: [unclosed\n", encoding="utf-8")

            with self.assertLogs("field_booking.yaml_store", level="ERROR"):
                self.assertEqual(repo.list_reservations(), [])

            backups = list(data_dir.glob("reservations.corrupt.*.yaml"))
            self.assertEqual(len(backups), 1)
            self.assertEqual(repo.reservations_file.read_text(encoding="utf-8"), "[]\n")

            events = yaml.safe_load(repo.log_file.read_text(encoding="utf-8"))
            self.assertEqual(events[-1]["event_type"], "YAML_RECOVERED")

            _insert(repo, "2025-06-01", "10:00", "12:00")
            self.assertEqual(len(repo.list_reservations()), 1)

    def test_unreadable_rows_are_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            _insert(repo, "2025-06-01", "10:00", "12:00")
            rows = yaml.safe_load(repo.reservations_file.read_text(encoding="utf-8"))
            rows.append("not a mapping")
            rows.append({"id": "broken"})
            repo.reservations_file.write_text(yaml.safe_dump(rows), encoding="utf-8")

            with self.assertLogs("field_booking.yaml_store", level="WARNING"):
                records = repo.list_reservations()

            self.assertEqual(len(records), 1)

    def test_bad_event_log_row_does_not_break_writes(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            repo.log_file.write_text("- not a mapping\n", encoding="utf-8")

            with self.assertLogs("field_booking.yaml_store", level="WARNING"):
                created = _insert(repo, "2025-06-01", "10:00", "12:00")

            self.assertEqual(len(repo.list_reservations()), 1)
            events = yaml.safe_load(repo.log_file.read_text(encoding="utf-8"))
            self.assertEqual([event["event_type"] for event in events], ["RESERVATION_CREATED"])

            repo.delete_reservation(created.reservation_id, now=NOW)
            events = yaml.safe_load(repo.log_file.read_text(encoding="utf-8"))
            self.assertEqual(events[-1]["event_type"], "RESERVATION_CANCELLED")

    def test_event_log_write_failure_keeps_committed_reservation(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            original_write = repo._write_yaml_list

            def write(path, rows):
                if path == repo.log_file:
                    raise ReservationStorageError("disk full")
                original_write(path, rows)

            with mock.patch.object(repo, "_write_yaml_list", side_effect=write):
                with self.assertLogs("field_booking.yaml_store", level="ERROR"):
                    created = _insert(repo, "2025-06-01", "10:00", "12:00")

            self.assertIsNotNone(repo.get_reservation(created.reservation_id))

    def test_seconds_in_stored_times_are_dropped(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            rows = [
                {
                    "id": "abc",
                    "date": "2025-06-01",
                    "start": "10:00:00",
                    "end": "12:00:00",
                    "customer_name": "Mario Rossi",
                    "customer_phone": "3331234567",
                    "created_at": "2025-05-20T09:00:00",
                }
            ]
            repo.reservations_file.write_text(yaml.safe_dump(rows), encoding="utf-8")

            record = repo.get_reservation("abc")
            self.assertEqual((record.start, record.end), ("10:00", "12:00"))

    def test_seed_test_data_overwrites_and_logs(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = ReservationYamlRepository(Path(temp_dir) / "data")
            _insert(repo, "2024-01-01", "10:00", "12:00")

            generated = repo.seed_test_data(now=NOW, days=5)

            stored = repo.list_reservations()
            self.assertEqual(len(stored), len(generated))
            self.assertNotIn("2024-01-01", {row.date for row in stored})

            events = yaml.safe_load(repo.log_file.read_text(encoding="utf-8"))
            self.assertEqual(events[-1]["event_type"], "TEST_DATA_GENERATED")
            self.assertEqual(events[-1]["payload"]["operating_window"], "07:00-00:00")


if __name__ == "__main__":
    unittest.main()
