from __future__ import annotations

from datetime import datetime
from pathlib import Path
import traceback

from field_booking import ReservationService, ReservationYamlRepository


def main() -> int:
    print("[INFO] Field Booking Quick Check")
    print("[INFO] Generating and validating test data...")

    repo = ReservationYamlRepository("data")
    now = datetime.now()
    service = ReservationService(repo, now_provider=lambda: now)

    generated = repo.seed_test_data(now=now, days=14, overwrite=True)
    print(f"[OK] Test data generated: {len(generated)} records")

    today = now.date().isoformat()
    slots = service.available_slots(today, 2)
    if not slots:
        print("[WARN] No free 2-hour slot today; skipping create/cancel round trip.")
    else:
        slot = slots[-1]
        created = service.create_reservation(
            date_key=today,
            start=slot.start,
            end=slot.end,
            customer_name="Quick Check",
            customer_phone="3331234567",
        )
        print(f"[OK] Reserved slot: {created.date} {created.start}~{created.end}")
        service.cancel_reservation(created.reservation_id, "3331234567")
        print("[OK] Cancelled the quick-check reservation")

    print(f"[OK] Reservations: {len(repo.list_reservations())}")
    print(f"[OK] Reservations YAML: {Path('data/reservations.yaml').resolve()}")
    print(f"[OK] Event Log YAML: {Path('data/reservation_events.yaml').resolve()}")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
