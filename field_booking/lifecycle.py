from __future__ import annotations

from datetime import datetime
from typing import Callable
import logging

from .booking import format_minutes, to_minutes
from .errors import AuthorizationError, NotFoundError, ValidationError
from .notifications import EVENT_CANCELLED, EVENT_CREATED, NotificationDispatcher
from .slots import WORK_END, WORK_START, Slot, available_starts
from .validation import is_valid_phone, parse_date_key, require_fields, validate_time
from .yaml_store import ReservationRecord, ReservationYamlRepository

logger = logging.getLogger(__name__)


class ReservationService:
    """Create and cancel field reservations.

    Every read goes to the repository; nothing is cached between calls.
    Notifications are handed to the dispatcher after the outcome is decided.
    """

    def __init__(
        self,
        repository: ReservationYamlRepository,
        dispatcher: NotificationDispatcher | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.dispatcher = dispatcher
        self.clock: Callable[[], datetime] = now_provider or datetime.now

    def list_reservations(self, date_key: str | None = None) -> list[ReservationRecord]:
        if date_key is not None:
            parse_date_key(date_key)
        return self.repository.list_reservations(date_key)

    def available_slots(self, date_key: str, duration_hours: int) -> list[Slot]:
        parse_date_key(date_key)
        existing = self.repository.list_reservations(date_key)
        return available_starts(date_key, duration_hours, existing, self.clock().date())

    def create_reservation(
        self,
        date_key: str,
        start: str,
        end: str,
        customer_name: str,
        customer_phone: str,
        title: str | None = None,
        customer_email: str | None = None,
    ) -> ReservationRecord:
        require_fields(
            {
                "date": date_key,
                "start": start,
                "end": end,
                "customerName": customer_name,
                "customerPhone": customer_phone,
            },
            ["date", "start", "end", "customerName", "customerPhone"],
        )

        now = self.clock()
        requested_date = parse_date_key(date_key)
        validate_time(start)
        validate_time(end)

        if to_minutes(start) >= to_minutes(end):
            raise ValidationError("Reservation start time must be earlier than end time.")
        if to_minutes(start) < WORK_START or to_minutes(end) > WORK_END:
            raise ValidationError(
                f"Reservation must be within operating hours ({format_minutes(WORK_START)}-{format_minutes(WORK_END)})."
            )
        if requested_date < now.date():
            raise ValidationError("Reservation date cannot be in the past.")

        phone = customer_phone.strip()
        if not is_valid_phone(phone):
            raise ValidationError("Invalid phone number format.")

        name = customer_name.strip()
        created = self.repository.insert_reservation(
            date_key=date_key,
            start=start,
            end=end,
            title=(title or "").strip() or f"Prenotazione {name}",
            customer_name=name,
            customer_phone=phone,
            customer_email=(customer_email or "").strip() or None,
            now=now,
        )
        logger.info("Reservation %s created for %s %s-%s", created.reservation_id, created.date, created.start, created.end)

        self._notify(EVENT_CREATED, created)
        return created

    def cancel_reservation(self, reservation_id: str, supplied_phone: str | None) -> ReservationRecord:
        if not reservation_id or not reservation_id.strip():
            raise ValidationError("Missing reservation ID")

        existing = self.repository.get_reservation(reservation_id)
        if existing is None:
            logger.warning("Cancellation refused for %s: reservation not found", reservation_id)
            raise NotFoundError("reservation not found")

        if not supplied_phone or not supplied_phone.strip():
            raise ValidationError("Missing phone number")
        if not is_valid_phone(supplied_phone):
            raise ValidationError("Invalid phone number format.")

        if supplied_phone.strip() != existing.customer_phone:
            logger.warning("Cancellation refused for %s: phone mismatch", reservation_id)
            raise AuthorizationError("phone number does not match")

        deleted = self.repository.delete_reservation(reservation_id, now=self.clock())
        logger.info("Reservation %s cancelled", deleted.reservation_id)

        self._notify(EVENT_CANCELLED, deleted)
        return deleted

    def _notify(self, event: str, reservation: ReservationRecord) -> None:
        if self.dispatcher is None:
            return
        self.dispatcher.submit(event, reservation)
