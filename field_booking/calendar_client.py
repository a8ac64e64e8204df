from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable
import logging

import httpx

from .booking import has_conflict, to_minutes
from .slots import WORK_END, Slot, available_starts, end_for_start
from .validation import is_valid_phone

logger = logging.getLogger(__name__)

REFRESH_INTERVAL_SECONDS = 30
MESSAGE_TTL_SECONDS = 5

MSG_SLOT_UNAVAILABLE = "Slot non disponibile per la prenotazione"
MSG_CHECK_FIELDS = "Controlla i campi evidenziati"
MSG_NAME_REQUIRED = "Inserisci il nome"
MSG_PHONE_REQUIRED = "Inserisci il numero di telefono"
MSG_PHONE_FORMAT = "Formato numero non valido (es: 3331234567 o 0612345678)"
MSG_CANCEL_PHONE_FORMAT = "Formato numero di telefono non valido (es: 3331234567 o 0612345678)"
MSG_PHONE_MISMATCH = "NUMERO SBAGLIATO: Il telefono inserito non corrisponde a quello della prenotazione"
MSG_CREATED = "Prenotazione creata con successo!"
MSG_CANCELLED = "Prenotazione cancellata con successo!"
MSG_CREATE_FAILED = "Errore nella creazione della prenotazione"
MSG_CANCEL_FAILED = "Errore nella cancellazione della prenotazione"
MSG_CONNECTION = "Errore di connessione"


def mask_customer_name(name: str) -> str:
    """Hide the inside of each word of a name for on-screen display."""
    if not name or len(name) <= 2:
        return name

    words = name.strip().split(" ")
    return " ".join(word if len(word) <= 2 else word[0] + "*" * (len(word) - 2) + word[-1] for word in words)


def mask_title(title: str | None, customer_name: str) -> str | None:
    """Replace every occurrence of the customer name in a title with its masked form."""
    if not title or not customer_name:
        return title
    return title.replace(customer_name, mask_customer_name(customer_name))


@dataclass(frozen=True)
class ApiResult:
    ok: bool
    status_code: int
    payload: dict[str, Any]

    @property
    def error(self) -> str | None:
        value = self.payload.get("error")
        return str(value) if value else None


class ReservationApiClient:
    """Thin wrapper over the reservation HTTP endpoints.

    Transport failures propagate as :class:`httpx.HTTPError`; HTTP error
    statuses come back as an unsuccessful :class:`ApiResult`.
    """

    def __init__(self, client: httpx.Client) -> None:
        self.client = client

    @classmethod
    def from_base_url(cls, base_url: str, timeout: float = 10.0) -> "ReservationApiClient":
        return cls(httpx.Client(base_url=base_url, timeout=timeout))

    def list_reservations(self, date_key: str | None = None) -> ApiResult:
        params = {"date": date_key} if date_key else None
        response = self.client.get("/api/reservations", params=params, headers={"Cache-Control": "no-store"})
        return _to_result(response)

    def create_reservation(self, body: dict[str, Any]) -> ApiResult:
        return _to_result(self.client.post("/api/reservations", json=body))

    def cancel_reservation(self, reservation_id: str, phone: str) -> ApiResult:
        response = self.client.delete("/api/reservations", params={"id": reservation_id, "phone": phone})
        return _to_result(response)

    def close(self) -> None:
        self.client.close()


def _to_result(response: httpx.Response) -> ApiResult:
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    return ApiResult(ok=response.is_success, status_code=response.status_code, payload=payload)


@dataclass
class Message:
    kind: str
    text: str
    expires_at: datetime


@dataclass
class BookingForm:
    is_open: bool = False
    customer_name: str = ""
    customer_phone: str = ""
    title: str = ""
    errors: dict[str, str] = field(default_factory=dict)

    def clear(self) -> None:
        self.customer_name = ""
        self.customer_phone = ""
        self.title = ""
        self.errors = {}


@dataclass
class CancelDialog:
    reservation: dict[str, Any]
    phone: str = ""
    error: str = ""

    @property
    def reservation_id(self) -> str:
        return str(self.reservation["id"])


class CalendarState:
    """Visitor-side booking calendar.

    Holds the visible month, the selected date and time range, and the booking
    and cancellation sub-forms. It only talks to the server through
    :class:`ReservationApiClient` and keeps a local copy of the reservation
    set, refreshed every ``REFRESH_INTERVAL_SECONDS`` and after each change.
    """

    def __init__(self, api: ReservationApiClient, now_provider: Callable[[], datetime] | None = None) -> None:
        self.api = api
        self.clock: Callable[[], datetime] = now_provider or datetime.now

        today = self.clock().date()
        self.visible_month = today.month
        self.visible_year = today.year
        self.selected_date: date = today
        self.duration = 0
        self.start_time = ""
        self.end_time = ""
        self.reservations: list[dict[str, Any]] = []
        self.is_loading = False
        self.form = BookingForm()
        self.cancel_dialog: CancelDialog | None = None
        self.last_refresh: datetime | None = None
        self._message: Message | None = None

    def refresh(self) -> bool:
        self.last_refresh = self.clock()
        try:
            result = self.api.list_reservations()
        except httpx.HTTPError as error:
            logger.error("Failed to load reservations: %s", error)
            return False

        reservations = result.payload.get("reservations")
        if not result.ok or not isinstance(reservations, list):
            logger.warning("Reservation refresh returned status %s", result.status_code)
            return False
        self.reservations = reservations
        return True

    def poll(self) -> bool:
        """Refresh when the refresh interval has elapsed. Returns True if a refresh ran."""
        now = self.clock()
        if self.last_refresh is not None and now - self.last_refresh < timedelta(seconds=REFRESH_INTERVAL_SECONDS):
            return False
        self.refresh()
        return True

    def reservations_on(self, day: date) -> list[dict[str, Any]]:
        key = day.isoformat()
        matches = [item for item in self.reservations if item.get("date") == key]
        return sorted(matches, key=lambda item: to_minutes(str(item.get("start", ""))))

    @property
    def selected_reservations(self) -> list[dict[str, Any]]:
        return self.reservations_on(self.selected_date)

    def show_message(self, kind: str, text: str) -> None:
        self._message = Message(kind=kind, text=text, expires_at=self.clock() + timedelta(seconds=MESSAGE_TTL_SECONDS))

    @property
    def message(self) -> Message | None:
        if self._message is not None and self.clock() >= self._message.expires_at:
            self._message = None
        return self._message

    def is_past(self, day: date) -> bool:
        return day < self.clock().date()

    def previous_month(self) -> None:
        if self.visible_month == 1:
            self.visible_month, self.visible_year = 12, self.visible_year - 1
        else:
            self.visible_month -= 1

    def next_month(self) -> None:
        if self.visible_month == 12:
            self.visible_month, self.visible_year = 1, self.visible_year + 1
        else:
            self.visible_month += 1

    def go_to_today(self) -> None:
        today = self.clock().date()
        self.visible_month = today.month
        self.visible_year = today.year
        self.select_date(today)

    def month_grid(self) -> list[list[date | None]]:
        """Weeks of the visible month, Monday first, padded with ``None``."""
        first_weekday, total_days = monthrange(self.visible_year, self.visible_month)
        cells: list[date | None] = [None] * first_weekday
        cells.extend(date(self.visible_year, self.visible_month, day) for day in range(1, total_days + 1))
        while len(cells) % 7:
            cells.append(None)
        return [cells[index:index + 7] for index in range(0, len(cells), 7)]

    def select_date(self, day: date) -> bool:
        if self.is_past(day):
            return False
        self.selected_date = day
        self.duration = 0
        self.start_time = ""
        self.end_time = ""
        return True

    def select_duration(self, hours: int) -> None:
        self.duration = hours
        if self.start_time:
            self.end_time = end_for_start(self.start_time, hours)
        else:
            self.end_time = ""

    def select_start(self, slot_time: str) -> None:
        if slot_time == "00:00" or not self.duration:
            return
        self.start_time = slot_time
        self.end_time = end_for_start(slot_time, self.duration)

    @property
    def available_starts(self) -> list[Slot]:
        if not self.duration:
            return []
        return available_starts(
            self.selected_date.isoformat(),
            self.duration,
            self.selected_reservations,
            self.clock().date(),
        )

    def is_slot_busy(self, day: date, start: str, end: str) -> bool:
        return has_conflict(day.isoformat(), start, end, self.reservations_on(day))

    def can_submit(self) -> bool:
        if not self.start_time or not self.end_time or not self.duration:
            return False
        if self.is_past(self.selected_date):
            return False

        start_minutes = to_minutes(self.start_time)
        end_minutes = to_minutes(self.end_time)
        if end_minutes <= start_minutes or end_minutes > WORK_END:
            return False
        return not self.is_slot_busy(self.selected_date, self.start_time, self.end_time)

    def open_booking_form(self) -> None:
        self.form.is_open = True
        self.form.errors = {}

    def close_booking_form(self) -> None:
        self.form.is_open = False

    def submit_booking(self) -> bool:
        if not self.can_submit():
            self.show_message("error", MSG_SLOT_UNAVAILABLE)
            return False

        self.form.errors = {}
        name = self.form.customer_name.strip()
        phone = self.form.customer_phone.strip()
        if not name or not phone:
            if not name:
                self.form.errors["name"] = MSG_NAME_REQUIRED
            if not phone:
                self.form.errors["phone"] = MSG_PHONE_REQUIRED
            self.show_message("error", MSG_CHECK_FIELDS)
            return False

        if not is_valid_phone(phone):
            self.form.errors = {"phone": MSG_PHONE_FORMAT}
            self.show_message("error", MSG_CHECK_FIELDS)
            return False

        self.is_loading = True
        try:
            result = self.api.create_reservation(
                {
                    "date": self.selected_date.isoformat(),
                    "start": self.start_time,
                    "end": self.end_time,
                    "title": self.form.title.strip(),
                    "customerName": name,
                    "customerPhone": phone,
                }
            )
        except httpx.HTTPError:
            self.show_message("error", MSG_CONNECTION)
            return False
        finally:
            self.is_loading = False

        if not result.ok:
            self.show_message("error", result.error or MSG_CREATE_FAILED)
            return False

        self.show_message("success", MSG_CREATED)
        self.form.is_open = False
        self.form.clear()
        self.refresh()
        return True

    def request_cancellation(self, reservation_id: str) -> bool:
        reservation = next((item for item in self.reservations if str(item.get("id")) == reservation_id), None)
        if reservation is None:
            return False
        self.cancel_dialog = CancelDialog(reservation=reservation)
        return True

    def close_cancel_dialog(self) -> None:
        self.cancel_dialog = None

    def confirm_cancellation(self, phone: str | None = None) -> bool:
        dialog = self.cancel_dialog
        if dialog is None:
            return False
        if phone is not None:
            dialog.phone = phone

        dialog.error = ""
        supplied = dialog.phone.strip()
        if not supplied:
            dialog.error = MSG_PHONE_REQUIRED
            return False
        if not is_valid_phone(supplied):
            dialog.error = MSG_CANCEL_PHONE_FORMAT
            return False
        # Early feedback only; the server checks the phone again.
        if supplied != dialog.reservation.get("customer_phone"):
            dialog.error = MSG_PHONE_MISMATCH
            return False

        self.is_loading = True
        try:
            result = self.api.cancel_reservation(dialog.reservation_id, supplied)
        except httpx.HTTPError:
            dialog.error = MSG_CONNECTION
            return False
        finally:
            self.is_loading = False

        if not result.ok:
            dialog.error = result.error or MSG_CANCEL_FAILED
            return False

        self.show_message("success", MSG_CANCELLED)
        self.cancel_dialog = None
        self.refresh()
        return True
