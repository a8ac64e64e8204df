from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as SendTimeout
from html import escape
from typing import Protocol, Sequence
import logging
import queue
import threading
import time

import resend

from .errors import NotificationError
from .yaml_store import ReservationRecord

logger = logging.getLogger(__name__)

EVENT_CREATED = "reservation_created"
EVENT_CANCELLED = "reservation_cancelled"

_SUBJECTS = {
    EVENT_CREATED: "Nuova prenotazione campo",
    EVENT_CANCELLED: "Cancellazione prenotazione campo",
}
_HEADINGS = {
    EVENT_CREATED: "Nuova prenotazione campo sportivo",
    EVENT_CANCELLED: "Prenotazione cancellata",
}


class Notifier(Protocol):
    def send(self, event: str, reservation: ReservationRecord) -> None: ...


def build_subject(event: str, reservation: ReservationRecord) -> str:
    return f"{_SUBJECTS[event]}: {reservation.date} {reservation.start}–{reservation.end}"


def build_html(event: str, reservation: ReservationRecord) -> str:
    lines = [
        '<div style="font-family: Arial, sans-serif;">',
        f"<h2>{_HEADINGS[event]}</h2>",
        f"<p><strong>Nome:</strong> {escape(reservation.customer_name)}</p>",
        f"<p><strong>Telefono:</strong> {escape(reservation.customer_phone)}</p>",
    ]
    if reservation.customer_email:
        lines.append(f"<p><strong>Email:</strong> {escape(reservation.customer_email)}</p>")
    lines.append(
        f"<p><strong>Quando:</strong> {escape(reservation.date)} "
        f"{escape(reservation.start)}–{escape(reservation.end)}</p>"
    )
    if reservation.title:
        lines.append(f"<p><strong>Titolo:</strong> {escape(reservation.title)}</p>")
    lines.append("</div>")
    return "\n".join(lines)


class ResendNotifier:
    """Send reservation e-mails to the field managers through Resend."""

    def __init__(self, api_key: str | None, sender: str, recipients: Sequence[str]) -> None:
        self.api_key = api_key
        self.sender = sender
        self.recipients = list(recipients)

    def send(self, event: str, reservation: ReservationRecord) -> None:
        if not self.api_key or not self.recipients:
            logger.warning("Notification skipped for %s: RESEND_API_KEY or recipients not configured", event)
            return

        resend.api_key = self.api_key
        params = {
            "from": self.sender,
            "to": self.recipients,
            "subject": build_subject(event, reservation),
            "html": build_html(event, reservation),
        }
        try:
            resend.Emails.send(params)
        except Exception as error:
            raise NotificationError(f"Resend delivery failed for {event}") from error
        logger.info("Notification %s sent for reservation %s", event, reservation.reservation_id)


_STOP = object()


class NotificationDispatcher:
    """Deliver notifications on a background worker so callers never wait on them.

    ``submit`` only enqueues. Each delivery is bounded by ``send_timeout``;
    a slow or failing notifier is logged and the worker moves on.
    """

    def __init__(self, notifier: Notifier, send_timeout: float = 10.0) -> None:
        self.notifier = notifier
        self.send_timeout = send_timeout
        self._queue: queue.Queue = queue.Queue()
        self._worker: threading.Thread | None = None
        self._start_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="notification-send")

    def _ensure_worker(self) -> None:
        with self._start_lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._run, name="notification-dispatcher", daemon=True)
                self._worker.start()

    def submit(self, event: str, reservation: ReservationRecord) -> None:
        try:
            self._ensure_worker()
            self._queue.put((event, reservation))
        except Exception:
            logger.exception("Could not queue notification %s", event)

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                self._deliver(*job)
            finally:
                self._queue.task_done()

    def _deliver(self, event: str, reservation: ReservationRecord) -> None:
        future = self._executor.submit(self.notifier.send, event, reservation)
        try:
            future.result(timeout=self.send_timeout)
        except SendTimeout:
            logger.warning("Notification %s timed out after %ss", event, self.send_timeout)
        except Exception:
            logger.exception("Notification %s failed for reservation %s", event, reservation.reservation_id)

    def drain(self, timeout: float = 5.0) -> bool:
        """Wait until queued notifications are handled. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def close(self, timeout: float = 5.0) -> None:
        if self._worker is not None and self._worker.is_alive():
            self._queue.put(_STOP)
            self._worker.join(timeout)
        self._executor.shutdown(wait=False)
