from __future__ import annotations

from typing import Annotated

from mcp.server.fastmcp import FastMCP

from field_booking import ReservationService, ReservationYamlRepository, all_starts
from field_booking.calendar_client import mask_customer_name, mask_title
from field_booking.config import Settings
from field_booking.errors import AuthorizationError, CANCEL_REFUSED_MESSAGE, NotFoundError
from field_booking.notifications import NotificationDispatcher, ResendNotifier

mcp = FastMCP(
    "Field Booking MCP Server",
    instructions="Check availability of the sports field and create or cancel reservations.",
    json_response=True,
)

SETTINGS = Settings.from_env()
REPOSITORY = ReservationYamlRepository(SETTINGS.data_dir, lock_timeout=SETTINGS.storage_lock_timeout)
SERVICE = ReservationService(
    REPOSITORY,
    dispatcher=NotificationDispatcher(
        ResendNotifier(SETTINGS.resend_api_key, SETTINGS.email_from, SETTINGS.notify_recipients),
        send_timeout=SETTINGS.notify_timeout,
    ),
)


@mcp.resource("field://slot-catalog")
async def slot_catalog() -> list[str]:
    """List every hourly start time of the operating window."""
    return all_starts()


@mcp.tool()
def list_reservations(date: str | None = None) -> list[dict[str, str | None]]:
    """Return reservations, optionally for one YYYY-MM-DD date. Names are masked and phone numbers omitted."""
    records = SERVICE.list_reservations(date)
    return [
        {
            "id": record.reservation_id,
            "date": record.date,
            "start": record.start,
            "end": record.end,
            "title": mask_title(record.title, record.customer_name),
            "customer_name": mask_customer_name(record.customer_name),
        }
        for record in records
    ]


@mcp.tool()
def available_slots(
    date: str,
    duration_hours: Annotated[int, "Whole hours, 1 to 6"],
) -> list[dict[str, str]]:
    """Return free {start, end} slots of the given length on a date."""
    return [slot.to_dict() for slot in SERVICE.available_slots(date, duration_hours)]


@mcp.tool()
def create_reservation(
    date: str,
    start: str,
    end: str,
    customer_name: str,
    customer_phone: str,
    title: str | None = None,
    customer_email: str | None = None,
) -> dict[str, str | None]:
    """Reserve the field. Times are HH:mm; an end of 00:00 means midnight."""
    created = SERVICE.create_reservation(
        date_key=date,
        start=start,
        end=end,
        customer_name=customer_name,
        customer_phone=customer_phone,
        title=title,
        customer_email=customer_email,
    )
    return created.to_dict()


@mcp.tool()
def cancel_reservation(reservation_id: str, phone: str) -> dict[str, str]:
    """Cancel a reservation using the phone number it was booked with."""
    try:
        SERVICE.cancel_reservation(reservation_id, phone)
    except (NotFoundError, AuthorizationError):
        return {"error": CANCEL_REFUSED_MESSAGE}
    return {"message": "Reservation deleted successfully"}


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
