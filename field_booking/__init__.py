from .booking import format_minutes, has_conflict, ranges_overlap, to_minutes
from .errors import (
	AuthorizationError,
	BookingError,
	ConflictError,
	NotFoundError,
	NotificationError,
	ReservationStorageError,
	ValidationError,
)
from .lifecycle import ReservationService
from .slots import Slot, all_starts, available_starts, end_for_start
from .yaml_store import (
	ReservationRecord,
	ReservationYamlRepository,
	generate_test_reservations,
)

__all__ = [
	"to_minutes",
	"format_minutes",
	"ranges_overlap",
	"has_conflict",
	"Slot",
	"all_starts",
	"available_starts",
	"end_for_start",
	"BookingError",
	"ValidationError",
	"ConflictError",
	"NotFoundError",
	"AuthorizationError",
	"ReservationStorageError",
	"NotificationError",
	"ReservationService",
	"ReservationRecord",
	"ReservationYamlRepository",
	"generate_test_reservations",
]
