class BookingError(Exception):
    pass


class ValidationError(BookingError, ValueError):
    pass


class ConflictError(BookingError):
    pass


class NotFoundError(BookingError):
    pass


class AuthorizationError(BookingError):
    pass


class ReservationStorageError(BookingError, RuntimeError):
    pass


class NotificationError(BookingError):
    pass


CANCEL_REFUSED_MESSAGE = "Cannot cancel this reservation. Check the reservation and the phone number."
CONFLICT_MESSAGE = "Time slot conflict. This time is already booked."
