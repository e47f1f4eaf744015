class BookingError(Exception):
    code = 'error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidBooking(BookingError):
    code = 'invalid'


class DoctorNotFound(BookingError):
    code = 'not_found'


class DoctorUnavailable(BookingError):
    code = 'doctor_unavailable'


class SlotTaken(BookingError):
    code = 'slot_taken'


class RateLimited(BookingError):
    code = 'rate_limited'

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class NetworkUnreachable(BookingError):
    code = 'network'


class ServerError(BookingError):
    code = 'server'


ERRORS_BY_CODE = {
    error.code: error
    for error in (InvalidBooking, DoctorNotFound, DoctorUnavailable, SlotTaken, NetworkUnreachable, ServerError)
}
