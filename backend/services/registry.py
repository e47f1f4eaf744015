"""Process-wide booking services shared by the routers."""

from backend.core import config
from backend.services.broadcast import AvailabilityBroadcaster
from backend.services.reservations import ReservationCoordinator
from backend.services.throttle import SubmissionThrottle

broadcaster = AvailabilityBroadcaster(queue_size=config.EVENT_QUEUE_SIZE)
coordinator = ReservationCoordinator(
    broadcaster,
    throttle=SubmissionThrottle(config.BOOKING_COOLDOWN_SECONDS),
)


def get_broadcaster() -> AvailabilityBroadcaster:
    return broadcaster


def get_coordinator() -> ReservationCoordinator:
    return coordinator
