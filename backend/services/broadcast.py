"""In-process fan-out of availability change notices.

Publishers run in worker threads (sync endpoints); subscribers are coroutines
on an event loop. Each subscriber owns a bounded queue that is only touched on
its own loop, so delivery goes through ``loop.call_soon_threadsafe``.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import date
from threading import Lock

logger = logging.getLogger(__name__)

AVAILABILITY_UPDATED_EVENT = 'doctor-availability-updated'


@dataclass(frozen=True)
class AvailabilityChangedEvent:
    doctor_id: int
    date: date

    def to_payload(self) -> dict:
        return {
            'event': AVAILABILITY_UPDATED_EVENT,
            'doctorId': self.doctor_id,
            'date': self.date.isoformat(),
        }


@dataclass(eq=False)
class Subscription:
    id: int
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue
    doctor_id: int | None = None
    dropped: int = field(default=0)

    def matches(self, event: AvailabilityChangedEvent) -> bool:
        return self.doctor_id is None or self.doctor_id == event.doctor_id

    async def get(self) -> dict:
        return await self.queue.get()


class AvailabilityBroadcaster:
    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._lock = Lock()
        self._ids = itertools.count(1)
        self._subscriptions: dict[int, Subscription] = {}

    def subscribe(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        doctor_id: int | None = None,
    ) -> Subscription:
        if loop is None:
            loop = asyncio.get_running_loop()

        subscription = Subscription(
            id=next(self._ids),
            loop=loop,
            queue=asyncio.Queue(maxsize=self.queue_size),
            doctor_id=doctor_id,
        )
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.pop(subscription.id, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: AvailabilityChangedEvent) -> int:
        """Queue ``event`` for every matching subscriber; returns how many were reached."""
        payload = event.to_payload()
        with self._lock:
            targets = [sub for sub in self._subscriptions.values() if sub.matches(event)]

        delivered = 0
        for subscription in targets:
            try:
                subscription.loop.call_soon_threadsafe(self._deliver, subscription, payload)
            except RuntimeError:
                # Loop already closed; the subscriber is gone.
                logger.warning('Dropping subscription %s: event loop is closed.', subscription.id)
                self.unsubscribe(subscription)
                continue
            delivered += 1

        logger.debug('Published %s for doctor %s on %s to %d subscriber(s).',
                     AVAILABILITY_UPDATED_EVENT, event.doctor_id, event.date, delivered)
        return delivered

    @staticmethod
    def _deliver(subscription: Subscription, payload: dict) -> None:
        if subscription.queue.full():
            subscription.queue.get_nowait()
            subscription.dropped += 1
            logger.warning('Subscription %s queue full; dropped oldest event.', subscription.id)
        subscription.queue.put_nowait(payload)
