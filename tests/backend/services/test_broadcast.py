import asyncio
import threading
from datetime import date

from backend.services.broadcast import AvailabilityBroadcaster, AvailabilityChangedEvent

MONDAY = date(2030, 1, 7)


def test_publish_reaches_every_matching_subscriber() -> None:
    broadcaster = AvailabilityBroadcaster(queue_size=5)

    async def scenario():
        everyone = broadcaster.subscribe()
        doctor_one = broadcaster.subscribe(doctor_id=1)
        doctor_two = broadcaster.subscribe(doctor_id=2)

        delivered = broadcaster.publish(AvailabilityChangedEvent(1, MONDAY))
        await asyncio.sleep(0)

        return delivered, everyone.queue.qsize(), doctor_one.queue.qsize(), doctor_two.queue.qsize()

    assert asyncio.run(scenario()) == (2, 1, 1, 0)


def test_payload_names_doctor_and_date() -> None:
    assert AvailabilityChangedEvent(3, MONDAY).to_payload() == {
        'event': 'doctor-availability-updated',
        'doctorId': 3,
        'date': '2030-01-07',
    }


def test_publish_from_worker_thread_is_delivered_on_subscriber_loop() -> None:
    broadcaster = AvailabilityBroadcaster()

    async def scenario():
        subscription = broadcaster.subscribe()
        worker = threading.Thread(target=broadcaster.publish, args=(AvailabilityChangedEvent(4, MONDAY),))
        worker.start()
        worker.join()
        return await asyncio.wait_for(subscription.get(), timeout=1)

    assert asyncio.run(scenario())['doctorId'] == 4


def test_full_queue_drops_oldest_event() -> None:
    broadcaster = AvailabilityBroadcaster(queue_size=2)

    async def scenario():
        subscription = broadcaster.subscribe()
        for day in (1, 2, 3):
            broadcaster.publish(AvailabilityChangedEvent(1, date(2030, 1, day)))
        await asyncio.sleep(0)
        received = [await subscription.get(), await subscription.get()]
        return received, subscription.dropped

    received, dropped = asyncio.run(scenario())

    assert [payload['date'] for payload in received] == ['2030-01-02', '2030-01-03']
    assert dropped == 1


def test_unsubscribe_stops_delivery() -> None:
    broadcaster = AvailabilityBroadcaster()

    async def scenario():
        subscription = broadcaster.subscribe()
        broadcaster.unsubscribe(subscription)
        return broadcaster.publish(AvailabilityChangedEvent(1, MONDAY)), subscription.queue.qsize()

    assert asyncio.run(scenario()) == (0, 0)
    assert broadcaster.subscriber_count == 0


def test_subscription_on_closed_loop_is_discarded() -> None:
    broadcaster = AvailabilityBroadcaster()

    async def scenario():
        broadcaster.subscribe()

    asyncio.run(scenario())

    assert broadcaster.publish(AvailabilityChangedEvent(1, MONDAY)) == 0
    assert broadcaster.subscriber_count == 0
