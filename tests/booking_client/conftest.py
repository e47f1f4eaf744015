import asyncio
from datetime import date

import pytest

from booking_client.api import AvailabilityView

DAY = date(2030, 1, 7)
OTHER_DAY = date(2030, 1, 8)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBookingApi:
    """Scripted stand-in for ``BookingApi`` backed by an in-memory slot table."""

    def __init__(self, slots: dict[tuple[int, date], list[str]]) -> None:
        self.slots = slots
        self.gates: dict[tuple[int, date], asyncio.Event] = {}
        self.book_errors: list[Exception] = []
        self.fetches: list[tuple[int, date]] = []
        self.bookings: list[dict] = []

    def take(self, doctor_id: int, slot_date: date, slot: str) -> None:
        self.slots[(doctor_id, slot_date)].remove(slot)

    async def fetch_slots(self, doctor_id: int, slot_date: date) -> AvailabilityView:
        key = (doctor_id, slot_date)
        self.fetches.append(key)
        if key in self.gates:
            await self.gates[key].wait()
        return AvailabilityView(doctor_id=doctor_id, date=slot_date, slots=tuple(self.slots.get(key, ())))

    async def book(self, doctor_id: int, slot_date: date, slot: str, reason: str) -> dict:
        if self.book_errors:
            raise self.book_errors.pop(0)
        self.take(doctor_id, slot_date, slot)
        reservation = {
            'id': len(self.bookings) + 1,
            'doctor_id': doctor_id,
            'date': slot_date.isoformat(),
            'slot': slot,
            'reason': reason,
            'status': 'pending',
        }
        self.bookings.append(reservation)
        return reservation


@pytest.fixture
def api() -> FakeBookingApi:
    return FakeBookingApi({
        (1, DAY): ['09:00', '09:30', '10:00'],
        (1, OTHER_DAY): ['14:00'],
        (2, DAY): ['11:00'],
    })


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
