"""Computes which of a doctor's slots are still bookable on a given day."""

import calendar
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import or_
from sqlalchemy.orm import Session

from backend.core import config
from backend.models.doctor import Doctor, DoctorBreakTime, DoctorUnavailability, WorkingHours
from backend.models.reservation import ACTIVE_STATUSES, Reservation
from backend.services.slot_labels import InvalidSlotLabel, normalize_slot_label, to_minutes

MINUTES_PER_DAY = 24 * 60


class DoctorNotFound(LookupError):
    def __init__(self, doctor_id: int):
        super().__init__(f'Doctor {doctor_id} not found.')
        self.doctor_id = doctor_id


@dataclass(frozen=True)
class SlotAvailability:
    doctor_id: int
    date: date
    slots: tuple[str, ...]
    reason: str | None = None
    # Whether the doctor works at all that day; False means every slot is off.
    day_open: bool = True
    configured: tuple[str, ...] = field(default=(), repr=False)
    reserved: frozenset[str] = field(default=frozenset(), repr=False)

    def is_offered(self, slot: str) -> bool:
        return slot in self.configured

    def is_available(self, slot: str) -> bool:
        return slot in self.slots


def get_active_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.get(Doctor, doctor_id)
    if doctor is None or doctor.is_active is False:
        raise DoctorNotFound(doctor_id)
    return doctor


def get_reserved_slots(db: Session, doctor_id: int, slot_date: date) -> set[str]:
    rows = db.query(Reservation.slot).filter(
        Reservation.doctor_id == doctor_id,
        Reservation.date == slot_date,
        Reservation.status.in_(ACTIVE_STATUSES),
    ).all()
    return {slot for (slot,) in rows}


def find_unavailability(db: Session, doctor_id: int, slot_date: date) -> DoctorUnavailability | None:
    return db.query(DoctorUnavailability).filter(
        DoctorUnavailability.doctor_id == doctor_id,
        DoctorUnavailability.is_active.is_(True),
        DoctorUnavailability.start_date <= slot_date,
        DoctorUnavailability.end_date >= slot_date,
    ).order_by(DoctorUnavailability.start_date.asc()).first()


def get_break_times(db: Session, doctor_id: int, slot_date: date) -> list[DoctorBreakTime]:
    candidates = db.query(DoctorBreakTime).filter(
        DoctorBreakTime.doctor_id == doctor_id,
        DoctorBreakTime.is_active.is_(True),
        or_(DoctorBreakTime.specific_date.is_(None), DoctorBreakTime.specific_date == slot_date),
    ).all()

    weekday = slot_date.weekday()
    return [
        break_time for break_time in candidates
        if break_time.specific_date == slot_date or weekday in (break_time.days_of_week or [])
    ]


def _label_minutes(label: str) -> int | None:
    try:
        return to_minutes(label)
    except InvalidSlotLabel:
        return None


def overlaps_break(slot: str, break_time: DoctorBreakTime, duration_minutes: int) -> bool:
    slot_start = to_minutes(slot)
    slot_end = slot_start + duration_minutes
    break_start = _label_minutes(break_time.start_time)
    break_end = _label_minutes(break_time.end_time)

    if break_start is None or break_end is None:
        return False

    if break_end < break_start:
        # Spans midnight.
        return slot_start < break_end or slot_end > break_start

    return slot_start < break_end and slot_end > break_start


def in_unavailable_range(slot: str, unavailability: DoctorUnavailability) -> bool:
    slot_start = to_minutes(slot)
    for time_range in unavailability.unavailable_times or []:
        range_start = _label_minutes(time_range.get('start_time', ''))
        range_end = _label_minutes(time_range.get('end_time', ''))
        if range_start is None or range_end is None:
            continue
        if range_start <= slot_start < range_end:
            return True
    return False


def configured_slots(hours: WorkingHours | None) -> tuple[str, ...]:
    if hours is None or hours.is_closed:
        return ()

    labels: list[str] = []
    seen: set[str] = set()
    for raw_label in hours.slots or []:
        try:
            label = normalize_slot_label(raw_label)
        except InvalidSlotLabel:
            continue
        if label not in seen:
            seen.add(label)
            labels.append(label)

    return tuple(labels)


def resolve(
    db: Session,
    doctor_id: int,
    slot_date: date,
    duration_minutes: int = config.SLOT_DURATION_MINUTES,
) -> SlotAvailability:
    """Free slots for ``doctor_id`` on ``slot_date``.

    Raises ``DoctorNotFound`` for an unknown or inactive doctor. Every other
    outcome, including a closed day, is an ordinary result whose ``reason``
    explains an empty ``slots`` tuple.
    """
    get_active_doctor(db, doctor_id)

    hours = db.query(WorkingHours).filter(
        WorkingHours.doctor_id == doctor_id,
        WorkingHours.weekday == slot_date.weekday(),
    ).first()
    configured = configured_slots(hours)

    if not configured:
        return SlotAvailability(
            doctor_id=doctor_id,
            date=slot_date,
            slots=(),
            reason=f'Doctor is not available on {calendar.day_name[slot_date.weekday()]}s.',
            day_open=False,
        )

    unavailability = find_unavailability(db, doctor_id, slot_date)
    if unavailability is not None and not unavailability.unavailable_times:
        return SlotAvailability(
            doctor_id=doctor_id,
            date=slot_date,
            slots=(),
            reason=(
                f'Doctor is unavailable on this date ({unavailability.reason}). '
                'Please select another date.'
            ),
            day_open=False,
            configured=configured,
        )

    break_times = get_break_times(db, doctor_id, slot_date)
    reserved = frozenset(get_reserved_slots(db, doctor_id, slot_date))

    slots = tuple(
        slot for slot in configured
        if slot not in reserved
        and not (unavailability is not None and in_unavailable_range(slot, unavailability))
        and not any(overlaps_break(slot, break_time, duration_minutes) for break_time in break_times)
    )

    reason = None
    if not slots:
        reason = 'All slots are booked for this date.'
    elif unavailability is not None:
        reason = f'Doctor unavailable for part of this day ({unavailability.reason}).'

    return SlotAvailability(
        doctor_id=doctor_id,
        date=slot_date,
        slots=slots,
        reason=reason,
        configured=configured,
        reserved=reserved,
    )
