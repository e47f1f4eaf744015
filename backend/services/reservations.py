"""Commits reservations while keeping each doctor/date/slot held at most once.

The check-then-insert span runs under a lock keyed on (doctor, date, slot) so
concurrent requests for the same slot are serialised while other slots book in
parallel. The partial unique index on ``reservations`` backs this up when more
than one process writes to the same database.
"""

import enum
import logging
from collections.abc import Callable
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.core import config
from backend.models.reservation import (
    ACTIVE_STATUSES,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_PENDING,
    Reservation,
)
from backend.models.user import User
from backend.services import availability
from backend.services.broadcast import AvailabilityBroadcaster, AvailabilityChangedEvent
from backend.services.keyed_locks import KeyedLocks
from backend.services.slot_labels import InvalidSlotLabel, normalize_slot_label, parse_slot_label
from backend.services.throttle import SubmissionThrottle

logger = logging.getLogger(__name__)


class RejectionCode(str, enum.Enum):
    INVALID = 'invalid'
    DOCTOR_UNAVAILABLE = 'doctor_unavailable'
    SLOT_TAKEN = 'slot_taken'
    RATE_LIMITED = 'rate_limited'


class BookingRejected(Exception):
    def __init__(self, code: RejectionCode, message: str, retry_after: int | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retry_after = retry_after


class ReservationNotFound(LookupError):
    pass


class ReservationPermissionError(PermissionError):
    pass


class InvalidTransition(ValueError):
    pass


class ReservationCoordinator:
    def __init__(
        self,
        broadcaster: AvailabilityBroadcaster,
        throttle: SubmissionThrottle | None = None,
        locks: KeyedLocks | None = None,
        now: Callable[[], datetime] = datetime.now,
        max_reason_length: int = config.MAX_REASON_LENGTH,
    ) -> None:
        self.broadcaster = broadcaster
        self.throttle = throttle or SubmissionThrottle(config.BOOKING_COOLDOWN_SECONDS)
        self.locks = locks or KeyedLocks()
        self._now = now
        self.max_reason_length = max_reason_length

    def book(
        self,
        db: Session,
        doctor_id: int,
        slot_date: date,
        slot: str,
        patient_id: int,
        reason: str | None,
    ) -> Reservation:
        retry_after = self.throttle.check(patient_id)
        if retry_after is not None:
            raise BookingRejected(
                RejectionCode.RATE_LIMITED,
                'Please wait before submitting again.',
                retry_after=retry_after,
            )

        availability.get_active_doctor(db, doctor_id)
        label, cleaned_reason = self._validate(slot_date, slot, reason)

        with self.locks.hold((doctor_id, slot_date, label)):
            # Fresh read inside the critical section; nothing cached is trusted.
            db.expire_all()
            current = availability.resolve(db, doctor_id, slot_date)

            if not current.day_open:
                raise BookingRejected(RejectionCode.DOCTOR_UNAVAILABLE, current.reason or 'Doctor is unavailable.')
            if label in current.reserved:
                raise BookingRejected(RejectionCode.SLOT_TAKEN, f'The {label} slot was just taken by another patient.')
            if not current.is_available(label):
                raise BookingRejected(
                    RejectionCode.DOCTOR_UNAVAILABLE,
                    f'The doctor is not available at {label} on this date.',
                )

            reservation = Reservation(
                doctor_id=doctor_id,
                patient_id=patient_id,
                date=slot_date,
                slot=label,
                reason=cleaned_reason,
                status=STATUS_PENDING,
            )
            db.add(reservation)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise BookingRejected(
                    RejectionCode.SLOT_TAKEN,
                    f'The {label} slot was just taken by another patient.',
                ) from exc
            db.refresh(reservation)

        logger.info('Reservation %s booked: doctor=%s date=%s slot=%s patient=%s',
                    reservation.id, doctor_id, slot_date, label, patient_id)
        self.broadcaster.publish(AvailabilityChangedEvent(doctor_id, slot_date))
        return reservation

    def cancel(self, db: Session, reservation_id: int, actor: User, reason: str | None = None) -> Reservation:
        reservation = self._get(db, reservation_id)

        if actor.role != 'admin' and reservation.patient_id != actor.id:
            raise ReservationPermissionError('Only the patient who booked this appointment can cancel it.')
        if reservation.status == STATUS_CANCELLED:
            raise InvalidTransition('Appointment is already cancelled.')

        reservation.status = STATUS_CANCELLED
        reservation.cancellation_reason = (reason or '').strip() or None
        db.commit()
        db.refresh(reservation)

        logger.info('Reservation %s cancelled by user %s', reservation.id, actor.id)
        self.broadcaster.publish(AvailabilityChangedEvent(reservation.doctor_id, reservation.date))
        return reservation

    def confirm(self, db: Session, reservation_id: int, actor: User) -> Reservation:
        reservation = self._get(db, reservation_id)

        if actor.role != 'admin' and not (actor.role == 'doctor' and actor.doctor_id == reservation.doctor_id):
            raise ReservationPermissionError('Only the assigned doctor can confirm this appointment.')
        if reservation.status != STATUS_PENDING:
            raise InvalidTransition(f'Only pending appointments can be confirmed (current status: {reservation.status}).')

        reservation.status = STATUS_CONFIRMED
        db.commit()
        db.refresh(reservation)

        logger.info('Reservation %s confirmed by user %s', reservation.id, actor.id)
        return reservation

    def list_for_patient(self, db: Session, patient_id: int, include_cancelled: bool = True) -> list[Reservation]:
        query = db.query(Reservation).filter(
            Reservation.patient_id == patient_id,
            Reservation.date >= self._now().date(),
        )
        if not include_cancelled:
            query = query.filter(Reservation.status.in_(ACTIVE_STATUSES))
        return query.order_by(Reservation.date.asc(), Reservation.slot.asc()).all()

    def _validate(self, slot_date: date, slot: str, reason: str | None) -> tuple[str, str]:
        try:
            slot_time = parse_slot_label(slot)
        except InvalidSlotLabel as exc:
            raise BookingRejected(RejectionCode.INVALID, str(exc)) from exc

        cleaned_reason = (reason or '').strip()
        if not cleaned_reason:
            raise BookingRejected(RejectionCode.INVALID, 'A reason for the visit is required.')
        if len(cleaned_reason) > self.max_reason_length:
            raise BookingRejected(
                RejectionCode.INVALID,
                f'Reason must be {self.max_reason_length} characters or fewer.',
            )

        if datetime.combine(slot_date, slot_time) <= self._now():
            raise BookingRejected(RejectionCode.INVALID, 'Appointments must be scheduled in the future.')

        return normalize_slot_label(slot), cleaned_reason

    @staticmethod
    def _get(db: Session, reservation_id: int) -> Reservation:
        reservation = db.get(Reservation, reservation_id)
        if reservation is None:
            raise ReservationNotFound('Appointment not found.')
        return reservation
