from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import require_roles
from backend.core import config
from backend.database import get_db
from backend.models.doctor import DoctorBreakTime, DoctorUnavailability
from backend.models.user import User
from backend.routes.common import database_unavailable, ensure_database_ready, error_detail
from backend.services import availability
from backend.services.broadcast import AvailabilityBroadcaster, AvailabilityChangedEvent
from backend.services.registry import get_broadcaster
from backend.services.slot_labels import InvalidSlotLabel, normalize_slot_label

router = APIRouter(tags=['schedule'])

UNAVAILABILITY_REASONS = {'seminar', 'conference', 'vacation', 'training', 'personal', 'sick', 'other'}


def _normalize_time(value: str) -> str:
    try:
        return normalize_slot_label(value)
    except InvalidSlotLabel as exc:
        raise ValueError('Invalid time format. Use HH:MM.') from exc


class TimeRange(BaseModel):
    start_time: str
    end_time: str

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        return _normalize_time(value)


class CreateUnavailabilityRequest(BaseModel):
    start_date: date
    end_date: date
    reason: str = 'other'
    description: str = ''
    unavailable_times: list[TimeRange] = []

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in UNAVAILABILITY_REASONS:
            raise ValueError('Invalid unavailability reason.')
        return normalized

    @model_validator(mode='after')
    def validate_range(self):
        if self.start_date > self.end_date:
            raise ValueError('Start date must be before end date.')
        return self


class UnavailabilityResponse(BaseModel):
    id: int
    doctor_id: int
    start_date: date
    end_date: date
    reason: str
    description: str | None = None
    unavailable_times: list[TimeRange] = []

    class Config:
        from_attributes = True


class CreateBreakTimeRequest(BaseModel):
    days_of_week: list[int] = []
    specific_date: date | None = None
    start_time: str
    end_time: str
    description: str = 'Break Time'

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        return _normalize_time(value)

    @field_validator('days_of_week')
    @classmethod
    def validate_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError('Days of week must be between 0 (Monday) and 6 (Sunday).')
        return sorted(set(value))

    @model_validator(mode='after')
    def validate_pattern(self):
        if not self.days_of_week and self.specific_date is None:
            raise ValueError('Either days of week or a specific date must be provided.')
        if self.start_time == self.end_time:
            raise ValueError('End time must differ from start time.')
        return self


class BreakTimeResponse(BaseModel):
    id: int
    doctor_id: int
    days_of_week: list[int] = []
    specific_date: date | None = None
    start_time: str
    end_time: str
    description: str | None = None

    class Config:
        from_attributes = True


def ensure_can_manage(doctor_id: int, current_user: User) -> None:
    if current_user.role == 'admin':
        return
    if current_user.role == 'doctor' and current_user.doctor_id == doctor_id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Only the doctor or an admin can change this schedule.',
    )


def announce_dates(broadcaster: AvailabilityBroadcaster, doctor_id: int, start: date, end: date) -> None:
    today = datetime.now().date()
    first = max(start, today)
    last = min(end, today + timedelta(days=config.BOOKING_HORIZON_DAYS))

    current = first
    while current <= last:
        broadcaster.publish(AvailabilityChangedEvent(doctor_id, current))
        current += timedelta(days=1)


def _load_doctor(db: Session, doctor_id: int) -> None:
    try:
        availability.get_active_doctor(db, doctor_id)
    except availability.DoctorNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_detail('not_found', 'Doctor not found.'),
        ) from exc


@router.get('/{doctor_id}/unavailability', response_model=list[UnavailabilityResponse])
def list_unavailability(
    doctor_id: int,
    current_user: User = Depends(require_roles('doctor', 'admin')),
    db: Session = Depends(get_db),
):
    ensure_can_manage(doctor_id, current_user)
    ensure_database_ready()

    try:
        return db.query(DoctorUnavailability).filter(
            DoctorUnavailability.doctor_id == doctor_id,
            DoctorUnavailability.is_active.is_(True),
        ).order_by(DoctorUnavailability.start_date.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{doctor_id}/unavailability', response_model=UnavailabilityResponse, status_code=status.HTTP_201_CREATED)
def mark_unavailable(
    doctor_id: int,
    data: CreateUnavailabilityRequest,
    current_user: User = Depends(require_roles('doctor', 'admin')),
    db: Session = Depends(get_db),
    broadcaster: AvailabilityBroadcaster = Depends(get_broadcaster),
):
    ensure_can_manage(doctor_id, current_user)
    ensure_database_ready()

    try:
        _load_doctor(db, doctor_id)

        overlapping = db.query(DoctorUnavailability).filter(
            DoctorUnavailability.doctor_id == doctor_id,
            DoctorUnavailability.is_active.is_(True),
            DoctorUnavailability.start_date <= data.end_date,
            DoctorUnavailability.end_date >= data.start_date,
        ).first()
        if overlapping:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Unavailability period overlaps with existing unavailability.',
            )

        unavailability = DoctorUnavailability(
            doctor_id=doctor_id,
            start_date=data.start_date,
            end_date=data.end_date,
            reason=data.reason,
            description=data.description,
            unavailable_times=[time_range.model_dump() for time_range in data.unavailable_times],
            created_by=current_user.id,
            is_active=True,
        )
        db.add(unavailability)
        db.commit()
        db.refresh(unavailability)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    announce_dates(broadcaster, doctor_id, data.start_date, data.end_date)
    return unavailability


@router.delete('/{doctor_id}/unavailability/{unavailability_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_unavailability(
    doctor_id: int,
    unavailability_id: int,
    current_user: User = Depends(require_roles('doctor', 'admin')),
    db: Session = Depends(get_db),
    broadcaster: AvailabilityBroadcaster = Depends(get_broadcaster),
):
    ensure_can_manage(doctor_id, current_user)
    ensure_database_ready()

    try:
        unavailability = db.query(DoctorUnavailability).filter(
            DoctorUnavailability.id == unavailability_id,
            DoctorUnavailability.doctor_id == doctor_id,
            DoctorUnavailability.is_active.is_(True),
        ).first()
        if not unavailability:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Unavailability record not found.',
            )

        unavailability.is_active = False
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    announce_dates(broadcaster, doctor_id, unavailability.start_date, unavailability.end_date)


@router.get('/{doctor_id}/break-times', response_model=list[BreakTimeResponse])
def list_break_times(
    doctor_id: int,
    current_user: User = Depends(require_roles('doctor', 'admin')),
    db: Session = Depends(get_db),
):
    ensure_can_manage(doctor_id, current_user)
    ensure_database_ready()

    try:
        return db.query(DoctorBreakTime).filter(
            DoctorBreakTime.doctor_id == doctor_id,
            DoctorBreakTime.is_active.is_(True),
        ).order_by(DoctorBreakTime.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{doctor_id}/break-times', response_model=BreakTimeResponse, status_code=status.HTTP_201_CREATED)
def add_break_time(
    doctor_id: int,
    data: CreateBreakTimeRequest,
    current_user: User = Depends(require_roles('doctor', 'admin')),
    db: Session = Depends(get_db),
    broadcaster: AvailabilityBroadcaster = Depends(get_broadcaster),
):
    ensure_can_manage(doctor_id, current_user)
    ensure_database_ready()

    try:
        _load_doctor(db, doctor_id)

        break_time = DoctorBreakTime(
            doctor_id=doctor_id,
            days_of_week=data.days_of_week,
            specific_date=data.specific_date,
            start_time=data.start_time,
            end_time=data.end_time,
            description=data.description,
            is_active=True,
        )
        db.add(break_time)
        db.commit()
        db.refresh(break_time)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    if data.specific_date is not None:
        announce_dates(broadcaster, doctor_id, data.specific_date, data.specific_date)
    return break_time


@router.delete('/{doctor_id}/break-times/{break_time_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_break_time(
    doctor_id: int,
    break_time_id: int,
    current_user: User = Depends(require_roles('doctor', 'admin')),
    db: Session = Depends(get_db),
    broadcaster: AvailabilityBroadcaster = Depends(get_broadcaster),
):
    ensure_can_manage(doctor_id, current_user)
    ensure_database_ready()

    try:
        break_time = db.query(DoctorBreakTime).filter(
            DoctorBreakTime.id == break_time_id,
            DoctorBreakTime.doctor_id == doctor_id,
            DoctorBreakTime.is_active.is_(True),
        ).first()
        if not break_time:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Break time record not found.',
            )

        break_time.is_active = False
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    if break_time.specific_date is not None:
        announce_dates(broadcaster, doctor_id, break_time.specific_date, break_time.specific_date)
