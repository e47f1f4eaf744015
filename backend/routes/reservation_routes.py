from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, require_roles
from backend.database import get_db
from backend.models.reservation import Reservation
from backend.models.user import User
from backend.routes.common import database_unavailable, ensure_database_ready, error_detail
from backend.services.availability import DoctorNotFound
from backend.services.registry import get_coordinator
from backend.services.reservations import (
    BookingRejected,
    InvalidTransition,
    RejectionCode,
    ReservationCoordinator,
    ReservationNotFound,
    ReservationPermissionError,
)

router = APIRouter(tags=['reservations'])

REJECTION_STATUS_CODES = {
    RejectionCode.INVALID: status.HTTP_400_BAD_REQUEST,
    RejectionCode.DOCTOR_UNAVAILABLE: status.HTTP_409_CONFLICT,
    RejectionCode.SLOT_TAKEN: status.HTTP_409_CONFLICT,
    RejectionCode.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
}


class CreateReservationRequest(BaseModel):
    doctor_id: int
    date: date
    slot: str
    reason: str | None = None

    @field_validator('slot')
    @classmethod
    def validate_slot(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('A time slot is required.')
        return normalized


class CancelReservationRequest(BaseModel):
    reason: str | None = None


class ReservationResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    date: date
    slot: str
    reason: str | None = None
    status: str
    cancellation_reason: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


def rejection_to_http(exc: BookingRejected) -> HTTPException:
    extra = {}
    headers = None
    if exc.retry_after is not None:
        extra['retry_after'] = exc.retry_after
        headers = {'Retry-After': str(exc.retry_after)}

    return HTTPException(
        status_code=REJECTION_STATUS_CODES[exc.code],
        detail=error_detail(exc.code.value, exc.message, **extra),
        headers=headers,
    )


@router.post('', response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_reservation(
    data: CreateReservationRequest,
    current_user: User = Depends(require_roles('patient')),
    db: Session = Depends(get_db),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    ensure_database_ready()

    try:
        return coordinator.book(
            db,
            doctor_id=data.doctor_id,
            slot_date=data.date,
            slot=data.slot,
            patient_id=current_user.id,
            reason=data.reason,
        )
    except BookingRejected as exc:
        raise rejection_to_http(exc) from exc
    except DoctorNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_detail('not_found', 'Doctor not found.'),
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/mine', response_model=list[ReservationResponse])
def list_my_reservations(
    include_cancelled: bool = Query(default=True),
    current_user: User = Depends(require_roles('patient')),
    db: Session = Depends(get_db),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    ensure_database_ready()

    try:
        return coordinator.list_for_patient(db, current_user.id, include_cancelled=include_cancelled)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def _apply_transition(action, db: Session) -> Reservation:
    try:
        return action()
    except ReservationNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ReservationPermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except InvalidTransition as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{reservation_id}/cancel', response_model=ReservationResponse)
def cancel_reservation(
    reservation_id: int,
    data: CancelReservationRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    ensure_database_ready()
    reason = data.reason if data else None
    return _apply_transition(lambda: coordinator.cancel(db, reservation_id, current_user, reason), db)


@router.put('/{reservation_id}/confirm', response_model=ReservationResponse)
def confirm_reservation(
    reservation_id: int,
    current_user: User = Depends(require_roles('doctor', 'admin')),
    db: Session = Depends(get_db),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    ensure_database_ready()
    return _apply_transition(lambda: coordinator.confirm(db, reservation_id, current_user), db)
