from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.database import get_db
from backend.models.doctor import Doctor, WorkingHours
from backend.routes.common import database_unavailable, ensure_database_ready, error_detail
from backend.services import availability

router = APIRouter(tags=['availability'])


class SlotsResponse(BaseModel):
    success: bool
    doctor_id: int
    date: date
    slots: list[str]
    message: str | None = None


class DoctorResponse(BaseModel):
    id: int
    name: str
    specialization: str | None = None

    class Config:
        from_attributes = True


class WorkingHoursResponse(BaseModel):
    weekday: int
    slots: list[str]
    is_closed: bool

    class Config:
        from_attributes = True


@router.get('/slots', response_model=SlotsResponse)
def list_available_slots(
    doctor_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = availability.resolve(db, doctor_id, slot_date)
    except availability.DoctorNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_detail('not_found', 'Doctor not found.'),
        ) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return SlotsResponse(
        success=True,
        doctor_id=result.doctor_id,
        date=result.date,
        slots=list(result.slots),
        message=result.reason,
    )


@router.get('/doctors', response_model=list[DoctorResponse])
def list_doctors(db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return db.query(Doctor).filter(Doctor.is_active.is_(True)).order_by(Doctor.name.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctors/{doctor_id}/working-hours', response_model=list[WorkingHoursResponse])
def list_working_hours(doctor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        availability.get_active_doctor(db, doctor_id)
        return db.query(WorkingHours).filter(
            WorkingHours.doctor_id == doctor_id,
        ).order_by(WorkingHours.weekday.asc()).all()
    except availability.DoctorNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_detail('not_found', 'Doctor not found.'),
        ) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
