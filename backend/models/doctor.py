"""Doctor directory and schedule configuration models."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.sql import func

from backend.database import Base


class Doctor(Base):
    """Represents a doctor listed in the directory."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    specialization = Column(String)
    is_active = Column(Boolean, default=True)


class WorkingHours(Base):
    """Bookable slot labels for one doctor on one weekday (Monday is 0)."""
    __tablename__ = "working_hours"
    __table_args__ = (UniqueConstraint("doctor_id", "weekday", name="uq_working_hours_doctor_weekday"),)

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)
    slots = Column(JSON, nullable=False, default=list)
    is_closed = Column(Boolean, default=False)


class DoctorUnavailability(Base):
    """A date range during which a doctor is away, wholly or for some hours."""
    __tablename__ = "doctor_unavailability"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    reason = Column(String, nullable=False, default="other")
    description = Column(String, default="")
    # [{"start_time": "HH:MM", "end_time": "HH:MM"}]; empty means the whole day
    unavailable_times = Column(JSON, default=list)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())


class DoctorBreakTime(Base):
    """A recurring (by weekday) or one-off break in a doctor's day."""
    __tablename__ = "doctor_break_times"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    days_of_week = Column(JSON, default=list)
    specific_date = Column(Date, nullable=True)
    start_time = Column(String, nullable=False)
    end_time = Column(String, nullable=False)
    description = Column(String, default="Break Time")
    is_active = Column(Boolean, default=True)
