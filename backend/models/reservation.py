"""Reservation model definitions."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.sql import func

from backend.database import Base

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_CANCELLED = "cancelled"
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)


class Reservation(Base):
    """A patient's hold on one doctor/date/slot."""
    __tablename__ = "reservations"
    __table_args__ = (
        # One non-cancelled reservation per slot, enforced by the store itself.
        Index(
            "uq_reservations_active_slot",
            "doctor_id",
            "date",
            "slot",
            unique=True,
            sqlite_where=text("status <> 'cancelled'"),
            postgresql_where=text("status <> 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    slot = Column(String, nullable=False)
    reason = Column(String)
    status = Column(String, nullable=False, default=STATUS_PENDING)
    cancellation_reason = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
