"""Seed the doctor directory with a default weekday schedule.

Usage: python -m backend.seed
"""

import logging

from backend.core import config
from backend.database import Base, SessionLocal, engine, ensure_reservation_schema, ensure_schedule_schema
from backend.models.doctor import Doctor, WorkingHours
from backend.models.reservation import Reservation  # noqa: F401
from backend.models.user import User
from backend.services.slot_labels import build_slot_labels

logger = logging.getLogger(__name__)

SAMPLE_DOCTORS = [
    ('Dr. Amelia Santos', 'General Medicine', 'amelia.santos@clinic.example'),
    ('Dr. Rafael Cruz', 'Pediatrics', 'rafael.cruz@clinic.example'),
    ('Dr. Hannah Lee', 'Cardiology', 'hannah.lee@clinic.example'),
]
WORKING_WEEKDAYS = range(0, 5)


def default_schedule() -> list[str]:
    return build_slot_labels(config.DEFAULT_DAY_START, config.DEFAULT_DAY_END, config.SLOT_DURATION_MINUTES)


def seed(db) -> int:
    created = 0
    labels = default_schedule()

    for name, specialization, email in SAMPLE_DOCTORS:
        if db.query(User).filter(User.email == email).first():
            continue

        doctor = Doctor(name=name, specialization=specialization, is_active=True)
        db.add(doctor)
        db.flush()

        db.add(User(email=email, name=name, role='doctor', doctor_id=doctor.id))
        for weekday in range(7):
            db.add(WorkingHours(
                doctor_id=doctor.id,
                weekday=weekday,
                slots=labels if weekday in WORKING_WEEKDAYS else [],
                is_closed=weekday not in WORKING_WEEKDAYS,
            ))
        created += 1

    db.commit()
    return created


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    Base.metadata.create_all(bind=engine)
    ensure_reservation_schema()
    ensure_schedule_schema()

    db = SessionLocal()
    try:
        created = seed(db)
    finally:
        db.close()

    logger.info('Seeded %d doctor(s).', created)


if __name__ == '__main__':
    main()
