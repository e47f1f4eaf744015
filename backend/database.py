from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_reservation_schema_checked = False
_schedule_schema_checked = False

ACTIVE_SLOT_INDEX_STATEMENT = (
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_reservations_active_slot "
    "ON reservations(doctor_id, date, slot) WHERE status <> 'cancelled'"
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_reservation_schema(bind=None) -> None:
    global _reservation_schema_checked

    if _reservation_schema_checked and bind is None:
        return

    with _schema_lock:
        if _reservation_schema_checked and bind is None:
            return

        target = bind or engine
        inspector = inspect(target)

        if 'reservations' not in inspector.get_table_names():
            _reservation_schema_checked = bind is None
            return

        existing_columns = {column['name'] for column in inspector.get_columns('reservations')}
        migration_steps = [
            ('reason', 'ALTER TABLE reservations ADD COLUMN reason VARCHAR'),
            ('cancellation_reason', 'ALTER TABLE reservations ADD COLUMN cancellation_reason VARCHAR'),
            ('updated_at', 'ALTER TABLE reservations ADD COLUMN updated_at TIMESTAMP'),
        ]

        with target.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(text(ACTIVE_SLOT_INDEX_STATEMENT))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_reservations_doctor_date ON reservations(doctor_id, date)')
            )

        if bind is None:
            _reservation_schema_checked = True


def ensure_schedule_schema(bind=None) -> None:
    global _schedule_schema_checked

    if _schedule_schema_checked and bind is None:
        return

    with _schema_lock:
        if _schedule_schema_checked and bind is None:
            return

        target = bind or engine
        inspector = inspect(target)
        table_names = set(inspector.get_table_names())

        with target.begin() as connection:
            if 'doctor_unavailability' in table_names:
                existing_columns = {column['name'] for column in inspector.get_columns('doctor_unavailability')}
                if 'unavailable_times' not in existing_columns:
                    connection.execute(text('ALTER TABLE doctor_unavailability ADD COLUMN unavailable_times JSON'))
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_unavailability_doctor_range '
                        'ON doctor_unavailability(doctor_id, start_date, end_date)'
                    )
                )
            if 'doctor_break_times' in table_names:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_break_times_doctor ON doctor_break_times(doctor_id, is_active)')
                )

        if bind is None:
            _schedule_schema_checked = True
