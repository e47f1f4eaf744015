import os
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from backend.auth.jwt_handler import create_access_token  # noqa: E402
from backend.database import Base, get_db  # noqa: E402
from backend.main import app  # noqa: E402
from backend.models.doctor import Doctor, WorkingHours  # noqa: E402
from backend.models.user import User  # noqa: E402
from backend.services.broadcast import AvailabilityBroadcaster  # noqa: E402
from backend.services.registry import get_broadcaster, get_coordinator  # noqa: E402
from backend.services.reservations import ReservationCoordinator  # noqa: E402
from backend.services.throttle import SubmissionThrottle  # noqa: E402

MONDAY_SLOTS = ['09:00', '09:30', '10:00']
ROUTE_MODULES = (
    'backend.routes.availability_routes',
    'backend.routes.reservation_routes',
    'backend.routes.schedule_routes',
)


def next_weekday(weekday: int, today: date | None = None) -> date:
    today = today or date.today()
    days_ahead = (weekday - today.weekday()) % 7 or 7
    return today + timedelta(days=days_ahead)


@pytest.fixture
def engine(tmp_path):
    # File-backed so worker threads each get a real connection.
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'booking.db'}",
        connect_args={'check_same_thread': False},
    )
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def doctor(db) -> Doctor:
    record = Doctor(name='Dr. Amelia Santos', specialization='General Medicine', is_active=True)
    db.add(record)
    db.flush()
    db.add(WorkingHours(doctor_id=record.id, weekday=0, slots=list(MONDAY_SLOTS), is_closed=False))
    db.add(WorkingHours(doctor_id=record.id, weekday=6, slots=[], is_closed=True))
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture
def monday() -> date:
    return next_weekday(0)


@pytest.fixture
def sunday() -> date:
    return next_weekday(6)


@pytest.fixture
def make_user(db):
    def _make_user(email: str, role: str = 'patient', doctor_id: int | None = None) -> User:
        user = User(email=email, name=email.split('@')[0], role=role, doctor_id=doctor_id)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def broadcaster() -> AvailabilityBroadcaster:
    return AvailabilityBroadcaster(queue_size=10)


@pytest.fixture
def coordinator(broadcaster) -> ReservationCoordinator:
    return ReservationCoordinator(broadcaster, throttle=SubmissionThrottle(0))


@pytest.fixture
def client(session_factory, broadcaster, coordinator, monkeypatch: pytest.MonkeyPatch):
    for module in ROUTE_MODULES:
        monkeypatch.setattr(f'{module}.ensure_database_ready', lambda: None)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_header():
    def _auth_header(user: User) -> dict:
        return {'Authorization': f'Bearer {create_access_token(user.email)}'}

    return _auth_header
