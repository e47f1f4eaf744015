import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.database import Base, engine, ensure_reservation_schema, ensure_schedule_schema
from backend.models import doctor, reservation, user  # noqa: F401
from backend.routes import availability_routes, event_routes, reservation_routes, schedule_routes

app = FastAPI(title='MediSlot Booking API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_reservation_schema()
        ensure_schedule_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Booking API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(reservation_routes.router, prefix='/reservations')
app.include_router(schedule_routes.router, prefix='/doctors')
app.include_router(event_routes.router, prefix='/events')
