from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from backend.database import ensure_reservation_schema, ensure_schedule_schema

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def ensure_database_ready() -> None:
    try:
        ensure_reservation_schema()
        ensure_schedule_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def error_detail(code: str, message: str, **extra) -> dict:
    return {'success': False, 'code': code, 'message': message, **extra}
