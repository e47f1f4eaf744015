import os

from dotenv import load_dotenv

load_dotenv()

def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medislot.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOWED_ORIGINS = _get_list(
    os.getenv("CORS_ALLOWED_ORIGINS"),
    ["http://localhost:4200", "http://localhost:5173"],
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Booking
SLOT_DURATION_MINUTES = int(os.getenv("SLOT_DURATION_MINUTES", "30"))
BOOKING_COOLDOWN_SECONDS = float(os.getenv("BOOKING_COOLDOWN_SECONDS", "5"))
BOOKING_HORIZON_DAYS = int(os.getenv("BOOKING_HORIZON_DAYS", "60"))
MAX_REASON_LENGTH = int(os.getenv("MAX_REASON_LENGTH", "600"))

# Push channel
EVENT_QUEUE_SIZE = int(os.getenv("EVENT_QUEUE_SIZE", "100"))
EVENT_STREAM_KEEPALIVE_SECONDS = float(os.getenv("EVENT_STREAM_KEEPALIVE_SECONDS", "15"))

# Default schedule used by the seed script
DEFAULT_DAY_START = os.getenv("DEFAULT_DAY_START", "08:00")
DEFAULT_DAY_END = os.getenv("DEFAULT_DAY_END", "17:00")


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if SLOT_DURATION_MINUTES <= 0:
        raise RuntimeError("SLOT_DURATION_MINUTES must be positive.")
    if BOOKING_COOLDOWN_SECONDS < 0:
        raise RuntimeError("BOOKING_COOLDOWN_SECONDS cannot be negative.")
