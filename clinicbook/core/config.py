import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: str) -> list[str]:
    raw = value if value is not None else default
    return [item.strip() for item in raw.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinicbook.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), "http://localhost:5173")

STALE_RESERVATION_MINUTES = int(os.getenv("STALE_RESERVATION_MINUTES", "15"))
DEFAULT_SLOT_DURATION_MINUTES = int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES", "30"))

PAYMENT_API_URL = os.getenv("PAYMENT_API_URL", "https://api.abacatepay.com/v1")
PAYMENT_API_KEY = os.getenv("PAYMENT_API_KEY", "")
PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "30"))
PAYMENT_METHODS = _get_list(os.getenv("PAYMENT_METHODS"), "PIX")

PUBLIC_APP_URL = os.getenv("PUBLIC_APP_URL", "http://localhost:5173")

LINK_TOKEN_SECRET = os.getenv("LINK_TOKEN_SECRET", "change-me")
LINK_TOKEN_ALGORITHM = os.getenv("LINK_TOKEN_ALGORITHM", "HS256")
LINK_TOKEN_EXPIRES_HOURS = int(os.getenv("LINK_TOKEN_EXPIRES_HOURS", "168"))

CLINIC_WHATSAPP_PHONE = os.getenv("CLINIC_WHATSAPP_PHONE", "")

def validate_runtime_config() -> None:
    if APP_ENV.lower() != "production":
        return
    if LINK_TOKEN_SECRET == "change-me":
        raise RuntimeError("LINK_TOKEN_SECRET must be set in production.")
    if not PAYMENT_API_KEY:
        raise RuntimeError("PAYMENT_API_KEY must be set in production.")
