from fastapi import Header, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from clinicbook.database import SessionLocal, ensure_booking_schema
from clinicbook.notifications import NotificationDispatcher
from clinicbook.payments.gateway import PaymentGateway, PixBillingGateway
from clinicbook.scheduling.entities import BookingContext
from clinicbook.scheduling.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PaymentProviderError,
    SchedulingError,
    ValidationError,
)
from clinicbook.scheduling.events import BookingChangeFeed

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

change_feed = BookingChangeFeed()
notifier = NotificationDispatcher()


def ensure_database_ready() -> None:
    try:
        ensure_booking_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_change_feed() -> BookingChangeFeed:
    return change_feed


def get_notifier() -> NotificationDispatcher:
    return notifier


def get_payment_gateway() -> PaymentGateway:
    return PixBillingGateway()


def get_booking_context(
    x_visitor_id: str | None = Header(default=None),
    x_booking_channel: str | None = Header(default=None),
    x_onboarding_completed: str | None = Header(default=None),
) -> BookingContext:
    return BookingContext(
        visitor_id=(x_visitor_id or '').strip() or None,
        channel=(x_booking_channel or 'web').strip().lower() or 'web',
        onboarding_completed=(x_onboarding_completed or '').strip().lower() in {'1', 'true', 'yes'},
    )


def to_http_exception(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, ValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (ConflictError, InvalidTransitionError)):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, PaymentProviderError):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=status_code, detail=exc.message)


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )
