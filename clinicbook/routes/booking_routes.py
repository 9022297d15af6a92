import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinicbook.notifications import NotificationDispatcher
from clinicbook.payments.gateway import PaymentGateway
from clinicbook.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_booking_context,
    get_change_feed,
    get_db,
    get_notifier,
    get_payment_gateway,
    to_http_exception,
)
from clinicbook.scheduling.booking_guard import BookingGuard, PaymentEventKind
from clinicbook.scheduling.entities import Booking, BookingContext, PatientInfo
from clinicbook.scheduling.errors import SchedulingError
from clinicbook.scheduling.events import BookingChangeFeed
from clinicbook.scheduling.store import SqlAlchemyScheduleStore

router = APIRouter(tags=['bookings'])

logger = logging.getLogger(__name__)

MAX_BOOKING_NOTES_LENGTH = 600


class CreateBookingRequest(BaseModel):
    provider_id: str
    date: date
    time: time
    patient_name: str
    patient_email: str | None = None
    patient_phone: str | None = None
    amount_cents: int
    service_name: str = 'Appointment'
    notes: str | None = None

    @field_validator('provider_id', 'patient_name', 'service_name')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Field is required.')
        return normalized

    @field_validator('patient_email')
    @classmethod
    def validate_patient_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if not normalized:
            return None
        if '@' not in normalized:
            raise ValueError('Invalid patient email.')
        return normalized

    @field_validator('patient_phone')
    @classmethod
    def validate_patient_phone(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator('amount_cents')
    @classmethod
    def validate_amount(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Amount must be positive.')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_BOOKING_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_BOOKING_NOTES_LENGTH} characters or fewer.')

        return normalized

    @model_validator(mode='after')
    def validate_contact(self):
        if not self.patient_email and not self.patient_phone:
            raise ValueError('Patient email or phone is required.')
        return self


class BookingResponse(BaseModel):
    id: int
    provider_id: str
    date: date
    time: time
    patient_name: str
    patient_email: str | None = None
    patient_phone: str | None = None
    status: str
    payment_status: str
    amount_cents: int
    created_at: datetime
    patient_confirmed_at: datetime | None = None


class PaymentResponse(BaseModel):
    reference: str
    url: str | None = None
    pix_code: str | None = None
    pix_qr_code: str | None = None
    expires_at: datetime | None = None


class CreateBookingResponse(BaseModel):
    booking: BookingResponse
    payment: PaymentResponse
    reclaimed_booking_ids: list[int]


class PaymentEventRequest(BaseModel):
    event: PaymentEventKind
    booking_id: int | None = None
    reference: str | None = None

    @field_validator('event', mode='before')
    @classmethod
    def normalize_event(cls, value):
        if isinstance(value, str):
            normalized = value.strip().lower()
            for prefix in ('billing.', 'billing_'):
                if normalized.startswith(prefix):
                    normalized = normalized[len(prefix):]
            return normalized
        return value


class ExpireStaleResponse(BaseModel):
    expired_booking_ids: list[int]


def to_booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        provider_id=booking.provider_id,
        date=booking.date,
        time=booking.time,
        patient_name=booking.patient_name,
        patient_email=booking.patient_email,
        patient_phone=booking.patient_phone,
        status=booking.status.value,
        payment_status=booking.payment_status.value,
        amount_cents=booking.amount_cents,
        created_at=booking.created_at,
        patient_confirmed_at=booking.patient_confirmed_at,
    )


@router.post('', response_model=CreateBookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: CreateBookingRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    feed: BookingChangeFeed = Depends(get_change_feed),
    notifier: NotificationDispatcher = Depends(get_notifier),
    context: BookingContext = Depends(get_booking_context),
):
    ensure_database_ready()

    guard = BookingGuard(SqlAlchemyScheduleStore(db), gateway, feed, notifier)
    try:
        result = guard.attempt_booking(
            data.provider_id,
            data.date,
            data.time,
            PatientInfo(
                name=data.patient_name,
                email=data.patient_email,
                phone=data.patient_phone,
                notes=data.notes,
            ),
            data.amount_cents,
            description=data.service_name,
            context=context,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    payment = result.payment
    return CreateBookingResponse(
        booking=to_booking_response(result.booking),
        payment=PaymentResponse(
            reference=payment.reference,
            url=payment.url,
            pix_code=payment.pix_code,
            pix_qr_code=payment.pix_qr_code,
            expires_at=payment.expires_at,
        ),
        reclaimed_booking_ids=[record.booking_id for record in result.reclaimed],
    )


@router.post('/payment-events', response_model=BookingResponse)
def receive_payment_event(
    data: PaymentEventRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    feed: BookingChangeFeed = Depends(get_change_feed),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    ensure_database_ready()

    logger.info('Payment event %s booking=%s reference=%s', data.event.value, data.booking_id, data.reference)
    guard = BookingGuard(SqlAlchemyScheduleStore(db), gateway, feed, notifier)
    try:
        booking = guard.apply_payment_event(data.event, booking_id=data.booking_id, reference=data.reference)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return to_booking_response(booking)


@router.post('/expire-stale', response_model=ExpireStaleResponse)
def expire_stale_bookings(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    feed: BookingChangeFeed = Depends(get_change_feed),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    ensure_database_ready()

    guard = BookingGuard(SqlAlchemyScheduleStore(db), gateway, feed, notifier)
    try:
        reclaimed = guard.expire_stale_reservations()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return ExpireStaleResponse(expired_booking_ids=[record.booking_id for record in reclaimed])


@router.post('/{booking_id}/verify-payment', response_model=BookingResponse)
def verify_payment(
    booking_id: int,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    feed: BookingChangeFeed = Depends(get_change_feed),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    ensure_database_ready()

    guard = BookingGuard(SqlAlchemyScheduleStore(db), gateway, feed, notifier)
    try:
        booking = guard.verify_payment(booking_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return to_booking_response(booking)
