from datetime import date, datetime, time

from clinicbook.payments.gateway import PaymentIntent
from clinicbook.scheduling.entities import Booking, BookingStatus, PaymentStatus
from clinicbook.scheduling.errors import PaymentProviderError

PROVIDER_ID = 'prov-1'
MONDAY = date(2026, 1, 5)
NOW = datetime(2026, 1, 5, 7, 0)


def fixed_clock(value: datetime = NOW):
    return lambda: value


class FakeGateway:
    def __init__(self, payment_status: PaymentStatus = PaymentStatus.PENDING):
        self.calls: list[tuple[int, str]] = []
        self.payment_status = payment_status
        self.status_lookups: list[str] = []

    def create_payment_intent(self, booking: Booking, description: str) -> PaymentIntent:
        self.calls.append((booking.id, description))
        return PaymentIntent(
            reference=f'bill_{booking.id}',
            url=f'https://pay.example.com/bill_{booking.id}',
            pix_code='00020126PIX',
        )

    def get_payment_status(self, reference: str) -> PaymentStatus:
        self.status_lookups.append(reference)
        return self.payment_status


class FailingGateway:
    def __init__(self, error: Exception | None = None):
        self.error = error or PaymentProviderError('Payment provider unavailable. Please try again.')
        self.calls = 0

    def create_payment_intent(self, booking: Booking, description: str) -> PaymentIntent:
        self.calls += 1
        raise self.error

    def get_payment_status(self, reference: str) -> PaymentStatus:
        self.calls += 1
        raise self.error


class RecordingSender:
    def __init__(self):
        self.sent = []

    def __call__(self, notification) -> None:
        self.sent.append(notification)


def add_booking(
    store,
    at_time: time,
    status: BookingStatus = BookingStatus.PENDING,
    *,
    on_date: date = MONDAY,
    created_at: datetime | None = None,
    provider_id: str = PROVIDER_ID,
    patient_name: str = 'Maria Silva',
) -> Booking:
    booking = store.insert_booking(
        provider_id=provider_id,
        on_date=on_date,
        at_time=at_time,
        patient_name=patient_name,
        patient_email='maria@example.com',
        patient_phone='11987654321',
        amount_cents=15000,
        created_at=created_at or NOW,
    )
    if status is not BookingStatus.PENDING:
        booking = store.update_booking_status(booking.id, status)
    return booking
