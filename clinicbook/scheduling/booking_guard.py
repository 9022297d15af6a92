"""Booking conflict guard.

A booking attempt runs, in order:

1. read-only validation (required fields, future time, slot on the provider's grid
   and not blocked),
2. the lazy stale-reservation sweep for the exact slot,
3. the availability re-check,
4. the insert, where the active-slot unique index is the final word on conflicts,
5. payment-intent creation, rolling the booking back to cancelled/failed when the
   provider fails or the payment reference cannot be stored.

Payments can also be verified on demand, for callbacks that never arrived.

There is no in-process locking: two processes racing for the same slot are
separated by the database index, not by this module.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from clinicbook.core import config
from clinicbook.notifications import NotificationDispatcher, NotificationKind
from clinicbook.payments.gateway import PaymentGateway, PaymentIntent
from clinicbook.scheduling.entities import (
    Booking,
    BookingContext,
    BookingStatus,
    PatientInfo,
    PaymentStatus,
    SlotStatus,
)
from clinicbook.scheduling.errors import (
    ConflictError,
    DuplicateSlotError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
)
from clinicbook.scheduling.events import BookingChangeFeed, ChangeKind
from clinicbook.scheduling.slots import find_slot
from clinicbook.scheduling.store import SqlAlchemyScheduleStore

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = 'This time is no longer available. Please choose another time.'
SLOT_BLOCKED_MESSAGE = 'This time is blocked by the provider. Please choose another time.'


@dataclass(frozen=True)
class StaleReservationReclaimed:
    booking_id: int
    provider_id: str
    date: date
    time: time
    created_at: datetime


@dataclass(frozen=True)
class BookingResult:
    booking: Booking
    payment: PaymentIntent
    reclaimed: list[StaleReservationReclaimed] = field(default_factory=list)


class PaymentEventKind(str, Enum):
    PAID = 'paid'
    EXPIRED = 'expired'
    FAILED = 'failed'


PAYMENT_EVENT_TRANSITIONS = {
    PaymentEventKind.PAID: (BookingStatus.CONFIRMED, PaymentStatus.PAID),
    PaymentEventKind.EXPIRED: (BookingStatus.CANCELLED, PaymentStatus.EXPIRED),
    PaymentEventKind.FAILED: (BookingStatus.CANCELLED, PaymentStatus.FAILED),
}

PAYMENT_STATUS_EVENTS = {
    PaymentStatus.PAID: PaymentEventKind.PAID,
    PaymentStatus.EXPIRED: PaymentEventKind.EXPIRED,
    PaymentStatus.FAILED: PaymentEventKind.FAILED,
    PaymentStatus.CANCELLED: PaymentEventKind.FAILED,
}


def normalize_slot_time(value: time) -> time:
    return value.replace(second=0, microsecond=0, tzinfo=None)


def validate_booking_input(
    provider_id: str,
    slot_date: date | None,
    slot_time: time | None,
    patient: PatientInfo | None,
    amount_cents: int | None,
) -> None:
    if not provider_id or not provider_id.strip():
        raise ValidationError('Provider is required.')
    if slot_date is None:
        raise ValidationError('Appointment date is required.')
    if slot_time is None:
        raise ValidationError('Appointment time is required.')
    if patient is None or not (patient.name or '').strip():
        raise ValidationError('Patient name is required.')
    if not (patient.email or '').strip() and not (patient.phone or '').strip():
        raise ValidationError('Patient email or phone is required.')
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValidationError('Amount must be a positive number of cents.')


class BookingGuard:
    def __init__(
        self,
        store: SqlAlchemyScheduleStore,
        gateway: PaymentGateway,
        feed: BookingChangeFeed | None = None,
        notifier: NotificationDispatcher | None = None,
        *,
        stale_after: timedelta = timedelta(minutes=config.STALE_RESERVATION_MINUTES),
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.gateway = gateway
        self.feed = feed or BookingChangeFeed()
        self.notifier = notifier or NotificationDispatcher()
        self.stale_after = stale_after
        self.clock = clock

    def attempt_booking(
        self,
        provider_id: str,
        slot_date: date,
        slot_time: time,
        patient: PatientInfo,
        amount_cents: int,
        *,
        description: str = 'Appointment',
        context: BookingContext | None = None,
    ) -> BookingResult:
        validate_booking_input(provider_id, slot_date, slot_time, patient, amount_cents)

        context = context or BookingContext()
        slot_time = normalize_slot_time(slot_time)
        now = self.clock()

        if datetime.combine(slot_date, slot_time) <= now:
            raise ValidationError('Appointments must be scheduled in the future.')

        slot = find_slot(self.store, provider_id, slot_date, slot_time)
        if slot is None:
            raise ValidationError('This time is not offered on the selected date.')
        if slot.status is SlotStatus.BLOCKED:
            raise ConflictError(SLOT_BLOCKED_MESSAGE)

        logger.info(
            'Booking attempt provider=%s date=%s time=%s visitor=%s channel=%s',
            provider_id,
            slot_date,
            slot_time.strftime('%H:%M'),
            context.visitor_id,
            context.channel,
        )

        reclaimed = self.reclaim_stale_slot(provider_id, slot_date, slot_time, now)

        existing = self.store.find_active_booking(provider_id, slot_date, slot_time)
        if existing is not None:
            logger.info('Slot already reserved by booking %s', existing.id)
            raise ConflictError(SLOT_TAKEN_MESSAGE)

        try:
            booking = self.store.insert_booking(
                provider_id=provider_id,
                on_date=slot_date,
                at_time=slot_time,
                patient_name=patient.name.strip(),
                patient_email=(patient.email or '').strip().lower() or None,
                patient_phone=(patient.phone or '').strip() or None,
                amount_cents=amount_cents,
                notes=patient.notes,
                created_at=now,
            )
        except DuplicateSlotError as exc:
            raise ConflictError(SLOT_TAKEN_MESSAGE) from exc

        logger.info('Booking %s created as pending', booking.id)

        try:
            payment = self.gateway.create_payment_intent(booking, description)
        except Exception as exc:
            self._roll_back_failed_payment(booking)
            if isinstance(exc, PaymentProviderError):
                raise
            raise PaymentProviderError('Could not create the payment. Please try again.') from exc

        try:
            booking = self.store.set_payment_reference(booking.id, payment.reference)
            self.feed.publish(ChangeKind.CREATED, booking)
            self.notifier.dispatch(booking, NotificationKind.NEW)
        except SQLAlchemyError:
            # a pending booking without its reference can never be paid
            self._roll_back_failed_payment(booking)
            raise

        return BookingResult(booking=booking, payment=payment, reclaimed=reclaimed)

    def reclaim_stale_slot(
        self,
        provider_id: str,
        slot_date: date,
        slot_time: time,
        now: datetime,
    ) -> list[StaleReservationReclaimed]:
        expired = self.store.expire_stale_reservations(
            now - self.stale_after,
            provider_id=provider_id,
            on_date=slot_date,
            at_time=slot_time,
        )
        return self._record_reclaimed(expired)

    def expire_stale_reservations(self) -> list[StaleReservationReclaimed]:
        """Sweep every slot at once, for an external scheduler."""
        expired = self.store.expire_stale_reservations(self.clock() - self.stale_after)
        return self._record_reclaimed(expired)

    def apply_payment_event(
        self,
        kind: PaymentEventKind,
        *,
        booking_id: int | None = None,
        reference: str | None = None,
    ) -> Booking:
        if booking_id is None and not reference:
            raise ValidationError('Payment event has no booking identifier.')

        booking = None
        if booking_id is not None:
            booking = self.store.get_booking(booking_id)
        if booking is None and reference:
            booking = self.store.find_booking_by_reference(reference)
        if booking is None:
            raise NotFoundError('Booking not found.')

        status, payment_status = PAYMENT_EVENT_TRANSITIONS[kind]

        if booking.status is status and booking.payment_status is payment_status:
            return booking

        if booking.status is BookingStatus.CANCELLED:
            logger.warning(
                'Ignoring %s payment event for cancelled booking %s (payment %s)',
                kind.value,
                booking.id,
                booking.payment_status.value,
            )
            return booking

        if kind is not PaymentEventKind.PAID and booking.payment_status is PaymentStatus.PAID:
            logger.warning('Ignoring %s payment event for paid booking %s', kind.value, booking.id)
            return booking

        try:
            updated = self.store.update_booking_status(booking.id, status, payment_status)
        except DuplicateSlotError as exc:
            raise ConflictError(SLOT_TAKEN_MESSAGE) from exc

        logger.info('Booking %s payment %s: status=%s', updated.id, kind.value, updated.status.value)
        self.feed.publish(ChangeKind.STATUS_CHANGED, updated)
        self.notifier.dispatch(
            updated,
            NotificationKind.CONFIRMED if kind is PaymentEventKind.PAID else NotificationKind.CANCELLED,
        )
        return updated

    def verify_payment(self, booking_id: int) -> Booking:
        """Ask the provider for the payment status and apply it as a payment event.

        A booking still awaiting payment is returned unchanged.
        """
        booking = self.store.get_booking(booking_id)
        if booking is None:
            raise NotFoundError('Booking not found.')
        if not booking.payment_reference:
            raise ValidationError('Booking has no payment to verify.')

        try:
            provider_status = self.gateway.get_payment_status(booking.payment_reference)
        except PaymentProviderError:
            raise
        except Exception as exc:
            raise PaymentProviderError('Could not verify the payment. Please try again.') from exc

        logger.info('Booking %s payment verified as %s', booking.id, provider_status.value)
        kind = PAYMENT_STATUS_EVENTS.get(provider_status)
        if kind is None:
            return booking
        return self.apply_payment_event(kind, booking_id=booking.id)

    def _record_reclaimed(self,expired: list[Booking]) -> list[StaleReservationReclaimed]:
        reclaimed = []
        for booking in expired:
            record = StaleReservationReclaimed(
                booking_id=booking.id,
                provider_id=booking.provider_id,
                date=booking.date,
                time=booking.time,
                created_at=booking.created_at,
            )
            logger.info(
                'Stale reservation reclaimed: booking=%s provider=%s date=%s time=%s created_at=%s',
                record.booking_id,
                record.provider_id,
                record.date,
                record.time.strftime('%H:%M'),
                record.created_at.isoformat(),
            )
            reclaimed.append(record)
            expired_booking = self.store.get_booking(booking.id)
            if expired_booking is not None:
                self.feed.publish(ChangeKind.EXPIRED, expired_booking)
        return reclaimed

    def _roll_back_failed_payment(self, booking: Booking) -> None:
        try:
            cancelled = self.store.update_booking_status(booking.id, BookingStatus.CANCELLED, PaymentStatus.FAILED)
        except SQLAlchemyError:
            logger.exception('Could not release booking %s after payment failure', booking.id)
            return
        logger.warning('Payment intent failed; booking %s released', booking.id)
        self.feed.publish(ChangeKind.STATUS_CHANGED, cancelled)
