"""Provider worklist of open booking requests and the accept/reject/propose mutations."""

import logging
from collections.abc import Callable
from datetime import date, datetime, time

from clinicbook.auth.link_tokens import InvalidLinkToken, decode_link_token
from clinicbook.notifications import NotificationDispatcher, NotificationKind
from clinicbook.scheduling.entities import (
    OPEN_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    PaymentStatus,
    SlotStatus,
)
from clinicbook.scheduling.errors import (
    ConflictError,
    DuplicateSlotError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from clinicbook.scheduling.events import BookingChangeFeed, ChangeHandler, ChangeKind
from clinicbook.scheduling.slots import find_slot
from clinicbook.scheduling.store import SqlAlchemyScheduleStore

logger = logging.getLogger(__name__)


class RequestLifecycleManager:
    def __init__(
        self,
        store: SqlAlchemyScheduleStore,
        feed: BookingChangeFeed | None = None,
        notifier: NotificationDispatcher | None = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.feed = feed or BookingChangeFeed()
        self.notifier = notifier or NotificationDispatcher()
        self.clock = clock

    def list_open_requests(self, provider_id: str) -> list[Booking]:
        today = self.clock().date()
        return self.store.list_bookings(provider_id, OPEN_BOOKING_STATUSES, from_date=today)

    def subscribe(self, provider_id: str, on_change: ChangeHandler) -> Callable[[], None]:
        return self.feed.subscribe(provider_id, on_change)

    def accept(self, booking_id: int) -> Booking:
        booking = self._require_booking(booking_id)

        if booking.status is BookingStatus.CONFIRMED:
            return booking
        if booking.status not in OPEN_BOOKING_STATUSES:
            raise InvalidTransitionError(f'Cannot accept a {booking.status.value} booking.')

        try:
            confirmed = self.store.update_booking_status(booking_id, BookingStatus.CONFIRMED)
        except DuplicateSlotError as exc:
            raise ConflictError() from exc

        logger.info('Booking %s accepted', booking_id)
        self.feed.publish(ChangeKind.STATUS_CHANGED, confirmed)
        self.notifier.dispatch(confirmed, NotificationKind.CONFIRMED)
        return confirmed

    def reject(self, booking_id: int) -> Booking:
        booking = self._require_booking(booking_id)

        if booking.status is BookingStatus.CANCELLED:
            return booking
        if booking.status not in OPEN_BOOKING_STATUSES:
            raise InvalidTransitionError(f'Cannot reject a {booking.status.value} booking.')

        cancelled = self.store.update_booking_status(booking_id, BookingStatus.CANCELLED, PaymentStatus.CANCELLED)

        logger.info('Booking %s rejected', booking_id)
        self.feed.publish(ChangeKind.STATUS_CHANGED, cancelled)
        self.notifier.dispatch(cancelled, NotificationKind.CANCELLED)
        return cancelled

    def propose_new_time(self, booking_id: int, new_time: time, new_date: date | None = None) -> Booking:
        """Move an open booking to new coordinates, keeping its status.

        The old slot is freed as a side effect since slot status is derived from
        the booking's current coordinates.
        """
        if new_time is None:
            raise ValidationError('New time is required.')

        booking = self._require_booking(booking_id)
        if booking.status not in OPEN_BOOKING_STATUSES:
            raise InvalidTransitionError(f'Cannot propose a new time for a {booking.status.value} booking.')

        target_date = new_date or booking.date
        target_time = new_time.replace(second=0, microsecond=0, tzinfo=None)

        if target_date == booking.date and target_time == booking.time:
            return booking

        if datetime.combine(target_date, target_time) <= self.clock():
            raise ValidationError('Proposed time must be in the future.')

        slot = find_slot(self.store, booking.provider_id, target_date, target_time)
        if slot is None:
            raise ValidationError('This time is not offered on the selected date.')
        if slot.status is SlotStatus.BLOCKED:
            raise ConflictError('This time is blocked by the provider.')
        if slot.status is not SlotStatus.AVAILABLE:
            raise ConflictError()

        try:
            moved = self.store.update_booking_time(
                booking_id,
                target_time,
                target_date if new_date is not None else None,
            )
        except DuplicateSlotError as exc:
            raise ConflictError() from exc

        logger.info(
            'Booking %s moved from %s %s to %s %s',
            booking_id,
            booking.date,
            booking.time.strftime('%H:%M'),
            moved.date,
            moved.time.strftime('%H:%M'),
        )
        self.feed.publish(ChangeKind.TIME_CHANGED, moved)
        self.notifier.dispatch(moved, NotificationKind.RESCHEDULED)
        return moved

    def get_by_link_token(self, token: str) -> Booking:
        try:
            booking_id = decode_link_token(token)
        except InvalidLinkToken as exc:
            raise ValidationError(str(exc)) from exc
        return self._require_booking(booking_id)

    def confirm_attendance(self, token: str) -> Booking:
        booking = self.get_by_link_token(token)

        if booking.patient_confirmed_at is not None:
            return booking
        if booking.status is BookingStatus.CANCELLED:
            raise InvalidTransitionError('This appointment was cancelled.')

        confirmed = self.store.mark_patient_confirmed(booking.id, self.clock())
        logger.info('Patient confirmed attendance for booking %s', booking.id)
        self.feed.publish(ChangeKind.PATIENT_CONFIRMED, confirmed)
        return confirmed

    def _require_booking(self, booking_id: int) -> Booking:
        booking = self.store.get_booking(booking_id)
        if booking is None:
            raise NotFoundError('Booking not found.')
        return booking
