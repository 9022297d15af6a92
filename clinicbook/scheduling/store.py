"""SQLAlchemy-backed schedule, block and booking store.

Rows are mapped to the frozen entities in ``clinicbook.scheduling.entities`` here
so the scheduling components never see ORM objects.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime, time

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinicbook.models.blocked_interval import BlockedIntervalRow
from clinicbook.models.booking import BookingRow
from clinicbook.models.schedule import WeeklyAvailabilityRow
from clinicbook.scheduling.entities import (
    BlockedInterval,
    Booking,
    BookingStatus,
    PaymentStatus,
    WeeklyAvailability,
)
from clinicbook.scheduling.errors import DuplicateSlotError, NotFoundError

logger = logging.getLogger(__name__)

STALE_RESERVATION_NOTE = 'Pending reservation expired automatically (timeout).'


def to_weekly_availability(row: WeeklyAvailabilityRow) -> WeeklyAvailability:
    return WeeklyAvailability(
        id=row.id,
        provider_id=row.provider_id,
        day_of_week=row.day_of_week,
        start_time=row.start_time,
        end_time=row.end_time,
        slot_duration_minutes=row.slot_duration_minutes or 0,
        active=bool(row.active),
    )


def to_blocked_interval(row: BlockedIntervalRow) -> BlockedInterval:
    return BlockedInterval(
        id=row.id,
        provider_id=row.provider_id,
        date=row.date,
        start_time=row.start_time,
        end_time=row.end_time,
        reason=row.reason,
    )


def to_booking(row: BookingRow) -> Booking:
    return Booking(
        id=row.id,
        provider_id=row.provider_id,
        date=row.date,
        time=row.time,
        patient_name=row.patient_name,
        patient_email=row.patient_email,
        patient_phone=row.patient_phone,
        status=BookingStatus(row.status),
        payment_status=PaymentStatus(row.payment_status),
        amount_cents=row.amount_cents,
        created_at=row.created_at,
        notes=row.notes,
        payment_reference=row.payment_reference,
        patient_confirmed_at=row.patient_confirmed_at,
    )


class SqlAlchemyScheduleStore:
    """Read and write interface over one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    # Reads

    def get_active_weekly_availability(self, provider_id: str, day_of_week: int) -> list[WeeklyAvailability]:
        rows = self.db.query(WeeklyAvailabilityRow).filter(
            WeeklyAvailabilityRow.provider_id == provider_id,
            WeeklyAvailabilityRow.day_of_week == day_of_week,
            WeeklyAvailabilityRow.active.is_(True),
        ).order_by(WeeklyAvailabilityRow.start_time.asc()).all()
        return [to_weekly_availability(row) for row in rows]

    def get_weekly_availability(self, row_id: int) -> WeeklyAvailability | None:
        row = self.db.get(WeeklyAvailabilityRow, row_id)
        return to_weekly_availability(row) if row else None

    def get_blocked_intervals(self, provider_id: str, on_date: date) -> list[BlockedInterval]:
        rows = self.db.query(BlockedIntervalRow).filter(
            BlockedIntervalRow.provider_id == provider_id,
            BlockedIntervalRow.date == on_date,
        ).order_by(BlockedIntervalRow.id.asc()).all()
        return [to_blocked_interval(row) for row in rows]

    def list_blocked_intervals(self, provider_id: str, from_date: date) -> list[BlockedInterval]:
        rows = self.db.query(BlockedIntervalRow).filter(
            BlockedIntervalRow.provider_id == provider_id,
            BlockedIntervalRow.date >= from_date,
        ).order_by(BlockedIntervalRow.date.asc(), BlockedIntervalRow.start_time.asc()).all()
        return [to_blocked_interval(row) for row in rows]

    def get_bookings(self, provider_id: str, on_date: date, include_cancelled: bool = False) -> list[Booking]:
        query = self.db.query(BookingRow).filter(
            BookingRow.provider_id == provider_id,
            BookingRow.date == on_date,
        )
        if not include_cancelled:
            query = query.filter(BookingRow.status != BookingStatus.CANCELLED.value)
        rows = query.order_by(BookingRow.time.asc(), BookingRow.id.asc()).all()
        return [to_booking(row) for row in rows]

    def get_booking(self, booking_id: int) -> Booking | None:
        row = self.db.get(BookingRow, booking_id)
        return to_booking(row) if row else None

    def find_booking_by_reference(self, reference: str) -> Booking | None:
        row = self.db.query(BookingRow).filter(BookingRow.payment_reference == reference).first()
        return to_booking(row) if row else None

    def find_active_booking(
        self,
        provider_id: str,
        on_date: date,
        at_time: time,
        exclude_id: int | None = None,
    ) -> Booking | None:
        query = self.db.query(BookingRow).filter(
            BookingRow.provider_id == provider_id,
            BookingRow.date == on_date,
            BookingRow.time == at_time,
            BookingRow.status != BookingStatus.CANCELLED.value,
        )
        if exclude_id is not None:
            query = query.filter(BookingRow.id != exclude_id)
        row = query.first()
        return to_booking(row) if row else None

    def list_bookings(
        self,
        provider_id: str,
        statuses: Iterable[BookingStatus],
        from_date: date,
    ) -> list[Booking]:
        rows = self.db.query(BookingRow).filter(
            BookingRow.provider_id == provider_id,
            BookingRow.status.in_([status.value for status in statuses]),
            BookingRow.date >= from_date,
        ).order_by(BookingRow.date.asc(), BookingRow.time.asc(), BookingRow.id.asc()).all()
        return [to_booking(row) for row in rows]

    # Booking writes

    def insert_booking(
        self,
        *,
        provider_id: str,
        on_date: date,
        at_time: time,
        patient_name: str,
        patient_email: str | None,
        patient_phone: str | None,
        amount_cents: int,
        notes: str | None = None,
        created_at: datetime | None = None,
    ) -> Booking:
        row = BookingRow(
            provider_id=provider_id,
            date=on_date,
            time=at_time,
            patient_name=patient_name,
            patient_email=patient_email,
            patient_phone=patient_phone,
            status=BookingStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            amount_cents=amount_cents,
            notes=notes,
            created_at=created_at or datetime.now(),
        )
        self.db.add(row)
        self._commit_slot_write()
        self.db.refresh(row)
        return to_booking(row)

    def update_booking_status(
        self,
        booking_id: int,
        status: BookingStatus,
        payment_status: PaymentStatus | None = None,
    ) -> Booking:
        row = self._require_booking_row(booking_id)
        row.status = status.value
        if payment_status is not None:
            row.payment_status = payment_status.value
        self._commit_slot_write()
        self.db.refresh(row)
        return to_booking(row)

    def update_booking_time(self, booking_id: int, at_time: time, on_date: date | None = None) -> Booking:
        row = self._require_booking_row(booking_id)
        row.time = at_time
        if on_date is not None:
            row.date = on_date
        self._commit_slot_write()
        self.db.refresh(row)
        return to_booking(row)

    def set_payment_reference(self, booking_id: int, reference: str | None) -> Booking:
        row = self._require_booking_row(booking_id)
        row.payment_reference = reference
        self._commit()
        self.db.refresh(row)
        return to_booking(row)

    def mark_patient_confirmed(self, booking_id: int, confirmed_at: datetime) -> Booking:
        row = self._require_booking_row(booking_id)
        if row.patient_confirmed_at is None:
            row.patient_confirmed_at = confirmed_at
            self._commit()
            self.db.refresh(row)
        return to_booking(row)

    def expire_stale_reservations(
        self,
        cutoff: datetime,
        *,
        provider_id: str | None = None,
        on_date: date | None = None,
        at_time: time | None = None,
    ) -> list[Booking]:
        """Cancel unpaid pending bookings created before ``cutoff``.

        Narrowed to one slot when the provider/date/time coordinates are given.
        Returns the bookings as they were before expiry.
        """
        query = self.db.query(BookingRow).filter(
            BookingRow.status == BookingStatus.PENDING.value,
            BookingRow.payment_status == PaymentStatus.PENDING.value,
            BookingRow.created_at < cutoff,
        )
        if provider_id is not None:
            query = query.filter(BookingRow.provider_id == provider_id)
        if on_date is not None:
            query = query.filter(BookingRow.date == on_date)
        if at_time is not None:
            query = query.filter(BookingRow.time == at_time)

        rows = query.order_by(BookingRow.id.asc()).all()
        if not rows:
            return []

        expired = [to_booking(row) for row in rows]
        for row in rows:
            row.status = BookingStatus.CANCELLED.value
            row.payment_status = PaymentStatus.EXPIRED.value
            row.notes = STALE_RESERVATION_NOTE
        self._commit()
        return expired

    # Schedule and block writes

    def add_weekly_availability(
        self,
        *,
        provider_id: str,
        day_of_week: int,
        start_time: time,
        end_time: time,
        slot_duration_minutes: int,
        active: bool = True,
    ) -> WeeklyAvailability:
        row = WeeklyAvailabilityRow(
            provider_id=provider_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            slot_duration_minutes=slot_duration_minutes,
            active=active,
        )
        self.db.add(row)
        self._commit()
        self.db.refresh(row)
        return to_weekly_availability(row)

    def set_weekly_availability_active(self, row_id: int, active: bool) -> WeeklyAvailability:
        row = self.db.get(WeeklyAvailabilityRow, row_id)
        if row is None:
            raise NotFoundError('Weekly availability not found.')
        row.active = active
        self._commit()
        self.db.refresh(row)
        return to_weekly_availability(row)

    def add_blocked_interval(
        self,
        *,
        provider_id: str,
        on_date: date,
        start_time: time | None = None,
        end_time: time | None = None,
        reason: str | None = None,
    ) -> BlockedInterval:
        row = BlockedIntervalRow(
            provider_id=provider_id,
            date=on_date,
            start_time=start_time,
            end_time=end_time,
            reason=reason,
        )
        self.db.add(row)
        self._commit()
        self.db.refresh(row)
        return to_blocked_interval(row)

    def delete_blocked_interval(self, provider_id: str, block_id: int) -> None:
        row = self.db.query(BlockedIntervalRow).filter(
            BlockedIntervalRow.id == block_id,
            BlockedIntervalRow.provider_id == provider_id,
        ).first()
        if row is None:
            raise NotFoundError('Blocked interval not found.')
        self.db.delete(row)
        self._commit()

    # Helpers

    def _require_booking_row(self, booking_id: int) -> BookingRow:
        row = self.db.get(BookingRow, booking_id)
        if row is None:
            raise NotFoundError('Booking not found.')
        return row

    def _commit_slot_write(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.info('Active-slot index rejected booking write: %s', exc.orig)
            raise DuplicateSlotError() from exc
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
