"""Expands weekly availability into annotated slots for one provider and date."""

from datetime import date, datetime, time, timedelta
from typing import Protocol

from clinicbook.core import config
from clinicbook.scheduling.entities import (
    SLOT_STATUS_RANK,
    BlockedInterval,
    Booking,
    BookingRef,
    BookingStatus,
    Slot,
    SlotStatus,
    WeeklyAvailability,
)

DAY_START = time(0, 0)
DAY_END = time(23, 59)

PENDING_BOOKING_STATUSES = frozenset({
    BookingStatus.PENDING,
    BookingStatus.AWAITING_CONFIRMATION,
    BookingStatus.RESCHEDULED,
})


class ScheduleReader(Protocol):
    def get_active_weekly_availability(self, provider_id: str, day_of_week: int) -> list[WeeklyAvailability]: ...

    def get_blocked_intervals(self, provider_id: str, on_date: date) -> list[BlockedInterval]: ...

    def get_bookings(self, provider_id: str, on_date: date, include_cancelled: bool = False) -> list[Booking]: ...


def day_of_week_for(slot_date: date) -> int:
    """Day index with Sunday as 0, matching the stored weekly rows."""
    return (slot_date.weekday() + 1) % 7


def iterate_slot_times(window: WeeklyAvailability) -> list[time]:
    duration = window.slot_duration_minutes or config.DEFAULT_SLOT_DURATION_MINUTES
    if duration <= 0 or window.start_time >= window.end_time:
        return []

    anchor = date.min
    current = datetime.combine(anchor, window.start_time.replace(second=0, microsecond=0))
    window_end = datetime.combine(anchor, window.end_time.replace(second=0, microsecond=0))
    step = timedelta(minutes=duration)

    times: list[time] = []
    while current + step <= window_end:
        times.append(current.time())
        current += step
    return times


def find_block(slot_time: time, blocks: list[BlockedInterval]) -> BlockedInterval | None:
    for block in blocks:
        if block.is_full_day:
            return block
        block_start = block.start_time or DAY_START
        block_end = block.end_time or DAY_END
        if block_start <= slot_time < block_end:
            return block
    return None


def classify_booking(booking: Booking) -> SlotStatus:
    if booking.status in PENDING_BOOKING_STATUSES:
        return SlotStatus.PENDING
    return SlotStatus.OCCUPIED


def materialize_slot(slot_time: time, blocks: list[BlockedInterval], bookings_by_time: dict[time, Booking]) -> Slot:
    block = find_block(slot_time, blocks)
    if block is not None:
        return Slot(time=slot_time, status=SlotStatus.BLOCKED, block_reason=block.reason)

    booking = bookings_by_time.get(slot_time)
    if booking is not None:
        return Slot(
            time=slot_time,
            status=classify_booking(booking),
            booking_ref=BookingRef(id=booking.id, patient_name=booking.patient_name),
        )

    return Slot(time=slot_time, status=SlotStatus.AVAILABLE)


def merge_slot(existing: Slot | None, candidate: Slot) -> Slot:
    if existing is None:
        return candidate
    if SLOT_STATUS_RANK[candidate.status] > SLOT_STATUS_RANK[existing.status]:
        return candidate
    return existing


def build_slots(
    windows: list[WeeklyAvailability],
    blocks: list[BlockedInterval],
    bookings: list[Booking],
) -> list[Slot]:
    """Pure slot computation over already-loaded rows.

    Each window is expanded on its own grid and the results are unioned by time,
    keeping the most restrictive status where shifts overlap.
    """
    bookings_by_time: dict[time, Booking] = {}
    for booking in bookings:
        if booking.status is BookingStatus.CANCELLED:
            continue
        bookings_by_time.setdefault(booking.time.replace(second=0, microsecond=0), booking)

    slots_by_time: dict[time, Slot] = {}
    for window in windows:
        if not window.active:
            continue
        for slot_time in iterate_slot_times(window):
            candidate = materialize_slot(slot_time, blocks, bookings_by_time)
            slots_by_time[slot_time] = merge_slot(slots_by_time.get(slot_time), candidate)

    return [slots_by_time[slot_time] for slot_time in sorted(slots_by_time)]


def compute_slots(store: ScheduleReader, provider_id: str, slot_date: date) -> list[Slot]:
    windows = store.get_active_weekly_availability(provider_id, day_of_week_for(slot_date))
    if not windows:
        return []

    blocks = store.get_blocked_intervals(provider_id, slot_date)
    bookings = store.get_bookings(provider_id, slot_date)
    return build_slots(windows, blocks, bookings)


def find_slot(store: ScheduleReader, provider_id: str, slot_date: date, slot_time: time) -> Slot | None:
    for slot in compute_slots(store, provider_id, slot_date):
        if slot.time == slot_time:
            return slot
    return None
