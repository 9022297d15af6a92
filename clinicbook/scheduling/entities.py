"""Typed scheduling entities shared by the slot, booking and request components."""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum


class BookingStatus(str, Enum):
    PENDING = 'pending'
    AWAITING_CONFIRMATION = 'awaiting_confirmation'
    CONFIRMED = 'confirmed'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    RESCHEDULED = 'rescheduled'


class PaymentStatus(str, Enum):
    PENDING = 'pending'
    PAID = 'paid'
    FAILED = 'failed'
    EXPIRED = 'expired'
    CANCELLED = 'cancelled'


class SlotStatus(str, Enum):
    AVAILABLE = 'available'
    PENDING = 'pending'
    OCCUPIED = 'occupied'
    BLOCKED = 'blocked'


# Statuses a provider still has to act on.
OPEN_BOOKING_STATUSES = frozenset({
    BookingStatus.PENDING,
    BookingStatus.AWAITING_CONFIRMATION,
    BookingStatus.RESCHEDULED,
})

TERMINAL_BOOKING_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED})

# Higher wins when overlapping shifts produce the same slot time.
SLOT_STATUS_RANK = {
    SlotStatus.AVAILABLE: 0,
    SlotStatus.PENDING: 1,
    SlotStatus.OCCUPIED: 2,
    SlotStatus.BLOCKED: 3,
}


@dataclass(frozen=True)
class WeeklyAvailability:
    id: int
    provider_id: str
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration_minutes: int
    active: bool = True


@dataclass(frozen=True)
class BlockedInterval:
    id: int
    provider_id: str
    date: date
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None and self.end_time is None


@dataclass(frozen=True)
class Booking:
    id: int
    provider_id: str
    date: date
    time: time
    patient_name: str
    patient_email: str | None
    patient_phone: str | None
    status: BookingStatus
    payment_status: PaymentStatus
    amount_cents: int
    created_at: datetime
    notes: str | None = None
    payment_reference: str | None = None
    patient_confirmed_at: datetime | None = None

    @property
    def patient_contact(self) -> str:
        return self.patient_email or self.patient_phone or ''

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.time)


@dataclass(frozen=True)
class BookingRef:
    id: int
    patient_name: str


@dataclass(frozen=True)
class Slot:
    time: time
    status: SlotStatus
    booking_ref: BookingRef | None = None
    block_reason: str | None = None

    @property
    def is_available(self) -> bool:
        return self.status is SlotStatus.AVAILABLE


@dataclass(frozen=True)
class PatientInfo:
    name: str
    email: str | None = None
    phone: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class BookingContext:
    """Per-request visitor state carried into a booking attempt."""

    visitor_id: str | None = None
    channel: str = 'web'
    onboarding_completed: bool = False
    extra: dict[str, str] = field(default_factory=dict)
