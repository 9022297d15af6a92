from datetime import date, datetime, time

import pytest

from clinicbook.auth.link_tokens import create_link_token
from clinicbook.notifications import NotificationDispatcher, NotificationKind
from clinicbook.scheduling.entities import BookingStatus, PaymentStatus, SlotStatus
from clinicbook.scheduling.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from clinicbook.scheduling.events import BookingChangeFeed, ChangeKind
from clinicbook.scheduling.requests import RequestLifecycleManager
from clinicbook.scheduling.slots import compute_slots
from support import MONDAY, NOW, PROVIDER_ID, RecordingSender, add_booking, fixed_clock


def _manager(store, **kwargs) -> RequestLifecycleManager:
    kwargs.setdefault('clock', fixed_clock())
    return RequestLifecycleManager(store, **kwargs)


def _slot_statuses(store, on_date: date = MONDAY) -> dict[time, SlotStatus]:
    return {slot.time: slot.status for slot in compute_slots(store, PROVIDER_ID, on_date)}


def test_list_open_requests_filters_and_orders(store, monday_schedule) -> None:
    later_same_day = add_booking(store, time(10, 0), BookingStatus.AWAITING_CONFIRMATION)
    first = add_booking(store, time(8, 0))
    next_week = add_booking(store, time(8, 0), on_date=date(2026, 1, 12))
    add_booking(store, time(9, 0), BookingStatus.CONFIRMED)
    add_booking(store, time(9, 30), BookingStatus.CANCELLED)
    add_booking(store, time(8, 0), on_date=date(2025, 12, 29))
    add_booking(store, time(8, 0), provider_id='prov-2')

    requests = _manager(store).list_open_requests(PROVIDER_ID)

    assert [booking.id for booking in requests] == [first.id, later_same_day.id, next_week.id]


def test_list_open_requests_treats_rescheduled_as_pending(store, monday_schedule) -> None:
    rescheduled = add_booking(store, time(8, 0), BookingStatus.RESCHEDULED)

    assert [booking.id for booking in _manager(store).list_open_requests(PROVIDER_ID)] == [rescheduled.id]


def test_accept_confirms_and_is_idempotent(store, monday_schedule) -> None:
    booking = add_booking(store, time(9, 0))
    sender = RecordingSender()
    manager = _manager(store, notifier=NotificationDispatcher(sender))

    first = manager.accept(booking.id)
    second = manager.accept(booking.id)

    assert first.status is BookingStatus.CONFIRMED
    assert second.status is BookingStatus.CONFIRMED
    assert [notification.kind for notification in sender.sent] == [NotificationKind.CONFIRMED]
    assert _slot_statuses(store)[time(9, 0)] is SlotStatus.OCCUPIED


def test_accept_awaiting_confirmation_booking(store, monday_schedule) -> None:
    booking = add_booking(store, time(9, 0), BookingStatus.AWAITING_CONFIRMATION)

    assert _manager(store).accept(booking.id).status is BookingStatus.CONFIRMED


def test_accept_cancelled_booking_is_rejected(store, monday_schedule) -> None:
    booking = add_booking(store, time(9, 0), BookingStatus.CANCELLED)

    with pytest.raises(InvalidTransitionError):
        _manager(store).accept(booking.id)


def test_accept_missing_booking_raises_not_found(store) -> None:
    with pytest.raises(NotFoundError):
        _manager(store).accept(999)


def test_reject_cancels_booking_and_payment(store, monday_schedule) -> None:
    booking = add_booking(store, time(9, 0))

    rejected = _manager(store).reject(booking.id)

    assert rejected.status is BookingStatus.CANCELLED
    assert rejected.payment_status is PaymentStatus.CANCELLED
    assert _slot_statuses(store)[time(9, 0)] is SlotStatus.AVAILABLE
    assert _manager(store).reject(booking.id).status is BookingStatus.CANCELLED


def test_reject_confirmed_booking_is_rejected(store, monday_schedule) -> None:
    booking = add_booking(store, time(9, 0), BookingStatus.CONFIRMED)

    with pytest.raises(InvalidTransitionError):
        _manager(store).reject(booking.id)


def test_propose_new_time_frees_old_slot(store, monday_schedule) -> None:
    store.add_weekly_availability(
        provider_id=PROVIDER_ID, day_of_week=1, start_time=time(14, 0), end_time=time(16, 0), slot_duration_minutes=30,
    )
    booking = add_booking(store, time(9, 0))
    sender = RecordingSender()

    moved = _manager(store, notifier=NotificationDispatcher(sender)).propose_new_time(booking.id, time(14, 0))

    assert moved.time == time(14, 0)
    assert moved.date == MONDAY
    assert moved.status is BookingStatus.PENDING
    statuses = _slot_statuses(store)
    assert statuses[time(9, 0)] is SlotStatus.AVAILABLE
    assert statuses[time(14, 0)] is SlotStatus.PENDING
    [notification] = sender.sent
    assert notification.kind is NotificationKind.RESCHEDULED
    assert '/confirmar/' in notification.link


def test_propose_new_time_can_move_to_another_date(store, monday_schedule) -> None:
    booking = add_booking(store, time(9, 0), BookingStatus.AWAITING_CONFIRMATION)
    next_monday = date(2026, 1, 12)

    moved = _manager(store).propose_new_time(booking.id, time(10, 30), next_monday)

    assert (moved.date, moved.time) == (next_monday, time(10, 30))
    assert moved.status is BookingStatus.AWAITING_CONFIRMATION
    assert _slot_statuses(store, next_monday)[time(10, 30)] is SlotStatus.PENDING
    assert _slot_statuses(store)[time(9, 0)] is SlotStatus.AVAILABLE


def test_propose_new_time_refuses_taken_slot(store, monday_schedule) -> None:
    booking = add_booking(store, time(9, 0))
    add_booking(store, time(10, 0), BookingStatus.CONFIRMED)

    with pytest.raises(ConflictError):
        _manager(store).propose_new_time(booking.id, time(10, 0))

    assert store.get_booking(booking.id).time == time(9, 0)


def test_propose_new_time_refuses_blocked_and_off_grid_slots(store, monday_schedule) -> None:
    booking = add_booking(store, time(9, 0))
    store.add_blocked_interval(provider_id=PROVIDER_ID, on_date=MONDAY, start_time=time(11, 0), end_time=time(12, 0))
    manager = _manager(store)

    with pytest.raises(ConflictError):
        manager.propose_new_time(booking.id, time(11, 0))
    with pytest.raises(ValidationError):
        manager.propose_new_time(booking.id, time(9, 10))


def test_propose_new_time_refuses_past_time(store, monday_schedule) -> None:
    booking = add_booking(store, time(11, 0))
    manager = _manager(store, clock=fixed_clock(datetime(2026, 1, 5, 9, 0)))

    with pytest.raises(ValidationError):
        manager.propose_new_time(booking.id, time(8, 30))


def test_propose_new_time_requires_open_booking(store, monday_schedule) -> None:
    booking = add_booking(store, time(9, 0), BookingStatus.CONFIRMED)

    with pytest.raises(InvalidTransitionError):
        _manager(store).propose_new_time(booking.id, time(10, 0))


def test_subscribe_receives_changes_until_unsubscribed(store, monday_schedule) -> None:
    feed = BookingChangeFeed()
    manager = _manager(store, feed=feed)
    first = add_booking(store, time(8, 0))
    second = add_booking(store, time(8, 30))
    seen = []

    unsubscribe = manager.subscribe(PROVIDER_ID, seen.append)
    manager.accept(first.id)
    unsubscribe()
    manager.reject(second.id)

    assert [(change.kind, change.booking.id) for change in seen] == [(ChangeKind.STATUS_CHANGED, first.id)]


def test_confirm_attendance_sets_timestamp_once(store, monday_schedule) -> None:
    booking = add_booking(store, time(9, 0), BookingStatus.CONFIRMED)
    token = create_link_token(booking.id)

    first = _manager(store).confirm_attendance(token)
    second = _manager(store, clock=fixed_clock(datetime(2026, 1, 5, 8, 0))).confirm_attendance(token)

    assert first.patient_confirmed_at == NOW
    assert second.patient_confirmed_at == NOW


def test_confirm_attendance_rejects_bad_token(store) -> None:
    with pytest.raises(ValidationError):
        _manager(store).confirm_attendance('not-a-token')


def test_confirm_attendance_rejects_cancelled_booking(store, monday_schedule) -> None:
    booking = add_booking(store, time(9, 0), BookingStatus.CANCELLED)

    with pytest.raises(InvalidTransitionError):
        _manager(store).confirm_attendance(create_link_token(booking.id))
