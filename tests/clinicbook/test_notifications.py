from datetime import time
from urllib.parse import unquote

import pytest

from clinicbook.core import config
from clinicbook.notifications import (
    NotificationDispatcher,
    NotificationKind,
    build_notification,
    format_phone,
)
from clinicbook.scheduling.entities import Booking, BookingStatus, PaymentStatus
from support import MONDAY, NOW, PROVIDER_ID

BOOKING = Booking(
    id=7,
    provider_id=PROVIDER_ID,
    date=MONDAY,
    time=time(9, 30),
    patient_name='Maria Silva',
    patient_email='maria@example.com',
    patient_phone='(11) 98765-4321',
    status=BookingStatus.PENDING,
    payment_status=PaymentStatus.PENDING,
    amount_cents=15000,
    created_at=NOW,
)


@pytest.mark.parametrize(
    ('raw', 'expected'),
    [
        ('(11) 98765-4321', '5511987654321'),
        ('1133334444', '551133334444'),
        ('+55 11 98765-4321', '5511987654321'),
        ('', ''),
    ],
)
def test_format_phone_adds_brazil_country_code(raw: str, expected: str) -> None:
    assert format_phone(raw) == expected


def test_new_booking_notification_links_to_clinic(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'CLINIC_WHATSAPP_PHONE', '11 3333-4444')

    notification = build_notification(BOOKING, NotificationKind.NEW)

    assert notification.message == 'New booking request from Maria Silva for 05/01/2026 at 09:30.'
    assert notification.link.startswith('https://wa.me/551133334444?text=')
    assert unquote(notification.link.split('text=', 1)[1]) == notification.message


def test_confirmed_notification_links_to_patient() -> None:
    notification = build_notification(BOOKING, NotificationKind.CONFIRMED)

    assert notification.link.startswith('https://wa.me/5511987654321?text=')


def test_rescheduled_notification_carries_confirmation_link() -> None:
    notification = build_notification(BOOKING, NotificationKind.RESCHEDULED)

    assert '/confirmar/' in notification.link
    assert notification.link in notification.message


def test_dispatch_swallows_sender_failures() -> None:
    def broken_sender(notification) -> None:
        raise RuntimeError('gateway down')

    assert NotificationDispatcher(broken_sender).dispatch(BOOKING, NotificationKind.CANCELLED) is None
