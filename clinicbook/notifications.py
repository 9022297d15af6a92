"""Notification glue: turns booking events into a message plus deep link."""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable
from urllib.parse import quote

from clinicbook.auth.link_tokens import confirmation_link
from clinicbook.core import config
from clinicbook.scheduling.entities import Booking

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    NEW = 'new'
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'
    RESCHEDULED = 'rescheduled'


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    booking_id: int
    message: str
    link: str | None


def format_phone(phone: str) -> str:
    digits = re.sub(r'\D', '', phone or '')
    if digits.startswith('55') and len(digits) >= 12:
        return digits
    if len(digits) in (10, 11):
        return f'55{digits}'
    return digits


def whatsapp_link(phone: str, message: str) -> str | None:
    formatted = format_phone(phone)
    if not formatted:
        return None
    return f'https://wa.me/{formatted}?text={quote(message)}'


def _describe(booking: Booking) -> str:
    return f"{booking.date.strftime('%d/%m/%Y')} at {booking.time.strftime('%H:%M')}"


def build_notification(booking: Booking, kind: NotificationKind) -> Notification:
    when = _describe(booking)
    if kind is NotificationKind.NEW:
        message = f'New booking request from {booking.patient_name} for {when}.'
        link = whatsapp_link(config.CLINIC_WHATSAPP_PHONE, message)
    elif kind is NotificationKind.CONFIRMED:
        message = f'{booking.patient_name}, your appointment on {when} is confirmed.'
        link = whatsapp_link(booking.patient_phone or '', message)
    elif kind is NotificationKind.CANCELLED:
        message = f'{booking.patient_name}, your appointment on {when} was cancelled.'
        link = whatsapp_link(booking.patient_phone or '', message)
    else:
        link = confirmation_link(booking.id)
        message = f'{booking.patient_name}, we suggested a new time: {when}. Confirm here: {link}'

    return Notification(kind=kind, booking_id=booking.id, message=message, link=link)


Sender = Callable[[Notification], None]


def log_sender(notification: Notification) -> None:
    logger.info('Notification %s for booking %s: %s', notification.kind.value, notification.booking_id, notification.link)


class NotificationDispatcher:
    """Fire-and-forget dispatch. Failures are logged, never raised."""

    def __init__(self, sender: Sender = log_sender):
        self.sender = sender

    def dispatch(self, booking: Booking, kind: NotificationKind) -> Notification | None:
        try:
            notification = build_notification(booking, kind)
            self.sender(notification)
            return notification
        except Exception:
            logger.exception('Notification dispatch failed for booking %s (%s)', booking.id, kind.value)
            return None
