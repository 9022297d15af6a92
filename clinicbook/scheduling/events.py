"""In-process change feed for booking writes, keyed by provider."""

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from threading import Lock

from clinicbook.scheduling.entities import Booking

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    CREATED = 'created'
    STATUS_CHANGED = 'status_changed'
    TIME_CHANGED = 'time_changed'
    EXPIRED = 'expired'
    PATIENT_CONFIRMED = 'patient_confirmed'


@dataclass(frozen=True)
class BookingChange:
    kind: ChangeKind
    booking: Booking


ChangeHandler = Callable[[BookingChange], None]


class BookingChangeFeed:
    def __init__(self):
        self._lock = Lock()
        self._subscribers: dict[str, list[ChangeHandler]] = defaultdict(list)

    def subscribe(self, provider_id: str, on_change: ChangeHandler) -> Callable[[], None]:
        with self._lock:
            self._subscribers[provider_id].append(on_change)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(provider_id, [])
                if on_change in handlers:
                    handlers.remove(on_change)
                if not handlers:
                    self._subscribers.pop(provider_id, None)

        return unsubscribe

    def publish(self, kind: ChangeKind, booking: Booking) -> None:
        with self._lock:
            handlers = list(self._subscribers.get(booking.provider_id, []))

        change = BookingChange(kind=kind, booking=booking)
        for handler in handlers:
            try:
                handler(change)
            except Exception:
                logger.exception('Booking change subscriber failed for provider %s', booking.provider_id)

    def subscriber_count(self, provider_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(provider_id, []))
