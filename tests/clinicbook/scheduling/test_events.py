from datetime import time

from clinicbook.scheduling.entities import Booking, BookingStatus, PaymentStatus
from clinicbook.scheduling.events import BookingChangeFeed, ChangeKind
from support import MONDAY, NOW, PROVIDER_ID


def _booking(provider_id: str = PROVIDER_ID) -> Booking:
    return Booking(
        id=1,
        provider_id=provider_id,
        date=MONDAY,
        time=time(9, 0),
        patient_name='Ana',
        patient_email='ana@example.com',
        patient_phone=None,
        status=BookingStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        amount_cents=10000,
        created_at=NOW,
    )


def test_publish_reaches_only_matching_provider() -> None:
    feed = BookingChangeFeed()
    mine, theirs = [], []
    feed.subscribe(PROVIDER_ID, mine.append)
    feed.subscribe('prov-2', theirs.append)

    feed.publish(ChangeKind.CREATED, _booking())

    assert [change.kind for change in mine] == [ChangeKind.CREATED]
    assert theirs == []


def test_failing_subscriber_does_not_stop_others() -> None:
    feed = BookingChangeFeed()
    seen = []

    def broken(change) -> None:
        raise RuntimeError('subscriber crashed')

    feed.subscribe(PROVIDER_ID, broken)
    feed.subscribe(PROVIDER_ID, seen.append)

    feed.publish(ChangeKind.TIME_CHANGED, _booking())

    assert len(seen) == 1


def test_unsubscribe_removes_handler() -> None:
    feed = BookingChangeFeed()
    unsubscribe = feed.subscribe(PROVIDER_ID, lambda change: None)

    unsubscribe()
    unsubscribe()

    assert feed.subscriber_count(PROVIDER_ID) == 0
