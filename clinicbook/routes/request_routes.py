from datetime import date, time

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinicbook.notifications import NotificationDispatcher
from clinicbook.routes.availability_routes import normalize_provider_id
from clinicbook.routes.booking_routes import BookingResponse, to_booking_response
from clinicbook.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_change_feed,
    get_db,
    get_notifier,
    to_http_exception,
)
from clinicbook.scheduling.errors import SchedulingError
from clinicbook.scheduling.events import BookingChangeFeed
from clinicbook.scheduling.requests import RequestLifecycleManager
from clinicbook.scheduling.store import SqlAlchemyScheduleStore

router = APIRouter(tags=['requests'])


class ProposeTimeRequest(BaseModel):
    new_time: time
    new_date: date | None = None


def get_request_manager(
    db: Session = Depends(get_db),
    feed: BookingChangeFeed = Depends(get_change_feed),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> RequestLifecycleManager:
    return RequestLifecycleManager(SqlAlchemyScheduleStore(db), feed, notifier)


@router.get('/providers/{provider_id}', response_model=list[BookingResponse])
def list_open_requests(provider_id: str, manager: RequestLifecycleManager = Depends(get_request_manager)):
    provider_id = normalize_provider_id(provider_id)
    ensure_database_ready()

    try:
        bookings = manager.list_open_requests(provider_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [to_booking_response(booking) for booking in bookings]


@router.post('/{booking_id}/accept', response_model=BookingResponse)
def accept_request(booking_id: int, manager: RequestLifecycleManager = Depends(get_request_manager)):
    ensure_database_ready()

    try:
        return to_booking_response(manager.accept(booking_id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{booking_id}/reject', response_model=BookingResponse)
def reject_request(booking_id: int, manager: RequestLifecycleManager = Depends(get_request_manager)):
    ensure_database_ready()

    try:
        return to_booking_response(manager.reject(booking_id))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{booking_id}/propose', response_model=BookingResponse)
def propose_new_time(
    booking_id: int,
    data: ProposeTimeRequest,
    manager: RequestLifecycleManager = Depends(get_request_manager),
):
    ensure_database_ready()

    try:
        return to_booking_response(manager.propose_new_time(booking_id, data.new_time, data.new_date))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/confirm/{token}', response_model=BookingResponse)
def get_confirmation_details(token: str, manager: RequestLifecycleManager = Depends(get_request_manager)):
    ensure_database_ready()

    try:
        return to_booking_response(manager.get_by_link_token(token))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/confirm/{token}', response_model=BookingResponse)
def confirm_attendance(token: str, manager: RequestLifecycleManager = Depends(get_request_manager)):
    ensure_database_ready()

    try:
        return to_booking_response(manager.confirm_attendance(token))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
