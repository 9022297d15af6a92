from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinicbook.routes.common import database_unavailable, ensure_database_ready, get_db, to_http_exception
from clinicbook.scheduling.errors import SchedulingError
from clinicbook.scheduling.slots import compute_slots
from clinicbook.scheduling.store import SqlAlchemyScheduleStore

router = APIRouter(tags=['availability'])

MAX_BLOCK_REASON_LENGTH = 200


class SlotResponse(BaseModel):
    time: time
    status: str
    is_available: bool
    booking_id: int | None = None
    patient_name: str | None = None
    block_reason: str | None = None


class CreateWeeklyAvailabilityRequest(BaseModel):
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration_minutes: int = 30
    active: bool = True

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @field_validator('slot_duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Slot duration must be positive.')
        return value

    @model_validator(mode='after')
    def validate_window(self):
        if self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')
        return self


class UpdateWeeklyAvailabilityRequest(BaseModel):
    active: bool


class WeeklyAvailabilityResponse(BaseModel):
    id: int
    provider_id: str
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration_minutes: int
    active: bool

    class Config:
        from_attributes = True


class CreateBlockedIntervalRequest(BaseModel):
    date: date
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_BLOCK_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_BLOCK_REASON_LENGTH} characters or fewer.')

        return normalized

    @model_validator(mode='after')
    def validate_interval(self):
        if self.start_time is not None and self.end_time is not None and self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')
        return self


class BlockedIntervalResponse(BaseModel):
    id: int
    provider_id: str
    date: date
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None
    full_day: bool

    class Config:
        from_attributes = True


def normalize_provider_id(provider_id: str) -> str:
    normalized = provider_id.strip()
    if not normalized:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Provider is required.',
        )
    return normalized


@router.get('/providers/{provider_id}/slots', response_model=list[SlotResponse])
def list_day_slots(
    provider_id: str,
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    provider_id = normalize_provider_id(provider_id)
    ensure_database_ready()

    try:
        slots = compute_slots(SqlAlchemyScheduleStore(db), provider_id, slot_date)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [
        SlotResponse(
            time=slot.time,
            status=slot.status.value,
            is_available=slot.is_available,
            booking_id=slot.booking_ref.id if slot.booking_ref else None,
            patient_name=slot.booking_ref.patient_name if slot.booking_ref else None,
            block_reason=slot.block_reason,
        )
        for slot in slots
    ]


@router.put(
    '/providers/{provider_id}/weekly',
    response_model=WeeklyAvailabilityResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_weekly_availability(
    provider_id: str,
    data: CreateWeeklyAvailabilityRequest,
    db: Session = Depends(get_db),
):
    provider_id = normalize_provider_id(provider_id)
    ensure_database_ready()

    try:
        return SqlAlchemyScheduleStore(db).add_weekly_availability(
            provider_id=provider_id,
            day_of_week=data.day_of_week,
            start_time=data.start_time,
            end_time=data.end_time,
            slot_duration_minutes=data.slot_duration_minutes,
            active=data.active,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.patch('/providers/{provider_id}/weekly/{row_id}', response_model=WeeklyAvailabilityResponse)
def update_weekly_availability(
    provider_id: str,
    row_id: int,
    data: UpdateWeeklyAvailabilityRequest,
    db: Session = Depends(get_db),
):
    provider_id = normalize_provider_id(provider_id)
    ensure_database_ready()

    store = SqlAlchemyScheduleStore(db)
    try:
        existing = store.get_weekly_availability(row_id)
        if existing is None or existing.provider_id != provider_id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Weekly availability not found.',
            )
        return store.set_weekly_availability_active(row_id, data.active)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post(
    '/providers/{provider_id}/blocks',
    response_model=BlockedIntervalResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_blocked_interval(
    provider_id: str,
    data: CreateBlockedIntervalRequest,
    db: Session = Depends(get_db),
):
    provider_id = normalize_provider_id(provider_id)
    ensure_database_ready()

    try:
        block = SqlAlchemyScheduleStore(db).add_blocked_interval(
            provider_id=provider_id,
            on_date=data.date,
            start_time=data.start_time,
            end_time=data.end_time,
            reason=data.reason,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return BlockedIntervalResponse(
        id=block.id,
        provider_id=block.provider_id,
        date=block.date,
        start_time=block.start_time,
        end_time=block.end_time,
        reason=block.reason,
        full_day=block.is_full_day,
    )


@router.get('/providers/{provider_id}/blocks', response_model=list[BlockedIntervalResponse])
def list_blocked_intervals(
    provider_id: str,
    from_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
):
    provider_id = normalize_provider_id(provider_id)
    ensure_database_ready()

    try:
        blocks = SqlAlchemyScheduleStore(db).list_blocked_intervals(provider_id, from_date or date.today())
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [
        BlockedIntervalResponse(
            id=block.id,
            provider_id=block.provider_id,
            date=block.date,
            start_time=block.start_time,
            end_time=block.end_time,
            reason=block.reason,
            full_day=block.is_full_day,
        )
        for block in blocks
    ]


@router.delete('/providers/{provider_id}/blocks/{block_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_blocked_interval(
    provider_id: str,
    block_id: int,
    db: Session = Depends(get_db),
):
    provider_id = normalize_provider_id(provider_id)
    ensure_database_ready()

    try:
        SqlAlchemyScheduleStore(db).delete_blocked_interval(provider_id, block_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
