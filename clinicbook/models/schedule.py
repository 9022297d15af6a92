"""Weekly availability model definitions."""

from sqlalchemy import Boolean, CheckConstraint, Column, Index, Integer, String, Time
from clinicbook.database import Base


class WeeklyAvailabilityRow(Base):
    """Recurring weekly window in which a provider takes appointments."""
    __tablename__ = "weekly_availability"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer)
    active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_weekly_day_of_week'),
        CheckConstraint('start_time < end_time', name='ck_weekly_window'),
        Index('idx_weekly_provider_day', 'provider_id', 'day_of_week'),
    )
