"""Blocked interval model definitions."""

from sqlalchemy import Column, Date, Index, Integer, String, Time
from clinicbook.database import Base


class BlockedIntervalRow(Base):
    """One-off unavailable interval. No start and end means the whole day."""
    __tablename__ = "blocked_intervals"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time)
    end_time = Column(Time)
    reason = Column(String)

    __table_args__ = (
        Index('idx_blocked_provider_date', 'provider_id', 'date'),
    )
