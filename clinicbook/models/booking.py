"""Booking model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Index, Integer, String, Time, text
from clinicbook.database import Base


class BookingRow(Base):
    """Persisted appointment, from booking intent to completion."""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    patient_name = Column(String, nullable=False)
    patient_email = Column(String)
    patient_phone = Column(String)
    status = Column(String, nullable=False, default='pending')
    payment_status = Column(String, nullable=False, default='pending')
    amount_cents = Column(Integer, nullable=False)
    notes = Column(String)
    payment_reference = Column(String, index=True)
    patient_confirmed_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        # At most one non-cancelled booking per provider slot.
        Index(
            'uq_bookings_active_slot',
            'provider_id',
            'date',
            'time',
            unique=True,
            sqlite_where=text("status <> 'cancelled'"),
            postgresql_where=text("status <> 'cancelled'"),
        ),
        Index('idx_bookings_provider_date', 'provider_id', 'date'),
    )
