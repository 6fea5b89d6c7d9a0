# mindfulcare/db/models/appointment.py

from __future__ import annotations
from datetime import date as _Date, datetime
from typing import Optional
import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from mindfulcare.db.session import Base
from mindfulcare.db.types import BigIntId, UTCDateTime, utcnow

STATUS_CONFIRMED = "confirmed"
STATUS_RESCHEDULED = "rescheduled"
STATUS_CANCELLED = "cancelled"
ACTIVE_STATUSES = (STATUS_CONFIRMED, STATUS_RESCHEDULED)


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        sa.Index("ix_appointments_user_id", "user_id"),
        sa.Index("ix_appointments_practitioner_id", "practitioner_id"),
        sa.Index("ix_appointments_date", "date"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    # Recipient facts are denormalized so reminder jobs need no user lookup
    user_email: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    user_name: Mapped[str] = mapped_column(sa.String(120), nullable=False)

    practitioner_id: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    practitioner_name: Mapped[str] = mapped_column(sa.String(120), nullable=False)

    date: Mapped[_Date] = mapped_column(sa.Date, nullable=False)
    time: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    duration: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=50, server_default="50")
    session_type: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        sa.String(32), nullable=False, default=STATUS_CONFIRMED, server_default=STATUS_CONFIRMED
    )
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)

    calendar_event_id: Mapped[Optional[str]] = mapped_column(sa.String(255))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
