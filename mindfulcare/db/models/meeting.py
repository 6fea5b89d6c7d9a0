# mindfulcare/db/models/meeting.py

from __future__ import annotations
from datetime import datetime
from typing import Optional
import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from mindfulcare.db.session import Base
from mindfulcare.db.types import BigIntId, UTCDateTime, utcnow

MEETING_ACTIVE = "active"
MEETING_CANCELLED = "cancelled"


class AppointmentMeeting(Base):
    __tablename__ = "appointment_meetings"
    __table_args__ = (
        # at most one meeting row per appointment
        sa.UniqueConstraint("appointment_id", name="uq_appointment_meetings_appointment_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    appointment_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    meeting_url: Mapped[str] = mapped_column(sa.String(512), nullable=False)
    meeting_id: Mapped[Optional[str]] = mapped_column(sa.String(255))
    meeting_password: Mapped[Optional[str]] = mapped_column(sa.String(64))
    host_email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    guest_email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    status: Mapped[str] = mapped_column(
        sa.String(16), nullable=False, default=MEETING_ACTIVE, server_default=MEETING_ACTIVE
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
