# mindfulcare/db/models/notification.py

from __future__ import annotations
from datetime import datetime
from typing import Optional
import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from mindfulcare.db.session import Base
from mindfulcare.db.types import BigIntId, UTCDateTime, utcnow

LOG_SENT = "sent"
LOG_ERROR = "error"
LOG_PENDING = "pending"


class NotificationLog(Base):
    """Append-only record of every email dispatch attempt."""

    __tablename__ = "notification_logs"
    __table_args__ = (
        sa.Index("ix_notification_logs_appointment_id", "appointment_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    appointment_id: Mapped[Optional[int]] = mapped_column(sa.BigInteger)
    recipient_email: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    notification_type: Mapped[Optional[str]] = mapped_column(sa.String(32))
    subject: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    provider: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(sa.Text)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)


class AppointmentReminder(Base):
    """A reminder email waiting for the worker to send it at `reminder_date`."""

    __tablename__ = "appointment_reminders"
    __table_args__ = (
        sa.Index("ix_appointment_reminders_due", "sent", "reminder_date"),
        sa.Index("ix_appointment_reminders_appointment_id", "appointment_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    appointment_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    recipient_email: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    recipient_name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    practitioner_name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    appointment_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    reminder_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    session_type: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    meeting_url: Mapped[Optional[str]] = mapped_column(sa.String(512))
    sent: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False, server_default=sa.false())
    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    voided_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
