# mindfulcare/crud/notification.py

from __future__ import annotations
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from mindfulcare.db.models.appointment import Appointment, STATUS_CANCELLED
from mindfulcare.db.models.notification import AppointmentReminder, NotificationLog


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise


# ---------- notification log ----------

async def create_notification_log(
    db: AsyncSession,
    *,
    recipient_email: str,
    subject: str,
    provider: str,
    status: str,
    appointment_id: Optional[int] = None,
    notification_type: Optional[str] = None,
    error_message: Optional[str] = None,
) -> NotificationLog:
    row = NotificationLog(
        appointment_id=appointment_id,
        recipient_email=recipient_email,
        notification_type=notification_type,
        subject=subject[:255],
        provider=provider,
        status=status,
        error_message=error_message,
        timestamp=datetime.now(timezone.utc),
    )
    db.add(row)
    await _commit(db)
    return row


async def list_notification_logs(
    db: AsyncSession, *, appointment_id: Optional[int] = None
) -> Sequence[NotificationLog]:
    q = sa.select(NotificationLog)
    if appointment_id is not None:
        q = q.where(NotificationLog.appointment_id == appointment_id)
    q = q.order_by(NotificationLog.id.asc())
    res = await db.execute(q)
    return res.scalars().all()


# ---------- pending reminders ----------

async def create_reminders(
    db: AsyncSession, reminders: Iterable[AppointmentReminder]
) -> list[AppointmentReminder]:
    rows = list(reminders)
    if not rows:
        return rows
    db.add_all(rows)
    await _commit(db)
    return rows


async def list_reminders(
    db: AsyncSession, appointment_id: int, *, include_voided: bool = True
) -> Sequence[AppointmentReminder]:
    q = sa.select(AppointmentReminder).where(AppointmentReminder.appointment_id == appointment_id)
    if not include_voided:
        q = q.where(AppointmentReminder.voided_at.is_(None))
    q = q.order_by(AppointmentReminder.reminder_date.asc())
    res = await db.execute(q)
    return res.scalars().all()


async def get_due_reminders(
    db: AsyncSession, *, now: datetime, limit: int = 100
) -> Sequence[AppointmentReminder]:
    """Unsent, unvoided reminders whose fire time has passed, skipping cancelled appointments."""
    q = (
        sa.select(AppointmentReminder)
        .join(Appointment, Appointment.id == AppointmentReminder.appointment_id)
        .where(
            AppointmentReminder.sent.is_(False),
            AppointmentReminder.voided_at.is_(None),
            AppointmentReminder.reminder_date <= now,
            Appointment.status != STATUS_CANCELLED,
        )
        .order_by(AppointmentReminder.reminder_date.asc())
        .limit(limit)
    )
    res = await db.execute(q)
    return res.scalars().all()


async def mark_reminder_sent(
    db: AsyncSession, reminder: AppointmentReminder, *, now: Optional[datetime] = None
) -> AppointmentReminder:
    reminder.sent = True
    reminder.sent_at = now or datetime.now(timezone.utc)
    await _commit(db)
    return reminder


async def void_pending_reminders(
    db: AsyncSession, appointment_id: int, *, now: Optional[datetime] = None
) -> int:
    """Void every unsent reminder of an appointment; returns how many were voided."""
    res = await db.execute(
        sa.update(AppointmentReminder)
        .where(
            AppointmentReminder.appointment_id == appointment_id,
            AppointmentReminder.sent.is_(False),
            AppointmentReminder.voided_at.is_(None),
        )
        .values(voided_at=now or datetime.now(timezone.utc))
        .execution_options(synchronize_session="fetch")
    )
    await _commit(db)
    return res.rowcount or 0
