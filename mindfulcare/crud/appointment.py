# mindfulcare/crud/appointment.py

from __future__ import annotations
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from mindfulcare.db.models.appointment import (
    Appointment,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_RESCHEDULED,
)

# Fields a snapshot may carry back into the store during reconciliation
SYNCABLE_FIELDS = ("date", "time", "status", "notes", "cancelled_at", "updated_at")


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise


async def create_appointment(
    db: AsyncSession,
    *,
    user_id: str,
    user_email: str,
    user_name: str,
    practitioner_id: int,
    practitioner_name: str,
    appointment_date: date,
    appointment_time: str,
    session_type: str,
    duration: int = 50,
    notes: Optional[str] = None,
) -> Appointment:
    now = datetime.now(timezone.utc)
    appt = Appointment(
        user_id=user_id,
        user_email=user_email,
        user_name=user_name,
        practitioner_id=practitioner_id,
        practitioner_name=practitioner_name,
        date=appointment_date,
        time=appointment_time,
        duration=duration,
        session_type=session_type,
        status=STATUS_CONFIRMED,
        notes=notes,
        created_at=now,
        updated_at=now,
    )
    db.add(appt)
    await _commit(db)
    await db.refresh(appt)
    return appt


async def get_appointment(db: AsyncSession, appointment_id: int) -> Optional[Appointment]:
    res = await db.execute(sa.select(Appointment).where(Appointment.id == appointment_id))
    return res.scalar_one_or_none()


async def get_owned_appointment(
    db: AsyncSession, appointment_id: int, user_id: str
) -> Optional[Appointment]:
    """Fetch an appointment only if it belongs to `user_id`."""
    res = await db.execute(
        sa.select(Appointment).where(
            Appointment.id == appointment_id,
            Appointment.user_id == user_id,
        )
    )
    return res.scalar_one_or_none()


async def reschedule_appointment(
    db: AsyncSession,
    appt: Appointment,
    *,
    new_date: date,
    new_time: str,
    now: Optional[datetime] = None,
) -> Appointment:
    # Only these four columns change; everything else stays as booked
    appt.date = new_date
    appt.time = new_time
    appt.status = STATUS_RESCHEDULED
    appt.updated_at = now or datetime.now(timezone.utc)
    await _commit(db)
    return appt


async def cancel_appointment(
    db: AsyncSession,
    appt: Appointment,
    *,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Appointment:
    now = now or datetime.now(timezone.utc)
    appt.status = STATUS_CANCELLED
    appt.cancelled_at = now
    appt.cancellation_reason = reason
    appt.updated_at = now
    await _commit(db)
    return appt


async def set_calendar_event_id(db: AsyncSession, appt: Appointment, event_id: Optional[str]) -> None:
    appt.calendar_event_id = event_id
    await _commit(db)


async def apply_snapshot(db: AsyncSession, appt: Appointment, snapshot: Mapping[str, Any]) -> Appointment:
    """Overwrite the mutable fields of `appt` with a newer snapshot.

    A cancelled row is terminal: a snapshot that is not itself cancelled
    leaves it untouched.
    """
    if appt.status == STATUS_CANCELLED and snapshot.get("status", STATUS_CANCELLED) != STATUS_CANCELLED:
        return appt
    for field in SYNCABLE_FIELDS:
        if field in snapshot:
            setattr(appt, field, snapshot[field])
    await _commit(db)
    return appt


async def list_appointments(
    db: AsyncSession,
    *,
    user_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    include_cancelled: bool = False,
    limit: int = 100,
) -> Sequence[Appointment]:
    q = sa.select(Appointment)
    if user_id is not None:
        q = q.where(Appointment.user_id == user_id)
    if start_date is not None:
        q = q.where(Appointment.date >= start_date)
    if end_date is not None:
        q = q.where(Appointment.date < end_date)
    if not include_cancelled:
        q = q.where(Appointment.status != STATUS_CANCELLED)
    q = q.order_by(Appointment.date.asc(), Appointment.id.asc()).limit(limit)
    res = await db.execute(q)
    return res.scalars().all()
