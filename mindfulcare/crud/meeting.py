# mindfulcare/crud/meeting.py

from __future__ import annotations
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from mindfulcare.db.models.meeting import AppointmentMeeting, MEETING_CANCELLED


async def create_meeting(
    db: AsyncSession,
    *,
    appointment_id: int,
    platform: str,
    meeting_url: str,
    meeting_id: Optional[str] = None,
    meeting_password: Optional[str] = None,
    host_email: Optional[str] = None,
    guest_email: Optional[str] = None,
) -> AppointmentMeeting:
    meeting = AppointmentMeeting(
        appointment_id=appointment_id,
        platform=platform,
        meeting_url=meeting_url,
        meeting_id=meeting_id,
        meeting_password=meeting_password,
        host_email=host_email,
        guest_email=guest_email,
    )
    db.add(meeting)
    try:
        await db.commit()
        await db.refresh(meeting)
        return meeting
    except SQLAlchemyError:
        await db.rollback()
        raise


async def get_meeting_for_appointment(db: AsyncSession, appointment_id: int) -> Optional[AppointmentMeeting]:
    res = await db.execute(
        sa.select(AppointmentMeeting).where(AppointmentMeeting.appointment_id == appointment_id)
    )
    return res.scalar_one_or_none()


async def mark_meeting_cancelled(db: AsyncSession, meeting: AppointmentMeeting) -> AppointmentMeeting:
    meeting.status = MEETING_CANCELLED
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise
    return meeting
