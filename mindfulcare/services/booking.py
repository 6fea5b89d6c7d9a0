# mindfulcare/services/booking.py
"""
Booking orchestrator: create, reschedule and cancel appointments.

Only the appointment write itself decides success. Everything after it
(meeting, emails, reminders, calendar) is best effort: logged and swallowed,
so a booking the user can see is never reported as failed.
"""
from __future__ import annotations

from datetime import date as _Date
from typing import Any, Awaitable, Callable, Optional, Sequence

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mindfulcare.core.config import Settings
from mindfulcare.core.errors import AppointmentNotFound, BookingError, InvalidStatusTransition
from mindfulcare.core.logging import get_logger
from mindfulcare.crud import appointment as appointment_crud
from mindfulcare.crud.meeting import create_meeting, get_meeting_for_appointment, mark_meeting_cancelled
from mindfulcare.db.models.appointment import STATUS_CANCELLED, STATUS_RESCHEDULED, Appointment
from mindfulcare.db.models.meeting import MEETING_ACTIVE
from mindfulcare.services.google_calendar import CalendarMirror
from mindfulcare.services.meetings import MeetingDetails, MeetingProvisioner
from mindfulcare.services.notifications import NotificationDispatcher
from mindfulcare.services.reminders import ReminderScheduler, parse_time_of_day

logger = get_logger(__name__)

ERROR_NOT_FOUND = "not_found"
ERROR_INVALID_TRANSITION = "invalid_transition"
ERROR_INVALID_REQUEST = "invalid_request"
ERROR_STORE = "store_error"


# ---------- Public contract returned to the route ----------

class MeetingConfig(BaseModel):
    platform: str = Field(..., description="zoom | google-meet | microsoft-teams; anything else gets a generic link")
    host_email: Optional[str] = None
    guest_email: Optional[str] = None
    topic: Optional[str] = None


class BookingRequest(BaseModel):
    user_id: str
    user_email: str
    user_name: str
    practitioner_id: int
    practitioner_name: str
    date: _Date
    time: str = Field(..., description="Time of day, e.g. '10:00 AM' or '14:00'")
    session_type: str
    notes: Optional[str] = None
    duration: Optional[int] = Field(default=None, gt=0, le=480)
    meeting_config: Optional[MeetingConfig] = None

    @field_validator("time")
    @classmethod
    def _time_must_parse(cls, v: str) -> str:
        parse_time_of_day(v)
        return v.strip()


class OperationResult(BaseModel):
    success: bool
    appointment_id: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class BookingResult(OperationResult):
    meeting_details: Optional[MeetingDetails] = None


# ---------- Internal helpers ----------

def _store_message(e: SQLAlchemyError) -> str:
    orig = getattr(e, "orig", None)
    return str(orig) if orig is not None else str(e)


def _failure(error: BookingError, code: str) -> OperationResult:
    return OperationResult(
        success=False,
        appointment_id=error.appointment_id,
        error=error.message,
        error_code=code,
    )


def _store_failure(action: str, e: SQLAlchemyError, appointment_id: Optional[int] = None) -> OperationResult:
    logger.warning(f"{action}_store_failed", appointment_id=appointment_id, error=_store_message(e))
    return OperationResult(
        success=False,
        appointment_id=appointment_id,
        error=_store_message(e),
        error_code=ERROR_STORE,
    )


# ---------- Core orchestration ----------

class BookingService:
    def __init__(
        self,
        settings: Settings,
        provisioner: MeetingProvisioner,
        dispatcher: NotificationDispatcher,
        scheduler: ReminderScheduler,
        calendar: Optional[CalendarMirror] = None,
    ):
        self.settings = settings
        self.provisioner = provisioner
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.calendar = calendar or CalendarMirror()

    async def _best_effort(
        self,
        db: AsyncSession,
        appt: Appointment,
        step: str,
        appointment_id: int,
        fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run one non-fatal step; on failure log it, recover the session and return None."""
        try:
            result = await fn()
        except (BookingError, SQLAlchemyError) as e:
            logger.warning(f"{step}_failed", appointment_id=appointment_id,
                           error=getattr(e, "message", None) or str(e))
        except Exception:
            logger.exception(f"{step}_failed", appointment_id=appointment_id)
        else:
            # a step can contain its own failed commit (e.g. the notification log);
            # the rollback behind it has still expired `appt`
            if sa_inspect(appt).expired_attributes:
                await self._reload(db, appt, appointment_id, rollback=False)
            return result

        # a failed commit rolls back and expires `appt`; reload it for the next step
        await self._reload(db, appt, appointment_id, rollback=True)
        return None

    async def _reload(self, db: AsyncSession, appt: Appointment, appointment_id: int, *, rollback: bool) -> None:
        try:
            if rollback:
                await db.rollback()
            await db.refresh(appt)
        except SQLAlchemyError:
            logger.exception("session_recovery_failed", appointment_id=appointment_id)

    # ---- steps ----

    async def _attach_meeting(self, db: AsyncSession, appt: Appointment, config: MeetingConfig) -> MeetingDetails:
        details = await self.provisioner.provision(
            appt.id,
            config.platform,
            config.host_email,
            config.guest_email or appt.user_email,
            starts_at=self.scheduler.appointment_at(appt),
            duration_min=appt.duration,
            topic=config.topic or f"{appt.session_type.title()} session with {appt.practitioner_name}",
        )
        await create_meeting(
            db,
            appointment_id=appt.id,
            platform=details.platform,
            meeting_url=details.meeting_url,
            meeting_id=details.meeting_id,
            meeting_password=details.password,
            host_email=config.host_email,
            guest_email=config.guest_email or appt.user_email,
        )
        return details

    async def _active_meeting_url(self, db: AsyncSession, appointment_id: int) -> Optional[str]:
        meeting = await get_meeting_for_appointment(db, appointment_id)
        if meeting is None or meeting.status != MEETING_ACTIVE:
            return None
        return meeting.meeting_url

    async def _mirror_create(self, db: AsyncSession, appt: Appointment, meeting_url: Optional[str]) -> Optional[str]:
        event = await self.calendar.create_event(
            user_name=appt.user_name,
            practitioner_name=appt.practitioner_name,
            session_type=appt.session_type,
            starts_at=self.scheduler.appointment_at(appt),
            duration_min=appt.duration,
            meeting_url=meeting_url,
            notes=appt.notes,
        )
        if not event or not event.get("event_id"):
            return None
        await appointment_crud.set_calendar_event_id(db, appt, event["event_id"])
        return event["event_id"]

    async def _mirror_update(self, appt: Appointment) -> None:
        if appt.calendar_event_id:
            await self.calendar.update_event(
                appt.calendar_event_id,
                starts_at=self.scheduler.appointment_at(appt),
                duration_min=appt.duration,
            )

    async def _mirror_delete(self, db: AsyncSession, appt: Appointment) -> None:
        if appt.calendar_event_id and await self.calendar.delete_event(appt.calendar_event_id):
            await appointment_crud.set_calendar_event_id(db, appt, None)

    async def _refresh_reminders(self, db: AsyncSession, appt: Appointment, meeting_url: Optional[str]) -> None:
        await self.scheduler.void_pending(db, appt.id)
        await self.scheduler.schedule_reminders(db, appt, meeting_url=meeting_url)

    async def _cascade_cancel(self, db: AsyncSession, appt: Appointment) -> None:
        meeting = await get_meeting_for_appointment(db, appt.id)
        if meeting is not None and meeting.status == MEETING_ACTIVE:
            await mark_meeting_cancelled(db, meeting)
        await self.scheduler.void_pending(db, appt.id)

    async def _notify(self, send: Callable[[], Awaitable[Any]], kind: str, appointment_id: int) -> None:
        result = await send()
        if not result.success:
            logger.warning("notification_not_delivered", appointment_id=appointment_id, kind=kind,
                           error=result.error)

    # ---- operations ----

    async def create_booking(self, db: AsyncSession, request: BookingRequest) -> BookingResult:
        """
        1) Insert the appointment (the only fatal step)
        2) Provision and store a video meeting, if one was requested
        3) Send the confirmation email
        4) Schedule reminder emails
        5) Mirror onto Google Calendar
        """
        try:
            appt = await appointment_crud.create_appointment(
                db,
                user_id=request.user_id,
                user_email=request.user_email,
                user_name=request.user_name,
                practitioner_id=request.practitioner_id,
                practitioner_name=request.practitioner_name,
                appointment_date=request.date,
                appointment_time=request.time,
                session_type=request.session_type,
                duration=request.duration or self.settings.DEFAULT_SESSION_DURATION,
                notes=request.notes,
            )
        except SQLAlchemyError as e:
            failed = _store_failure("booking", e)
            return BookingResult(**failed.model_dump())

        appointment_id = appt.id
        logger.info(
            "booking_created",
            appointment_id=appointment_id,
            user_id=request.user_id,
            practitioner_id=request.practitioner_id,
            date=request.date.isoformat(),
            time=request.time,
        )

        details: Optional[MeetingDetails] = None
        if request.meeting_config is not None:
            details = await self._best_effort(
                db, appt, "meeting_provision", appointment_id,
                lambda: self._attach_meeting(db, appt, request.meeting_config),
            )
        meeting_url = details.meeting_url if details else None

        await self._best_effort(
            db, appt, "confirmation", appointment_id,
            lambda: self._notify(lambda: self.dispatcher.send_confirmation(db, appt, meeting_url),
                                 "confirmation", appointment_id),
        )
        await self._best_effort(
            db, appt, "reminder_schedule", appointment_id,
            lambda: self.scheduler.schedule_reminders(db, appt, meeting_url=meeting_url),
        )
        await self._best_effort(
            db, appt, "calendar_create", appointment_id,
            lambda: self._mirror_create(db, appt, meeting_url),
        )

        return BookingResult(success=True, appointment_id=appointment_id, meeting_details=details)

    async def reschedule_appointment(
        self,
        db: AsyncSession,
        appointment_id: int,
        user_id: str,
        new_date: _Date,
        new_time: str,
    ) -> OperationResult:
        try:
            parse_time_of_day(new_time)
        except ValueError as e:
            return OperationResult(success=False, appointment_id=appointment_id,
                                   error=str(e), error_code=ERROR_INVALID_REQUEST)

        try:
            appt = await appointment_crud.get_owned_appointment(db, appointment_id, user_id)
        except SQLAlchemyError as e:
            return _store_failure("reschedule", e, appointment_id)

        if appt is None:
            logger.info("reschedule_rejected", appointment_id=appointment_id, reason="not_found")
            return _failure(AppointmentNotFound("Appointment not found", appointment_id=appointment_id),
                            ERROR_NOT_FOUND)
        if appt.status == STATUS_CANCELLED:
            logger.info("reschedule_rejected", appointment_id=appointment_id, reason="cancelled")
            return _failure(InvalidStatusTransition(appt.status, STATUS_RESCHEDULED, appointment_id=appointment_id),
                            ERROR_INVALID_TRANSITION)

        old_date, old_time = appt.date, appt.time
        try:
            await appointment_crud.reschedule_appointment(db, appt, new_date=new_date, new_time=new_time.strip())
        except SQLAlchemyError as e:
            return _store_failure("reschedule", e, appointment_id)

        logger.info(
            "appointment_rescheduled",
            appointment_id=appointment_id,
            old_date=old_date.isoformat(),
            old_time=old_time,
            new_date=new_date.isoformat(),
            new_time=appt.time,
        )

        # the meeting link is kept as is
        meeting_url = await self._best_effort(
            db, appt, "meeting_lookup", appointment_id,
            lambda: self._active_meeting_url(db, appointment_id),
        )
        await self._best_effort(
            db, appt, "rescheduling_notification", appointment_id,
            lambda: self._notify(lambda: self.dispatcher.send_rescheduling(db, appt, meeting_url),
                                 "rescheduling", appointment_id),
        )
        if self.settings.RESCHEDULE_REFRESH_REMINDERS:
            await self._best_effort(
                db, appt, "reminder_refresh", appointment_id,
                lambda: self._refresh_reminders(db, appt, meeting_url),
            )
        await self._best_effort(db, appt, "calendar_update", appointment_id, lambda: self._mirror_update(appt))

        return OperationResult(success=True, appointment_id=appointment_id)

    async def cancel_appointment(
        self,
        db: AsyncSession,
        appointment_id: int,
        user_id: str,
        reason: Optional[str] = None,
    ) -> OperationResult:
        try:
            appt = await appointment_crud.get_owned_appointment(db, appointment_id, user_id)
        except SQLAlchemyError as e:
            return _store_failure("cancel", e, appointment_id)

        if appt is None:
            logger.info("cancel_rejected", appointment_id=appointment_id, reason="not_found")
            return _failure(AppointmentNotFound("Appointment not found", appointment_id=appointment_id),
                            ERROR_NOT_FOUND)
        if appt.status == STATUS_CANCELLED:
            logger.info("cancel_rejected", appointment_id=appointment_id, reason="already_cancelled")
            return _failure(InvalidStatusTransition(appt.status, STATUS_CANCELLED, appointment_id=appointment_id),
                            ERROR_INVALID_TRANSITION)

        try:
            await appointment_crud.cancel_appointment(db, appt, reason=reason)
        except SQLAlchemyError as e:
            return _store_failure("cancel", e, appointment_id)

        logger.info("appointment_cancelled", appointment_id=appointment_id, has_reason=bool(reason))

        await self._best_effort(
            db, appt, "cancellation_notification", appointment_id,
            lambda: self._notify(lambda: self.dispatcher.send_cancellation(db, appt, reason),
                                 "cancellation", appointment_id),
        )
        if self.settings.CANCEL_CASCADE:
            await self._best_effort(db, appt, "cancel_cascade", appointment_id,
                                    lambda: self._cascade_cancel(db, appt))
        await self._best_effort(db, appt, "calendar_delete", appointment_id,
                                lambda: self._mirror_delete(db, appt))

        return OperationResult(success=True, appointment_id=appointment_id)

    async def list_appointments(
        self,
        db: AsyncSession,
        user_id: str,
        *,
        include_cancelled: bool = False,
        start_date: Optional[_Date] = None,
        end_date: Optional[_Date] = None,
    ) -> Sequence[Appointment]:
        return await appointment_crud.list_appointments(
            db,
            user_id=user_id,
            start_date=start_date,
            end_date=end_date,
            include_cancelled=include_cancelled,
        )
