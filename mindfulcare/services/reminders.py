# mindfulcare/services/reminders.py
"""
Reminder scheduling.

Booking writes one pending row per offset into `appointment_reminders`;
`dispatch_due()` is the polling side that a worker process runs to send
whatever has come due. Reminders are never written with a fire time in the past.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from mindfulcare.core.logging import get_logger
from mindfulcare.crud.notification import (
    create_reminders,
    get_due_reminders,
    mark_reminder_sent,
    void_pending_reminders,
)
from mindfulcare.db.models.appointment import Appointment
from mindfulcare.db.models.notification import AppointmentReminder
from mindfulcare.services.notification_templates import NotificationFacts, NotificationKind

logger = get_logger(__name__)

UTC = timezone.utc

_TIME_FORMATS = ("%I:%M %p", "%I:%M%p", "%I %p", "%I%p", "%H:%M", "%H:%M:%S")
_OFFSET_TOKEN = re.compile(r"(\d+)\s*([dh])", re.IGNORECASE)


@dataclass(frozen=True)
class ReminderOffset:
    days: int = 0
    hours: int = 0

    def __post_init__(self):
        if self.days < 0 or self.hours < 0:
            raise ValueError("reminder offsets must not be negative")

    @property
    def label(self) -> str:
        parts = []
        if self.days:
            parts.append(f"{self.days}d")
        if self.hours or not parts:
            parts.append(f"{self.hours}h")
        return "".join(parts)


DEFAULT_OFFSETS = (ReminderOffset(days=1), ReminderOffset(days=0, hours=1))


def parse_offsets(raw: str) -> list[ReminderOffset]:
    """'1d,1h' -> [ReminderOffset(days=1), ReminderOffset(hours=1)]; '1d6h' is one offset."""
    offsets = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        tokens = _OFFSET_TOKEN.findall(chunk)
        if not tokens or _OFFSET_TOKEN.sub("", chunk).strip():
            raise ValueError(f"Invalid reminder offset {chunk!r} (expected e.g. '1d', '2h', '1d6h')")
        days = sum(int(n) for n, unit in tokens if unit.lower() == "d")
        hours = sum(int(n) for n, unit in tokens if unit.lower() == "h")
        offsets.append(ReminderOffset(days=days, hours=hours))
    return offsets


def parse_time_of_day(label: str) -> time:
    """Accepts '10:00 AM', '10:00AM', '10 AM', '14:00' and '14:00:00'."""
    cleaned = " ".join(label.strip().upper().split())
    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized time of day: {label!r}")


def appointment_instant(day: date, time_label: str, tz: ZoneInfo) -> datetime:
    """Local calendar date + time label -> aware datetime in `tz`."""
    return datetime.combine(day, parse_time_of_day(time_label), tzinfo=tz)


def compute_fire_times(
    appointment_at: datetime,
    offsets: Iterable[ReminderOffset],
    now: datetime,
) -> list[tuple[ReminderOffset, datetime]]:
    """Fire instants (UTC) that are still strictly in the future."""
    result = []
    for offset in offsets:
        # days move on the local wall clock so "1 day before" keeps its hour across DST;
        # hours are elapsed time before the appointment instant
        local_day = appointment_at - timedelta(days=offset.days)
        fire_at = local_day.astimezone(UTC) - timedelta(hours=offset.hours)
        if fire_at > now:
            result.append((offset, fire_at))
    return result


@dataclass
class ReminderRunSummary:
    due: int = 0
    sent: int = 0
    failed: int = 0


class ReminderScheduler:
    def __init__(
        self,
        offsets: Sequence[ReminderOffset] = DEFAULT_OFFSETS,
        *,
        tz: ZoneInfo = ZoneInfo("UTC"),
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        app_base_url: str = "",
    ):
        self.offsets = tuple(offsets)
        self.tz = tz
        self.clock = clock
        self.app_base_url = app_base_url

    def appointment_at(self, appointment: Appointment) -> datetime:
        return appointment_instant(appointment.date, appointment.time, self.tz)

    async def schedule_reminders(
        self,
        db: AsyncSession,
        appointment: Appointment,
        offsets: Optional[Sequence[ReminderOffset]] = None,
        *,
        meeting_url: Optional[str] = None,
    ) -> list[AppointmentReminder]:
        appointment_at = self.appointment_at(appointment)
        now = self.clock()
        fire_times = compute_fire_times(appointment_at, offsets or self.offsets, now)

        skipped = len(offsets or self.offsets) - len(fire_times)
        if skipped:
            logger.info("reminders_skipped_past", appointment_id=appointment.id, skipped=skipped)

        rows = [
            AppointmentReminder(
                appointment_id=appointment.id,
                recipient_email=appointment.user_email,
                recipient_name=appointment.user_name,
                practitioner_name=appointment.practitioner_name,
                appointment_date=appointment_at.astimezone(UTC),
                reminder_date=fire_at,
                session_type=appointment.session_type,
                meeting_url=meeting_url,
                sent=False,
            )
            for _, fire_at in fire_times
        ]
        rows = await create_reminders(db, rows)
        logger.info(
            "reminders_scheduled",
            appointment_id=appointment.id,
            count=len(rows),
            offsets=[offset.label for offset, _ in fire_times],
        )
        return rows

    async def void_pending(self, db: AsyncSession, appointment_id: int) -> int:
        voided = await void_pending_reminders(db, appointment_id, now=self.clock())
        logger.info("reminders_voided", appointment_id=appointment_id, count=voided)
        return voided

    def facts_for(self, reminder: AppointmentReminder) -> NotificationFacts:
        local = reminder.appointment_date.astimezone(self.tz)
        return NotificationFacts(
            recipient_name=reminder.recipient_name,
            practitioner_name=reminder.practitioner_name,
            date=local.date(),
            time=local.strftime("%I:%M %p").lstrip("0"),
            session_type=reminder.session_type,
            meeting_url=reminder.meeting_url,
            app_base_url=self.app_base_url,
        )

    async def dispatch_due(
        self,
        db: AsyncSession,
        dispatcher,
        *,
        now: Optional[datetime] = None,
        limit: int = 100,
    ) -> ReminderRunSummary:
        """Send every reminder that has come due; failed ones stay pending for the next run."""
        now = now or self.clock()
        due = await get_due_reminders(db, now=now, limit=limit)
        summary = ReminderRunSummary(due=len(due))

        for reminder in due:
            result = await dispatcher.notify(
                db,
                NotificationKind.REMINDER,
                self.facts_for(reminder),
                to=reminder.recipient_email,
                appointment_id=reminder.appointment_id,
            )
            if result.success:
                await mark_reminder_sent(db, reminder, now=now)
                summary.sent += 1
            else:
                summary.failed += 1

        if due:
            logger.info("reminder_run_complete", due=summary.due, sent=summary.sent, failed=summary.failed)
        return summary
