#!/usr/bin/env python3
"""
Tests for reminder fire-time computation, persistence and the due-reminder worker.
"""

import pytest
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from conftest import FailingEmailProvider, NOW
from mindfulcare.crud.appointment import cancel_appointment, create_appointment
from mindfulcare.crud.notification import list_notification_logs, list_reminders
from mindfulcare.services.notifications import NotificationDispatcher
from mindfulcare.services.reminders import (
    DEFAULT_OFFSETS,
    ReminderOffset,
    ReminderScheduler,
    appointment_instant,
    compute_fire_times,
    parse_offsets,
    parse_time_of_day,
)

UTC = timezone.utc


async def _appointment(db, *, day=date(2025, 6, 1), at="10:00 AM", user_id="u1"):
    return await create_appointment(
        db,
        user_id=user_id,
        user_email="a@b.com",
        user_name="Alice",
        practitioner_id=1,
        practitioner_name="Dr. X",
        appointment_date=day,
        appointment_time=at,
        session_type="therapy",
    )


@pytest.mark.unit
class TestParsing:

    @pytest.mark.parametrize("label,expected", [
        ("10:00 AM", time(10, 0)),
        ("10:00AM", time(10, 0)),
        ("10 AM", time(10, 0)),
        ("2:30 pm", time(14, 30)),
        ("14:00", time(14, 0)),
        ("14:00:00", time(14, 0)),
        ("12:15 AM", time(0, 15)),
    ])
    def test_time_formats(self, label, expected):
        assert parse_time_of_day(label) == expected

    def test_unparseable_time_raises(self):
        with pytest.raises(ValueError):
            parse_time_of_day("noonish")

    def test_parse_offsets(self):
        assert parse_offsets("1d,1h") == [ReminderOffset(days=1), ReminderOffset(hours=1)]
        assert parse_offsets("2d12h, 30h") == [ReminderOffset(days=2, hours=12), ReminderOffset(hours=30)]
        assert parse_offsets("") == []

    @pytest.mark.parametrize("raw", ["1w", "d", "1d-2h", "tomorrow"])
    def test_parse_offsets_rejects_garbage(self, raw):
        with pytest.raises(ValueError):
            parse_offsets(raw)

    def test_negative_offset_rejected(self):
        with pytest.raises(ValueError):
            ReminderOffset(days=-1)


@pytest.mark.unit
class TestComputeFireTimes:

    def test_scenario_c_two_days_out_keeps_both(self):
        appointment_at = NOW + timedelta(days=2)
        fire_times = compute_fire_times(appointment_at, DEFAULT_OFFSETS, NOW)

        assert [f for _, f in fire_times] == [
            appointment_at - timedelta(days=1),
            appointment_at - timedelta(hours=1),
        ]

    def test_scenario_d_thirty_minutes_out_keeps_none(self):
        appointment_at = NOW + timedelta(minutes=30)
        assert compute_fire_times(appointment_at, [ReminderOffset(days=1)], NOW) == []
        assert compute_fire_times(appointment_at, DEFAULT_OFFSETS, NOW) == []

    def test_fire_time_equal_to_now_is_skipped(self):
        appointment_at = NOW + timedelta(hours=1)
        assert compute_fire_times(appointment_at, [ReminderOffset(hours=1)], NOW) == []

    def test_day_offset_is_wall_clock_across_dst(self):
        # US DST starts 2025-03-09; "one day before" 10:00 is still 10:00 local
        tz = ZoneInfo("America/New_York")
        appointment_at = appointment_instant(date(2025, 3, 9), "10:00 AM", tz)
        now = datetime(2025, 3, 1, tzinfo=UTC)

        [(_, fire_at)] = compute_fire_times(appointment_at, [ReminderOffset(days=1)], now)

        assert fire_at.astimezone(tz).hour == 10
        assert fire_at == datetime(2025, 3, 8, 15, 0, tzinfo=UTC)

    def test_hour_offset_is_elapsed_time_across_spring_forward(self):
        # 2:00-3:00 local does not exist on 2025-03-09; one hour before 3:30 EDT is 1:30 EST
        tz = ZoneInfo("America/New_York")
        appointment_at = appointment_instant(date(2025, 3, 9), "3:30 AM", tz)
        now = datetime(2025, 3, 1, tzinfo=UTC)

        [(_, fire_at)] = compute_fire_times(appointment_at, [ReminderOffset(hours=1)], now)

        assert appointment_at.astimezone(UTC) == datetime(2025, 3, 9, 7, 30, tzinfo=UTC)
        assert fire_at == datetime(2025, 3, 9, 6, 30, tzinfo=UTC)
        assert appointment_at.astimezone(UTC) - fire_at == timedelta(hours=1)

    def test_hour_offset_is_elapsed_time_across_fall_back(self):
        # 1:00-2:00 local happens twice on 2025-11-02
        tz = ZoneInfo("America/New_York")
        appointment_at = appointment_instant(date(2025, 11, 2), "3:00 AM", tz)
        now = datetime(2025, 11, 1, tzinfo=UTC)

        [(_, fire_at)] = compute_fire_times(appointment_at, [ReminderOffset(hours=2)], now)

        assert fire_at == datetime(2025, 11, 2, 6, 0, tzinfo=UTC)
        assert appointment_at.astimezone(UTC) - fire_at == timedelta(hours=2)

    def test_appointment_instant_uses_timezone(self):
        at = appointment_instant(date(2025, 6, 1), "10:00 AM", ZoneInfo("Europe/London"))
        assert at.astimezone(UTC) == datetime(2025, 6, 1, 9, 0, tzinfo=UTC)


@pytest.mark.integration
class TestScheduleReminders:

    @pytest.mark.asyncio
    async def test_scenario_c_persists_two_pending_rows(self, db, clock):
        appt = await _appointment(db, day=date(2025, 6, 1), at="9:00 AM")  # 2 days from NOW
        scheduler = ReminderScheduler(DEFAULT_OFFSETS, clock=clock)

        rows = await scheduler.schedule_reminders(db, appt, meeting_url="https://zoom.us/j/1")

        assert len(rows) == 2
        stored = await list_reminders(db, appt.id)
        assert len(stored) == 2
        assert all(r.sent is False for r in stored)
        assert all(r.meeting_url == "https://zoom.us/j/1" for r in stored)
        assert stored[0].recipient_email == "a@b.com"
        assert stored[0].practitioner_name == "Dr. X"

    @pytest.mark.asyncio
    async def test_scenario_d_persists_nothing(self, db, clock):
        appt = await _appointment(db, day=date(2025, 5, 30), at="9:30 AM")  # 30 minutes from NOW
        scheduler = ReminderScheduler([ReminderOffset(days=1)], clock=clock)

        rows = await scheduler.schedule_reminders(db, appt)

        assert rows == []
        assert await list_reminders(db, appt.id) == []

    @pytest.mark.asyncio
    async def test_explicit_offsets_override_defaults(self, db, clock):
        appt = await _appointment(db)
        scheduler = ReminderScheduler(DEFAULT_OFFSETS, clock=clock)

        rows = await scheduler.schedule_reminders(db, appt, [ReminderOffset(hours=3)])

        assert len(rows) == 1
        assert rows[0].reminder_date == datetime(2025, 6, 1, 7, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_void_pending(self, db, clock):
        appt = await _appointment(db)
        scheduler = ReminderScheduler(DEFAULT_OFFSETS, clock=clock)
        await scheduler.schedule_reminders(db, appt)

        assert await scheduler.void_pending(db, appt.id) == 2
        assert await scheduler.void_pending(db, appt.id) == 0
        assert await list_reminders(db, appt.id, include_voided=False) == []


@pytest.mark.integration
class TestDispatchDue:

    @pytest.mark.asyncio
    async def test_sends_due_reminders_and_marks_them(self, db, clock, email_provider):
        appt = await _appointment(db)
        scheduler = ReminderScheduler(DEFAULT_OFFSETS, clock=clock)
        await scheduler.schedule_reminders(db, appt, meeting_url="https://meet.google.com/abc-defg-hij")
        dispatcher = NotificationDispatcher(email_provider)

        # nothing due yet
        summary = await scheduler.dispatch_due(db, dispatcher)
        assert summary.due == 0

        # the day-before reminder comes due
        clock.advance(days=1, hours=2)
        summary = await scheduler.dispatch_due(db, dispatcher)
        assert (summary.due, summary.sent, summary.failed) == (1, 1, 0)

        reminders = await list_reminders(db, appt.id)
        assert [r.sent for r in reminders] == [True, False]
        assert reminders[0].sent_at == clock.now

        message = email_provider.sent[0]
        assert message["subject"] == "Reminder: Your appointment with Dr. X on Sunday, June 1, 2025 at 10:00 AM"
        assert "https://meet.google.com/abc-defg-hij" in message["body"]

        # already sent, not picked up again
        summary = await scheduler.dispatch_due(db, dispatcher)
        assert summary.due == 0

    @pytest.mark.asyncio
    async def test_failed_send_stays_pending(self, db, clock):
        appt = await _appointment(db)
        scheduler = ReminderScheduler(DEFAULT_OFFSETS, clock=clock)
        await scheduler.schedule_reminders(db, appt)
        dispatcher = NotificationDispatcher(FailingEmailProvider())

        clock.advance(days=3)
        summary = await scheduler.dispatch_due(db, dispatcher)

        assert (summary.due, summary.sent, summary.failed) == (2, 0, 2)
        assert all(r.sent is False for r in await list_reminders(db, appt.id))
        logs = await list_notification_logs(db, appointment_id=appt.id)
        assert [l.status for l in logs] == ["error", "error"]

    @pytest.mark.asyncio
    async def test_skips_cancelled_appointments(self, db, clock, email_provider):
        appt = await _appointment(db)
        scheduler = ReminderScheduler(DEFAULT_OFFSETS, clock=clock)
        await scheduler.schedule_reminders(db, appt)
        await cancel_appointment(db, appt)

        clock.advance(days=3)
        summary = await scheduler.dispatch_due(db, NotificationDispatcher(email_provider))

        assert summary.due == 0
        assert email_provider.sent == []

    @pytest.mark.asyncio
    async def test_skips_voided_reminders(self, db, clock, email_provider):
        appt = await _appointment(db)
        scheduler = ReminderScheduler(DEFAULT_OFFSETS, clock=clock)
        await scheduler.schedule_reminders(db, appt)
        await scheduler.void_pending(db, appt.id)

        clock.advance(days=3)
        summary = await scheduler.dispatch_due(db, NotificationDispatcher(email_provider))

        assert summary.due == 0
