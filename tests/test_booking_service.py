#!/usr/bin/env python3
"""
Tests for the booking orchestrator: create, reschedule and cancel against a
real (in-memory SQLite) store with fake providers at the edges.
"""

import pytest
from datetime import date, datetime
from unittest.mock import AsyncMock, patch

from sqlalchemy.exc import OperationalError

from conftest import FailingEmailProvider, FailingMeetingAdapter
from mindfulcare.crud.appointment import get_appointment
from mindfulcare.crud.meeting import get_meeting_for_appointment
from mindfulcare.crud.notification import list_notification_logs, list_reminders
from mindfulcare.db.models.meeting import MEETING_ACTIVE, MEETING_CANCELLED
from mindfulcare.services.booking import (
    ERROR_INVALID_TRANSITION,
    ERROR_NOT_FOUND,
    ERROR_STORE,
    BookingRequest,
    MeetingConfig,
)


def _request(payload, **overrides):
    data = dict(payload)
    data.update(overrides)
    return BookingRequest(**data)


class TestCreateBooking:
    """Scenarios A and B plus best-effort failure handling"""

    @pytest.mark.asyncio
    async def test_scenario_a_booking_without_meeting(self, db, booking_service, booking_payload, email_provider):
        result = await booking_service.create_booking(db, _request(booking_payload))

        assert result.success is True
        assert result.appointment_id is not None
        assert result.meeting_details is None

        appt = await get_appointment(db, result.appointment_id)
        assert appt.status == "confirmed"
        assert appt.duration == 50
        assert appt.date == date(2025, 6, 1)
        assert appt.time == "10:00 AM"

        logs = await list_notification_logs(db, appointment_id=result.appointment_id)
        assert [(l.notification_type, l.status) for l in logs] == [("confirmation", "sent")]
        assert await get_meeting_for_appointment(db, result.appointment_id) is None

        assert len(email_provider.sent) == 1
        assert email_provider.sent[0]["to"] == "a@b.com"
        assert "Dr. X" in email_provider.sent[0]["subject"]

    @pytest.mark.asyncio
    async def test_scenario_b_booking_with_zoom_meeting(self, db, booking_service, booking_payload, email_provider):
        request = _request(booking_payload, meeting_config=MeetingConfig(platform="zoom", host_email="dr@x.com"))
        result = await booking_service.create_booking(db, request)

        assert result.success is True
        assert result.meeting_details is not None
        assert result.meeting_details.platform == "zoom"

        meeting = await get_meeting_for_appointment(db, result.appointment_id)
        assert meeting.platform == "zoom"
        assert meeting.meeting_url
        assert meeting.meeting_url == result.meeting_details.meeting_url
        assert meeting.host_email == "dr@x.com"
        assert meeting.guest_email == "a@b.com"
        assert meeting.status == MEETING_ACTIVE

        # confirmation carries the link
        assert meeting.meeting_url in email_provider.sent[0]["body"]

    @pytest.mark.asyncio
    async def test_booking_schedules_both_default_reminders(self, db, booking_service, booking_payload):
        result = await booking_service.create_booking(db, _request(booking_payload))

        reminders = await list_reminders(db, result.appointment_id)
        assert len(reminders) == 2
        assert all(r.sent is False for r in reminders)
        assert [r.reminder_date.isoformat() for r in reminders] == [
            "2025-05-31T10:00:00+00:00",
            "2025-06-01T09:00:00+00:00",
        ]

    @pytest.mark.asyncio
    async def test_failed_log_write_still_schedules_reminders(self, db, booking_service, booking_payload,
                                                               email_provider):
        async def failing_log_write(session, **fields):
            # same effect as a failed commit inside the crud helper
            await session.rollback()
            raise OperationalError("INSERT", {}, Exception("disk full"))

        with patch("mindfulcare.services.notifications.create_notification_log", side_effect=failing_log_write):
            result = await booking_service.create_booking(db, _request(booking_payload))

        assert result.success is True
        assert len(email_provider.sent) == 1
        reminders = await list_reminders(db, result.appointment_id)
        assert len(reminders) == 2
        stored = await get_appointment(db, result.appointment_id)
        assert stored.status == "confirmed"

    @pytest.mark.asyncio
    async def test_meeting_failure_does_not_fail_booking(self, db, make_service, booking_payload, email_provider):
        adapter = FailingMeetingAdapter()
        service = make_service(adapter=adapter)

        request = _request(booking_payload, meeting_config=MeetingConfig(platform="zoom"))
        result = await service.create_booking(db, request)

        assert adapter.calls == 1
        assert result.success is True
        assert result.appointment_id is not None
        assert result.meeting_details is None
        assert await get_meeting_for_appointment(db, result.appointment_id) is None
        # later steps still ran
        assert len(email_provider.sent) == 1
        assert len(await list_reminders(db, result.appointment_id)) == 2

    @pytest.mark.asyncio
    async def test_unexpected_meeting_error_is_also_tolerated(self, db, make_service, booking_payload):
        service = make_service(adapter=FailingMeetingAdapter(RuntimeError("sdk blew up")))

        request = _request(booking_payload, meeting_config=MeetingConfig(platform="microsoft-teams"))
        result = await service.create_booking(db, request)

        assert result.success is True
        assert result.meeting_details is None

    @pytest.mark.asyncio
    async def test_email_failure_logs_error_and_booking_succeeds(self, db, make_service, booking_payload):
        provider = FailingEmailProvider("quota exceeded")
        service = make_service(provider=provider)

        result = await service.create_booking(db, _request(booking_payload))

        assert result.success is True
        logs = await list_notification_logs(db, appointment_id=result.appointment_id)
        assert len(logs) == 1
        assert logs[0].status == "error"
        assert "quota exceeded" in logs[0].error_message
        assert logs[0].provider == "failing"

    @pytest.mark.asyncio
    async def test_insert_failure_is_the_only_fatal_step(self, db, booking_service, booking_payload, email_provider):
        with patch(
            "mindfulcare.services.booking.appointment_crud.create_appointment",
            new_callable=AsyncMock,
            side_effect=OperationalError("INSERT", {}, Exception("database is locked")),
        ):
            result = await booking_service.create_booking(db, _request(booking_payload))

        assert result.success is False
        assert result.error_code == ERROR_STORE
        assert "database is locked" in result.error
        assert result.appointment_id is None
        assert email_provider.sent == []

    @pytest.mark.asyncio
    async def test_calendar_event_id_is_stored(self, db, booking_service, booking_payload, calendar):
        result = await booking_service.create_booking(db, _request(booking_payload))

        appt = await get_appointment(db, result.appointment_id)
        assert appt.calendar_event_id == "evt-1"
        assert calendar.created[0]["starts_at"] == datetime.fromisoformat("2025-06-01T10:00:00+00:00")

    @pytest.mark.asyncio
    async def test_unknown_platform_gets_generic_link(self, db, booking_service, booking_payload):
        request = _request(booking_payload, meeting_config=MeetingConfig(platform="skype"))
        result = await booking_service.create_booking(db, request)

        assert result.meeting_details.platform == "generic"
        assert result.meeting_details.meeting_url.startswith("https://meet.test/room/")

    def test_request_rejects_unparseable_time(self, booking_payload):
        with pytest.raises(ValueError):
            _request(booking_payload, time="half past ten")


class TestRescheduleAppointment:

    @pytest.mark.asyncio
    async def test_reschedule_changes_only_date_time_status(self, db, booking_service, booking_payload, clock):
        created = await booking_service.create_booking(db, _request(booking_payload, notes="first visit"))
        before = await get_appointment(db, created.appointment_id)
        snapshot = {
            k: getattr(before, k)
            for k in ("user_id", "practitioner_id", "practitioner_name", "session_type", "notes", "duration", "created_at")
        }

        result = await booking_service.reschedule_appointment(
            db, created.appointment_id, "u1", date(2025, 6, 3), "2:30 PM"
        )

        assert result.success is True
        after = await get_appointment(db, created.appointment_id)
        assert after.id == created.appointment_id
        assert after.date == date(2025, 6, 3)
        assert after.time == "2:30 PM"
        assert after.status == "rescheduled"
        assert {k: getattr(after, k) for k in snapshot} == snapshot

    @pytest.mark.asyncio
    async def test_reschedule_sends_notification_with_existing_link(self, db, booking_service, booking_payload,
                                                                   email_provider):
        created = await booking_service.create_booking(
            db, _request(booking_payload, meeting_config=MeetingConfig(platform="google-meet"))
        )
        original_url = created.meeting_details.meeting_url

        await booking_service.reschedule_appointment(db, created.appointment_id, "u1", date(2025, 6, 3), "14:00")

        meeting = await get_meeting_for_appointment(db, created.appointment_id)
        assert meeting.meeting_url == original_url

        logs = await list_notification_logs(db, appointment_id=created.appointment_id)
        assert [l.notification_type for l in logs] == ["confirmation", "rescheduling"]
        assert original_url in email_provider.sent[-1]["body"]
        assert "New Date" in email_provider.sent[-1]["body"]

    @pytest.mark.asyncio
    async def test_reschedule_wrong_user_is_not_found(self, db, booking_service, booking_payload):
        created = await booking_service.create_booking(db, _request(booking_payload))

        result = await booking_service.reschedule_appointment(
            db, created.appointment_id, "someone-else", date(2025, 6, 3), "2:30 PM"
        )

        assert result.success is False
        assert result.error_code == ERROR_NOT_FOUND
        appt = await get_appointment(db, created.appointment_id)
        assert appt.status == "confirmed"
        assert appt.date == date(2025, 6, 1)

    @pytest.mark.asyncio
    async def test_reschedule_keeps_old_reminders_by_default(self, db, booking_service, booking_payload):
        created = await booking_service.create_booking(db, _request(booking_payload))

        await booking_service.reschedule_appointment(db, created.appointment_id, "u1", date(2025, 6, 5), "10:00 AM")

        reminders = await list_reminders(db, created.appointment_id)
        # stale reminders still target the original time
        assert len(reminders) == 2
        assert all(r.voided_at is None for r in reminders)
        assert reminders[0].appointment_date.isoformat() == "2025-06-01T10:00:00+00:00"

    @pytest.mark.asyncio
    async def test_reschedule_refreshes_reminders_when_enabled(self, db, make_service, booking_payload):
        service = make_service(RESCHEDULE_REFRESH_REMINDERS=True)
        created = await service.create_booking(db, _request(booking_payload))

        await service.reschedule_appointment(db, created.appointment_id, "u1", date(2025, 6, 5), "10:00 AM")

        active = await list_reminders(db, created.appointment_id, include_voided=False)
        assert len(active) == 2
        assert {r.appointment_date.isoformat() for r in active} == {"2025-06-05T10:00:00+00:00"}
        everything = await list_reminders(db, created.appointment_id)
        assert sum(1 for r in everything if r.voided_at is not None) == 2

    @pytest.mark.asyncio
    async def test_reschedule_twice_is_allowed(self, db, booking_service, booking_payload):
        created = await booking_service.create_booking(db, _request(booking_payload))

        first = await booking_service.reschedule_appointment(db, created.appointment_id, "u1", date(2025, 6, 3), "9 AM")
        second = await booking_service.reschedule_appointment(db, created.appointment_id, "u1", date(2025, 6, 4), "9 AM")

        assert first.success and second.success
        assert (await get_appointment(db, created.appointment_id)).date == date(2025, 6, 4)

    @pytest.mark.asyncio
    async def test_reschedule_updates_calendar_event(self, db, booking_service, booking_payload, calendar):
        created = await booking_service.create_booking(db, _request(booking_payload))

        await booking_service.reschedule_appointment(db, created.appointment_id, "u1", date(2025, 6, 3), "2:30 PM")

        assert calendar.updated[0][0] == "evt-1"
        assert calendar.updated[0][1]["starts_at"].isoformat() == "2025-06-03T14:30:00+00:00"

    @pytest.mark.asyncio
    async def test_reschedule_rejects_bad_time_without_mutation(self, db, booking_service, booking_payload):
        created = await booking_service.create_booking(db, _request(booking_payload))

        result = await booking_service.reschedule_appointment(db, created.appointment_id, "u1", date(2025, 6, 3), "soon")

        assert result.success is False
        assert (await get_appointment(db, created.appointment_id)).status == "confirmed"


class TestCancelAppointment:

    @pytest.mark.asyncio
    async def test_scenario_e_wrong_user_cannot_cancel(self, db, booking_service, booking_payload):
        created = await booking_service.create_booking(db, _request(booking_payload))

        result = await booking_service.cancel_appointment(db, created.appointment_id, "wrong-user")

        assert result.success is False
        assert result.error_code == ERROR_NOT_FOUND
        assert (await get_appointment(db, created.appointment_id)).status == "confirmed"

    @pytest.mark.asyncio
    async def test_cancel_sets_status_reason_and_timestamp(self, db, booking_service, booking_payload, email_provider):
        created = await booking_service.create_booking(
            db, _request(booking_payload, meeting_config=MeetingConfig(platform="zoom"))
        )

        result = await booking_service.cancel_appointment(db, created.appointment_id, "u1", reason="Feeling unwell")

        assert result.success is True
        appt = await get_appointment(db, created.appointment_id)
        assert appt.status == "cancelled"
        assert appt.cancelled_at is not None
        assert appt.cancellation_reason == "Feeling unwell"

        body = email_provider.sent[-1]["body"]
        assert "Feeling unwell" in body
        assert created.meeting_details.meeting_url not in body

    @pytest.mark.asyncio
    async def test_cancel_leaves_meeting_and_reminders_by_default(self, db, booking_service, booking_payload):
        created = await booking_service.create_booking(
            db, _request(booking_payload, meeting_config=MeetingConfig(platform="zoom"))
        )

        await booking_service.cancel_appointment(db, created.appointment_id, "u1")

        meeting = await get_meeting_for_appointment(db, created.appointment_id)
        assert meeting.status == MEETING_ACTIVE
        reminders = await list_reminders(db, created.appointment_id)
        assert all(r.voided_at is None for r in reminders)

    @pytest.mark.asyncio
    async def test_cancel_cascade_cancels_meeting_and_voids_reminders(self, db, make_service, booking_payload):
        service = make_service(CANCEL_CASCADE=True)
        created = await service.create_booking(
            db, _request(booking_payload, meeting_config=MeetingConfig(platform="zoom"))
        )

        await service.cancel_appointment(db, created.appointment_id, "u1")

        meeting = await get_meeting_for_appointment(db, created.appointment_id)
        assert meeting.status == MEETING_CANCELLED
        assert await list_reminders(db, created.appointment_id, include_voided=False) == []

    @pytest.mark.asyncio
    async def test_cancelled_appointment_cannot_be_cancelled_or_rescheduled(self, db, booking_service,
                                                                           booking_payload, email_provider):
        created = await booking_service.create_booking(db, _request(booking_payload))
        await booking_service.cancel_appointment(db, created.appointment_id, "u1", reason="first")
        sent_before = len(email_provider.sent)

        again = await booking_service.cancel_appointment(db, created.appointment_id, "u1", reason="second")
        moved = await booking_service.reschedule_appointment(
            db, created.appointment_id, "u1", date(2025, 6, 9), "10:00 AM"
        )

        assert again.success is False and again.error_code == ERROR_INVALID_TRANSITION
        assert moved.success is False and moved.error_code == ERROR_INVALID_TRANSITION

        appt = await get_appointment(db, created.appointment_id)
        assert appt.status == "cancelled"
        assert appt.cancellation_reason == "first"
        assert appt.date == date(2025, 6, 1)
        assert len(email_provider.sent) == sent_before

    @pytest.mark.asyncio
    async def test_cancel_deletes_calendar_event(self, db, booking_service, booking_payload, calendar):
        created = await booking_service.create_booking(db, _request(booking_payload))

        await booking_service.cancel_appointment(db, created.appointment_id, "u1")

        assert calendar.deleted == ["evt-1"]
        assert (await get_appointment(db, created.appointment_id)).calendar_event_id is None


class TestListAppointments:

    @pytest.mark.asyncio
    async def test_lists_own_appointments_in_date_order(self, db, booking_service, booking_payload):
        later = await booking_service.create_booking(db, _request(booking_payload, date="2025-06-10"))
        sooner = await booking_service.create_booking(db, _request(booking_payload, date="2025-06-02"))
        await booking_service.create_booking(db, _request(booking_payload, user_id="u2"))
        cancelled = await booking_service.create_booking(db, _request(booking_payload, date="2025-06-05"))
        await booking_service.cancel_appointment(db, cancelled.appointment_id, "u1")

        rows = await booking_service.list_appointments(db, "u1")
        assert [r.id for r in rows] == [sooner.appointment_id, later.appointment_id]

        with_cancelled = await booking_service.list_appointments(db, "u1", include_cancelled=True)
        assert [r.id for r in with_cancelled] == [
            sooner.appointment_id, cancelled.appointment_id, later.appointment_id
        ]
