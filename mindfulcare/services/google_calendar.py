# mindfulcare/services/google_calendar.py
"""
Google Calendar mirror for appointments.
Creates, moves and removes one calendar event per appointment so practitioners
see their sessions in their own calendar. Every call is best effort: failures are
logged and reported as None/False, never raised.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mindfulcare.core.config import Settings

logger = logging.getLogger(__name__)

CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]

_calendar_service = None


def build_calendar_service(service_account_json: Optional[str]):
    """Build a Calendar v3 client from service account JSON, or None if unusable."""
    if not service_account_json:
        logger.warning("GOOGLE_SERVICE_ACCOUNT_JSON not set, calendar integration disabled")
        return None

    try:
        credentials_info = json.loads(service_account_json)
    except json.JSONDecodeError as e:
        logger.error("Invalid JSON in GOOGLE_SERVICE_ACCOUNT_JSON: %s", e)
        return None

    try:
        credentials = service_account.Credentials.from_service_account_info(
            credentials_info,
            scopes=CALENDAR_SCOPES,
        )
        service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
    except (ValueError, KeyError) as e:
        logger.error("Failed to initialize Google Calendar service: %s", e)
        return None

    logger.info("Google Calendar service initialized successfully")
    return service


def get_calendar_service(settings: Settings):
    """Get or create the shared Calendar client when the mirror is enabled."""
    global _calendar_service

    if _calendar_service is not None:
        return _calendar_service

    if not settings.GOOGLE_CALENDAR_ENABLED:
        logger.info("Google Calendar integration disabled via GOOGLE_CALENDAR_ENABLED")
        return None

    _calendar_service = build_calendar_service(settings.GOOGLE_SERVICE_ACCOUNT_JSON)
    return _calendar_service


def _event_body(
    *,
    user_name: str,
    practitioner_name: str,
    session_type: str,
    starts_at: datetime,
    duration_min: int,
    meeting_url: Optional[str],
    notes: Optional[str],
) -> Dict[str, Any]:
    ends_at = starts_at + timedelta(minutes=duration_min)
    description = "\n".join(
        line for line in (
            "Session Details:",
            f"• Client: {user_name}",
            f"• Practitioner: {practitioner_name}",
            f"• Session type: {session_type}",
            f"• Duration: {duration_min} minutes",
            f"• Join: {meeting_url}" if meeting_url else "",
            f"\nNotes: {notes}" if notes else "",
        ) if line
    )
    return {
        "summary": f"{session_type.title()} session: {user_name} with {practitioner_name}",
        "description": description,
        "start": {"dateTime": starts_at.isoformat(), "timeZone": str(starts_at.tzinfo or "UTC")},
        "end": {"dateTime": ends_at.isoformat(), "timeZone": str(ends_at.tzinfo or "UTC")},
        "reminders": {
            "useDefault": False,
            "overrides": [
                {"method": "popup", "minutes": 15},
            ],
        },
        "colorId": "9",
    }


class CalendarMirror:
    """Best-effort calendar event per appointment. Disabled when `service` is None."""

    def __init__(self, service=None, calendar_id: str = "primary"):
        self.service = service
        self.calendar_id = calendar_id

    @classmethod
    def from_settings(cls, settings: Settings) -> "CalendarMirror":
        return cls(get_calendar_service(settings), settings.GOOGLE_CALENDAR_ID or "primary")

    @property
    def enabled(self) -> bool:
        return self.service is not None

    async def create_event(
        self,
        *,
        user_name: str,
        practitioner_name: str,
        session_type: str,
        starts_at: datetime,
        duration_min: int = 50,
        meeting_url: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Create a calendar event for the appointment.

        Returns a dict with the event id and link, or None if skipped or failed.
        """
        if not self.enabled:
            logger.debug("Google Calendar service not available, skipping event creation")
            return None

        body = _event_body(
            user_name=user_name,
            practitioner_name=practitioner_name,
            session_type=session_type,
            starts_at=starts_at,
            duration_min=duration_min,
            meeting_url=meeting_url,
            notes=notes,
        )
        try:
            request = self.service.events().insert(calendarId=self.calendar_id, body=body)
            event = await asyncio.to_thread(request.execute)
        except HttpError as e:
            logger.error("Google Calendar API error: %s", e)
            return None
        except Exception as e:
            logger.error("Failed to create calendar event: %s", e)
            return None

        logger.info("Calendar event created: %s for %s at %s", event.get("id"), user_name, starts_at.isoformat())
        return {
            "event_id": event.get("id"),
            "event_link": event.get("htmlLink", ""),
            "calendar_id": self.calendar_id,
            "start_time": starts_at.isoformat(),
            "summary": body["summary"],
        }

    async def update_event(
        self,
        event_id: str,
        *,
        starts_at: datetime,
        duration_min: int = 50,
    ) -> Optional[Dict[str, Any]]:
        """Move an existing event to a new start time. Other fields are kept."""
        if not self.enabled:
            logger.debug("Google Calendar service not available")
            return None

        ends_at = starts_at + timedelta(minutes=duration_min)
        try:
            existing = await asyncio.to_thread(
                self.service.events().get(calendarId=self.calendar_id, eventId=event_id).execute
            )
            existing.update({
                "start": {"dateTime": starts_at.isoformat(), "timeZone": str(starts_at.tzinfo or "UTC")},
                "end": {"dateTime": ends_at.isoformat(), "timeZone": str(ends_at.tzinfo or "UTC")},
            })
            updated = await asyncio.to_thread(
                self.service.events().update(calendarId=self.calendar_id, eventId=event_id, body=existing).execute
            )
        except HttpError as e:
            logger.error("Google Calendar API error updating event: %s", e)
            return None
        except Exception as e:
            logger.error("Failed to update calendar event: %s", e)
            return None

        logger.info("Calendar event updated: %s", event_id)
        return {
            "event_id": updated.get("id"),
            "event_link": updated.get("htmlLink", ""),
            "calendar_id": self.calendar_id,
            "start_time": starts_at.isoformat(),
        }

    async def delete_event(self, event_id: str) -> bool:
        if not self.enabled:
            logger.debug("Google Calendar service not available")
            return False

        try:
            await asyncio.to_thread(
                self.service.events().delete(calendarId=self.calendar_id, eventId=event_id).execute
            )
        except HttpError as e:
            if e.resp.status in (404, 410):
                logger.warning("Calendar event not found: %s", event_id)
            else:
                logger.error("Google Calendar API error deleting event: %s", e)
            return False
        except Exception as e:
            logger.error("Failed to delete calendar event: %s", e)
            return False

        logger.info("Calendar event deleted: %s", event_id)
        return True
