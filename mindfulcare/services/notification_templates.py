# mindfulcare/services/notification_templates.py
"""
Email templates for appointment notifications.

`compose()` is a pure function: identical kind and facts always render the
same subject and body, so it is safe to call again on retries.
"""
from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from mindfulcare.core.errors import UnknownNotificationKind


class NotificationKind(str, Enum):
    CONFIRMATION = "confirmation"
    REMINDER = "reminder"
    CANCELLATION = "cancellation"
    RESCHEDULING = "rescheduling"


@dataclass(frozen=True)
class NotificationFacts:
    """Everything a template needs to know about one appointment."""

    recipient_name: str
    practitioner_name: str
    date: Union[date, str]
    time: str
    session_type: str
    meeting_url: Optional[str] = None
    reason: Optional[str] = None
    app_base_url: str = ""


@dataclass(frozen=True)
class RenderedNotification:
    subject: str
    body: str


PRE_SESSION_CHECKLIST = (
    "Find a quiet, private space where you can talk freely",
    "Check your internet connection, camera and microphone",
    "Have water and anything you'd like to note down nearby",
    "Join 5 minutes before the scheduled time",
)

_WRAPPER = (
    '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; '
    'padding: 20px; border: 1px solid #e9e9e9; border-radius: 5px;">'
    '<h2 style="color: #4a5568; text-align: center;">{heading}</h2>'
    "{content}"
    "</div>"
)


def format_date(value: Union[date, str]) -> str:
    """'2025-06-01' -> 'Sunday, June 1, 2025'. Unparseable strings pass through."""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value)
        except ValueError:
            return value
    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


def _e(value: object) -> str:
    return html.escape(str(value), quote=True)


def _details(rows: list[tuple[str, str]]) -> str:
    lines = "".join(
        f'<p style="margin: 5px 0;"><strong>{_e(label)}:</strong> {_e(value)}</p>'
        for label, value in rows
    )
    return f'<div style="background-color: #f7fafc; padding: 15px; border-radius: 5px; margin: 20px 0;">{lines}</div>'


def _meeting_link(url: Optional[str]) -> str:
    if not url:
        return ""
    return (
        f'<p style="margin: 15px 0;"><strong>Meeting Link:</strong> '
        f'<a href="{_e(url)}" style="color: #3182ce;">{_e(url)}</a></p>'
    )


def _checklist() -> str:
    items = "".join(f"<li>{_e(item)}</li>" for item in PRE_SESSION_CHECKLIST)
    return f"<h3>Before your session</h3><ul>{items}</ul>"


def _button(href: str, label: str) -> str:
    if not href:
        return ""
    return (
        f'<div style="text-align: center; margin-top: 30px;"><a href="{_e(href)}" '
        f'style="background-color: #4299e1; color: white; padding: 10px 20px; '
        f'text-decoration: none; border-radius: 5px;">{_e(label)}</a></div>'
    )


def _manage_url(facts: NotificationFacts, path: str = "/appointments") -> str:
    if not facts.app_base_url:
        return ""
    return facts.app_base_url.rstrip("/") + path


def _confirmation(f: NotificationFacts, when: str) -> RenderedNotification:
    subject = f"Appointment Confirmed: Your session with {f.practitioner_name} on {when}"
    content = (
        f"<p>Hello {_e(f.recipient_name)},</p>"
        f"<p>Your appointment with {_e(f.practitioner_name)} has been confirmed.</p>"
        + _details([("Date", when), ("Time", f.time), ("Session Type", f.session_type)])
        + _meeting_link(f.meeting_url)
        + _checklist()
        + "<p>If you need to reschedule or cancel, please do so at least 24 hours in advance.</p>"
        + _button(_manage_url(f), "Manage Appointment")
    )
    return RenderedNotification(subject, _WRAPPER.format(heading="Your Appointment is Confirmed", content=content))


def _reminder(f: NotificationFacts, when: str) -> RenderedNotification:
    subject = f"Reminder: Your appointment with {f.practitioner_name} on {when} at {f.time}"
    content = (
        f"<p>Hello {_e(f.recipient_name)},</p>"
        f"<p>This is a friendly reminder about your upcoming appointment with {_e(f.practitioner_name)}.</p>"
        + _details([("Date", when), ("Time", f.time), ("Session Type", f.session_type)])
        + _meeting_link(f.meeting_url)
        + _checklist()
        + _button(f.meeting_url or _manage_url(f), "Join Session" if f.meeting_url else "View Appointment")
    )
    return RenderedNotification(subject, _WRAPPER.format(heading="Appointment Reminder", content=content))


def _cancellation(f: NotificationFacts, when: str) -> RenderedNotification:
    subject = f"Your appointment with {f.practitioner_name} has been cancelled"
    rows = [("Cancelled Session", f"{f.session_type} on {when} at {f.time}")]
    if f.reason:
        rows.append(("Reason", f.reason))
    content = (
        f"<p>Hello {_e(f.recipient_name)},</p>"
        f"<p>Your appointment with {_e(f.practitioner_name)} scheduled for "
        f"{_e(when)} at {_e(f.time)} has been cancelled.</p>"
        + _details(rows)
        + "<p>If you did not request this cancellation, please contact our support team.</p>"
        + _button(_manage_url(f, "/appointments/new"), "Book a New Appointment")
    )
    return RenderedNotification(subject, _WRAPPER.format(heading="Appointment Cancelled", content=content))


def _rescheduling(f: NotificationFacts, when: str) -> RenderedNotification:
    subject = f"Your appointment with {f.practitioner_name} has been rescheduled to {when} at {f.time}"
    content = (
        f"<p>Hello {_e(f.recipient_name)},</p>"
        f"<p>Your appointment with {_e(f.practitioner_name)} has been rescheduled. "
        f"Please make a note of the new date and time.</p>"
        + _details([("New Date", when), ("New Time", f.time), ("Session Type", f.session_type)])
        + _meeting_link(f.meeting_url)
        + _button(_manage_url(f), "View Updated Appointment")
    )
    return RenderedNotification(subject, _WRAPPER.format(heading="Appointment Rescheduled", content=content))


_RENDERERS = {
    NotificationKind.CONFIRMATION: _confirmation,
    NotificationKind.REMINDER: _reminder,
    NotificationKind.CANCELLATION: _cancellation,
    NotificationKind.RESCHEDULING: _rescheduling,
}


def resolve_kind(kind: Union[NotificationKind, str]) -> NotificationKind:
    try:
        return NotificationKind(kind)
    except ValueError:
        raise UnknownNotificationKind(f"No template for notification kind {kind!r}") from None


def compose(kind: Union[NotificationKind, str], facts: NotificationFacts) -> RenderedNotification:
    """Render the subject and HTML body for one notification."""
    resolved = resolve_kind(kind)
    return _RENDERERS[resolved](facts, format_date(facts.date))
