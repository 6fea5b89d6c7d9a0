# mindfulcare/services/notifications.py
"""
Notification dispatch: compose, send through the configured provider,
and append one row to `notification_logs` per attempt.

Delivery failures are reported through the return value and never raised,
so a failed email can't undo the appointment change that triggered it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from mindfulcare.core.errors import ExternalServiceTimeout, NotificationDeliveryError
from mindfulcare.core.logging import get_logger
from mindfulcare.crud.notification import create_notification_log
from mindfulcare.db.models.appointment import Appointment
from mindfulcare.db.models.notification import LOG_ERROR, LOG_SENT
from mindfulcare.services.email_providers import EmailProvider
from mindfulcare.services.notification_templates import (
    NotificationFacts,
    NotificationKind,
    compose,
    resolve_kind,
)
from mindfulcare.utils.timeout_protection import with_timeout

logger = get_logger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    subject: str
    error: Optional[str] = None
    logged: bool = True


class NotificationDispatcher:
    def __init__(self, provider: EmailProvider, *, timeout_seconds: float = 10.0, app_base_url: str = ""):
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.app_base_url = app_base_url

    async def _deliver(
        self,
        db: AsyncSession,
        to: str,
        subject: str,
        body: str,
        *,
        appointment_id: Optional[int],
        kind: Optional[str],
    ) -> DispatchResult:
        error: Optional[str] = None
        try:
            await with_timeout(
                self.provider.send(to, subject, body),
                self.timeout_seconds,
                f"email:{self.provider.name}",
            )
        except (NotificationDeliveryError, ExternalServiceTimeout) as e:
            error = e.message
        except Exception as e:  # provider SDK errors we don't model explicitly
            logger.exception("email_provider_unexpected_error", provider=self.provider.name)
            error = f"{type(e).__name__}: {e}"

        status = LOG_SENT if error is None else LOG_ERROR
        if error is None:
            logger.info("notification_sent", appointment_id=appointment_id, kind=kind, provider=self.provider.name)
        else:
            logger.warning(
                "notification_failed",
                appointment_id=appointment_id,
                kind=kind,
                provider=self.provider.name,
                error=error,
            )

        logged = True
        try:
            await create_notification_log(
                db,
                appointment_id=appointment_id,
                recipient_email=to,
                notification_type=kind,
                subject=subject,
                provider=self.provider.name,
                status=status,
                error_message=error,
            )
        except Exception:
            logger.exception("notification_log_write_failed", appointment_id=appointment_id, kind=kind)
            logged = False

        return DispatchResult(success=error is None, subject=subject, error=error, logged=logged)

    async def dispatch(
        self,
        db: AsyncSession,
        to: str,
        subject: str,
        body: str,
        *,
        appointment_id: Optional[int] = None,
        kind: Optional[str] = None,
    ) -> bool:
        """Send one already-composed email. Returns True when the provider accepted it."""
        result = await self._deliver(db, to, subject, body, appointment_id=appointment_id, kind=kind)
        return result.success

    async def notify(
        self,
        db: AsyncSession,
        kind: Union[NotificationKind, str],
        facts: NotificationFacts,
        *,
        to: str,
        appointment_id: Optional[int] = None,
    ) -> DispatchResult:
        """Compose and send. An unknown kind raises; delivery problems don't."""
        resolved = resolve_kind(kind)
        rendered = compose(resolved, facts)
        return await self._deliver(
            db, to, rendered.subject, rendered.body,
            appointment_id=appointment_id, kind=resolved.value,
        )

    def facts_for(
        self,
        appointment: Appointment,
        *,
        meeting_url: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> NotificationFacts:
        return NotificationFacts(
            recipient_name=appointment.user_name,
            practitioner_name=appointment.practitioner_name,
            date=appointment.date,
            time=appointment.time,
            session_type=appointment.session_type,
            meeting_url=meeting_url,
            reason=reason,
            app_base_url=self.app_base_url,
        )

    # ---------- per-kind wrappers ----------

    async def send_confirmation(self, db: AsyncSession, appointment: Appointment,
                                meeting_url: Optional[str] = None) -> DispatchResult:
        return await self.notify(
            db, NotificationKind.CONFIRMATION,
            self.facts_for(appointment, meeting_url=meeting_url),
            to=appointment.user_email, appointment_id=appointment.id,
        )

    async def send_reminder(self, db: AsyncSession, appointment: Appointment,
                            meeting_url: Optional[str] = None) -> DispatchResult:
        return await self.notify(
            db, NotificationKind.REMINDER,
            self.facts_for(appointment, meeting_url=meeting_url),
            to=appointment.user_email, appointment_id=appointment.id,
        )

    async def send_cancellation(self, db: AsyncSession, appointment: Appointment,
                                reason: Optional[str] = None) -> DispatchResult:
        # cancellation mail never carries the meeting link
        return await self.notify(
            db, NotificationKind.CANCELLATION,
            self.facts_for(appointment, reason=reason),
            to=appointment.user_email, appointment_id=appointment.id,
        )

    async def send_rescheduling(self, db: AsyncSession, appointment: Appointment,
                                meeting_url: Optional[str] = None) -> DispatchResult:
        return await self.notify(
            db, NotificationKind.RESCHEDULING,
            self.facts_for(appointment, meeting_url=meeting_url),
            to=appointment.user_email, appointment_id=appointment.id,
        )
