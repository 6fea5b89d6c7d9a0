# mindfulcare/main.py
from __future__ import annotations

# Load .env early so settings and SDKs see it
from dotenv import load_dotenv
load_dotenv()

from contextlib import asynccontextmanager
from zoneinfo import ZoneInfo

import sqlalchemy as sa
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession

from mindfulcare.core.config import Settings, get_settings
from mindfulcare.core.logging import LoggingMiddleware, get_logger, setup_logging
from mindfulcare.db.session import AsyncSessionLocal, get_session
from mindfulcare.services.booking import BookingService
from mindfulcare.services.email_providers import build_email_provider
from mindfulcare.services.google_calendar import CalendarMirror
from mindfulcare.services.meetings import build_meeting_provisioner
from mindfulcare.services.notifications import NotificationDispatcher
from mindfulcare.services.reminders import ReminderScheduler, parse_offsets
from mindfulcare.services.snapshot_sync import SnapshotSync

from mindfulcare.api.routes.appointments import router as appointments_router

settings = get_settings()
setup_logging(debug=settings.is_development, max_log_length=settings.MAX_LOG_LENGTH, level=settings.LOG_LEVEL)
logger = get_logger(__name__)


def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    return NotificationDispatcher(
        build_email_provider(settings),
        timeout_seconds=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        app_base_url=settings.APP_BASE_URL,
    )


def build_scheduler(settings: Settings) -> ReminderScheduler:
    return ReminderScheduler(
        parse_offsets(settings.REMINDER_OFFSETS),
        tz=ZoneInfo(settings.APP_TIMEZONE),
        app_base_url=settings.APP_BASE_URL,
    )


def build_booking_service(settings: Settings) -> BookingService:
    """Composition root: every provider is chosen here, once."""
    return BookingService(
        settings,
        provisioner=build_meeting_provisioner(settings),
        dispatcher=build_dispatcher(settings),
        scheduler=build_scheduler(settings),
        calendar=CalendarMirror.from_settings(settings),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup", env=settings.APP_ENV, email_provider=settings.email_provider_name,
                meeting_mode=settings.MEETING_MODE)
    app.state.booking_service = build_booking_service(settings)
    app.state.snapshot_sync = SnapshotSync.from_settings(settings, AsyncSessionLocal)
    try:
        yield
    finally:
        await app.state.snapshot_sync.close()
        logger.info("Application shutdown")


app = FastAPI(title="MindfulCare", description="Therapy session booking and notifications", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_methods=["*"],
    allow_headers=["*"],
)

logging_middleware = LoggingMiddleware(
    log_requests=settings.LOG_REQUESTS or settings.is_development,
    log_responses=settings.LOG_RESPONSES or settings.is_development,
    slow_threshold=settings.SLOW_REQUEST_THRESHOLD,
)
app.middleware("http")(logging_middleware)


# -------- Health / readiness (public) --------
@app.get("/healthz", include_in_schema=False)
async def healthz():
    return {"ok": True}


@app.get("/readyz", include_in_schema=False)
async def readyz(db: AsyncSession = Depends(get_session)):
    await db.execute(sa.text("SELECT 1"))
    return {"db": "ok"}


app.include_router(appointments_router)
