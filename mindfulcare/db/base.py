# mindfulcare/db/base.py

"""
This file imports all the ORM models so Alembic can discover them.
Whenever you add a new model, import it here.
"""
from mindfulcare.db.models.appointment import Appointment
from mindfulcare.db.models.meeting import AppointmentMeeting
from mindfulcare.db.models.notification import NotificationLog, AppointmentReminder
from mindfulcare.db.session import engine, Base

__all__ = [
    "Appointment",
    "AppointmentMeeting",
    "NotificationLog",
    "AppointmentReminder",
    "Base",
    "init_db",
]


async def init_db(bind=None):
    """Initialize database by creating all tables"""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
