# mindfulcare/schemas/appointment.py

from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class RescheduleIn(BaseModel):
    user_id: str
    new_date: date = Field(..., examples=["2025-06-03"])
    new_time: str = Field(..., examples=["2:30 PM"])


class CancelIn(BaseModel):
    user_id: str
    reason: Optional[str] = Field(None, max_length=1000)


class AppointmentOut(BaseModel):
    id: int
    user_id: str
    practitioner_id: int
    practitioner_name: str
    date: date
    time: str
    duration: int
    session_type: str
    status: str
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    cancelled_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)
