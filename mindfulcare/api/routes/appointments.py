# mindfulcare/api/routes/appointments.py

from __future__ import annotations
from datetime import date
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mindfulcare.db.session import get_session
from mindfulcare.schemas.appointment import AppointmentOut, CancelIn, RescheduleIn
from mindfulcare.services.booking import (
    ERROR_INVALID_TRANSITION,
    ERROR_NOT_FOUND,
    BookingRequest,
    BookingResult,
    BookingService,
    OperationResult,
)
from mindfulcare.services.snapshot_sync import SnapshotSync

router = APIRouter(prefix="/appointments", tags=["appointments"])

_STATUS_BY_CODE = {
    ERROR_NOT_FOUND: 404,
    ERROR_INVALID_TRANSITION: 409,
}


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.booking_service


def get_snapshot_sync(request: Request) -> SnapshotSync:
    return request.app.state.snapshot_sync


def _raise_for(action: str, result: OperationResult) -> None:
    if not result.success:
        raise HTTPException(
            status_code=_STATUS_BY_CODE.get(result.error_code, 400),
            detail=f"{action} failed: {result.error}",
        )


@router.post("", response_model=BookingResult, status_code=201)
async def book_appointment(
    payload: BookingRequest,
    background: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service),
    sync: SnapshotSync = Depends(get_snapshot_sync),
):
    result = await service.create_booking(db, payload)
    _raise_for("Booking", result)
    background.add_task(sync.reconcile_detached, result.appointment_id)
    return result


@router.get("", response_model=List[AppointmentOut])
async def get_appointments(
    user_id: str = Query(..., description="Owner of the appointments"),
    include_cancelled: bool = False,
    start: Optional[date] = Query(None, description="First date (inclusive)"),
    end: Optional[date] = Query(None, description="Last date (exclusive)"),
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service),
):
    return await service.list_appointments(
        db, user_id, include_cancelled=include_cancelled, start_date=start, end_date=end
    )


@router.post("/{appointment_id}/reschedule", response_model=OperationResult)
async def reschedule(
    appointment_id: int,
    payload: RescheduleIn,
    background: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service),
    sync: SnapshotSync = Depends(get_snapshot_sync),
):
    result = await service.reschedule_appointment(
        db, appointment_id, payload.user_id, payload.new_date, payload.new_time
    )
    _raise_for("Reschedule", result)
    background.add_task(sync.reconcile_detached, appointment_id)
    return result


@router.post("/{appointment_id}/cancel", response_model=OperationResult)
async def cancel(
    appointment_id: int,
    payload: CancelIn,
    background: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
    service: BookingService = Depends(get_booking_service),
    sync: SnapshotSync = Depends(get_snapshot_sync),
):
    result = await service.cancel_appointment(db, appointment_id, payload.user_id, payload.reason)
    _raise_for("Cancellation", result)
    background.add_task(sync.reconcile_detached, appointment_id)
    return result
