# mindfulcare/services/snapshot_sync.py
"""
Last-writer-wins reconciliation between the Redis snapshot cache and the store.

Clients read appointment snapshots from the cache; the store stays the record
of truth for everything except a snapshot that is strictly newer, which is
written back. Without REDIS_URL the sync does nothing and returns the store's
version.
"""
from __future__ import annotations

import json
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mindfulcare.core.config import Settings
from mindfulcare.core.logging import get_logger
from mindfulcare.crud.appointment import SYNCABLE_FIELDS, apply_snapshot, get_appointment
from mindfulcare.db.models.appointment import STATUS_CANCELLED, Appointment

logger = get_logger(__name__)

Snapshot = Dict[str, Any]

_DATETIME_FIELDS = ("created_at", "updated_at", "cancelled_at")


def serialize_appointment(appt: Appointment) -> Snapshot:
    return {
        "id": appt.id,
        "user_id": appt.user_id,
        "practitioner_id": appt.practitioner_id,
        "practitioner_name": appt.practitioner_name,
        "date": appt.date.isoformat(),
        "time": appt.time,
        "duration": appt.duration,
        "session_type": appt.session_type,
        "status": appt.status,
        "notes": appt.notes,
        "created_at": appt.created_at.isoformat() if appt.created_at else None,
        "updated_at": appt.updated_at.isoformat() if appt.updated_at else None,
        "cancelled_at": appt.cancelled_at.isoformat() if appt.cancelled_at else None,
    }


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def snapshot_to_fields(snapshot: Mapping[str, Any]) -> Snapshot:
    """Syncable fields of a cached snapshot, converted back to column types."""
    fields: Snapshot = {}
    for name in SYNCABLE_FIELDS:
        if name not in snapshot:
            continue
        value = snapshot[name]
        if name == "date" and isinstance(value, str):
            value = date.fromisoformat(value)
        elif name in _DATETIME_FIELDS:
            value = _as_datetime(value)
        fields[name] = value
    return fields


def _reopens_cancelled(appt: Appointment, snapshot: Mapping[str, Any]) -> bool:
    return appt.status == STATUS_CANCELLED and snapshot.get("status") != STATUS_CANCELLED


def choose_winner(local: Optional[Mapping[str, Any]], remote: Optional[Mapping[str, Any]]):
    """
    Newer `updated_at` wins; the remote (store) copy wins ties.
    A missing side always loses; returns None when both are missing.
    """
    if remote is None:
        return local
    if local is None:
        return remote

    local_at = _as_datetime(local.get("updated_at"))
    remote_at = _as_datetime(remote.get("updated_at"))
    if local_at is not None and (remote_at is None or local_at > remote_at):
        return local
    return remote


class SnapshotCache:
    def __init__(self, client, *, ttl_seconds: int = 86400, prefix: str = "mindfulcare:appointment:"):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, ttl_seconds: int = 86400) -> "SnapshotCache":
        return cls(aioredis.from_url(url, decode_responses=True), ttl_seconds=ttl_seconds)

    def _key(self, appointment_id: int) -> str:
        return f"{self.prefix}{appointment_id}"

    async def get(self, appointment_id: int) -> Optional[Snapshot]:
        raw = await self.client.get(self._key(appointment_id))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("snapshot_cache_corrupt", appointment_id=appointment_id)
            return None

    async def put(self, snapshot: Mapping[str, Any]) -> None:
        await self.client.set(self._key(snapshot["id"]), json.dumps(snapshot), ex=self.ttl_seconds)

    async def close(self) -> None:
        await self.client.aclose()


class SnapshotSync:
    def __init__(self, cache: Optional[SnapshotCache] = None,
                 session_factory: Optional[Callable[[], AsyncSession]] = None):
        self.cache = cache
        self.session_factory = session_factory

    @classmethod
    def from_settings(cls, settings: Settings, session_factory=None) -> "SnapshotSync":
        if not settings.REDIS_URL:
            return cls(None, session_factory)
        return cls(SnapshotCache.from_url(settings.REDIS_URL, ttl_seconds=settings.SNAPSHOT_TTL_SECONDS),
                   session_factory)

    @property
    def enabled(self) -> bool:
        return self.cache is not None

    async def reconcile(self, db: AsyncSession, appointment_id: int) -> Optional[Snapshot]:
        """Return the winning snapshot and bring the losing side up to date."""
        appt = await get_appointment(db, appointment_id)
        remote = serialize_appointment(appt) if appt is not None else None
        if self.cache is None:
            return remote

        try:
            local = await self.cache.get(appointment_id)
        except RedisError as e:
            logger.warning("snapshot_cache_unavailable", appointment_id=appointment_id, error=str(e))
            return remote

        winner = choose_winner(local, remote)
        if winner is None:
            return None

        if winner is not remote and appt is not None and _reopens_cancelled(appt, local):
            # a copy taken before the cancel must not bring the appointment back
            logger.warning("snapshot_rejected_cancelled", appointment_id=appointment_id,
                           snapshot_status=local.get("status"))
            winner = remote

        if winner is remote:
            if local != remote:
                try:
                    await self.cache.put(remote)
                except RedisError as e:
                    logger.warning("snapshot_cache_write_failed", appointment_id=appointment_id, error=str(e))
                else:
                    logger.info("snapshot_cache_resynced", appointment_id=appointment_id)
            return remote

        if appt is None:
            # rows are only ever created through booking, never from a cached copy
            logger.warning("snapshot_orphaned", appointment_id=appointment_id)
            return local

        await apply_snapshot(db, appt, snapshot_to_fields(local))
        logger.info("snapshot_store_resynced", appointment_id=appointment_id, updated_at=local.get("updated_at"))
        return local

    async def reconcile_detached(self, appointment_id: int) -> None:
        """Background-task entry point: runs in its own session after the response is sent."""
        if self.cache is None or self.session_factory is None:
            return
        try:
            async with self.session_factory() as db:
                await self.reconcile(db, appointment_id)
        except SQLAlchemyError:
            logger.exception("snapshot_reconcile_failed", appointment_id=appointment_id)

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()
