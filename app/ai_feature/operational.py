# app/ai_feature/operational.py
"""
OPERATIONAL DATA - Latest uploaded environmental readings

Purpose:
    Feed the "live data as context" retrieval tier with recent readings.

Source preference:
    1. An explicit upload session (when the caller knows which one)
    2. Otherwise the most recent session that is still fresh

Freshness is an explicit policy instead of a side effect of the query:
a session is used only if it is active, its expires_at is in the future,
and it is younger than SessionExpiryPolicy.max_age.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core import models
from app.ai_feature.fields import normalize_row

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionExpiryPolicy:
    max_age: timedelta = timedelta(hours=24)
    status: str = "active"

    def is_fresh(self, session: models.UploadSession, now: datetime) -> bool:
        """Check a loaded session against the policy."""
        if session.status != self.status:
            return False
        if _as_utc(session.expires_at) <= now:
            return False
        return _as_utc(session.created_at) >= now - self.max_age


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def to_operational_record(row: models.SessionData) -> Dict[str, Any]:
    """
    Session row → record with canonical field names.

    Example:
        SessionData(pm25standard=12.0, relativehumidity=40.0, ...)
        → {"pm25": 12.0, "humidity": 40.0, "timestamp": "...", ...}
    """
    raw = {
        "id": row.id,
        "datetime": row.datetime,
        "temperature": row.temperature,
        "relativehumidity": row.relativehumidity,
        "pm25standard": row.pm25standard,
        "pm10standard": row.pm10standard,
        "pm1standard": row.pm1standard,
        "device_name": row.device_name,
        "latitude": row.latitude,
        "longitude": row.longitude,
    }
    record = normalize_row(raw)

    timestamp = record.pop("datetime", None)
    record["timestamp"] = timestamp.isoformat() if timestamp else None
    record["location"] = [record.get("latitude"), record.get("longitude")]
    record["source"] = "session_upload"
    return record


class OperationalDataSource:
    """Read recent readings from uploaded sessions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy: Optional[SessionExpiryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.policy = policy or SessionExpiryPolicy()
        self.clock = clock

    async def _latest_fresh_session_id(
        self, db: AsyncSession, now: datetime
    ) -> Optional[UUID]:
        query = (
            select(models.UploadSession.id)
            .where(
                models.UploadSession.status == self.policy.status,
                models.UploadSession.expires_at > now,
                models.UploadSession.created_at >= now - self.policy.max_age,
            )
            .order_by(models.UploadSession.created_at.desc())
            .limit(1)
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def _session_rows(
        self, db: AsyncSession, session_id: UUID, limit: int
    ) -> List[Dict[str, Any]]:
        query = (
            select(models.SessionData)
            .where(
                models.SessionData.session_id == session_id,
                models.SessionData.latitude.is_not(None),
                models.SessionData.longitude.is_not(None),
            )
            .order_by(models.SessionData.datetime.desc())
            .limit(limit)
        )
        result = await db.execute(query)
        return [to_operational_record(row) for row in result.scalars().all()]

    async def fetch(
        self, limit: int = 50, session_id: Optional[UUID] = None
    ) -> List[Dict[str, Any]]:
        """
        Most recent `limit` readings, preferring `session_id` when given.

        Returns [] when no fresh session has data. Store errors propagate;
        the retrieval tier that calls this treats them as "no data".
        """
        now = self.clock()

        async with self.session_factory() as db:
            if session_id is not None:
                session = await db.get(models.UploadSession, session_id)
                if session is not None and self.policy.is_fresh(session, now):
                    rows = await self._session_rows(db, session_id, limit)
                    if rows:
                        logger.info(
                            f"Retrieved {len(rows)} records from session {session_id}"
                        )
                        return rows
                else:
                    logger.info(f"Session {session_id} missing or stale")

            recent_id = await self._latest_fresh_session_id(db, now)
            if recent_id is not None and recent_id != session_id:
                rows = await self._session_rows(db, recent_id, limit)
                if rows:
                    logger.info(
                        f"Retrieved {len(rows)} records from recent session {recent_id}"
                    )
                    return rows

        logger.warning("No session data available - users need to upload files first")
        return []
