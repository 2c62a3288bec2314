"""
store.py — Alert record persistence.

Every mutation runs in its own transaction and reports a plain outcome
code; mapping outcomes to classified errors is the service's job.
Row locks (``SELECT ... FOR UPDATE``) serialise concurrent location pushes
on PostgreSQL; SQLite ignores the hint and serialises writers anyway.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rapidsafe.alerts.models import (
    AlertRecord,
    AlertStatus,
    LocationUpdate,
    as_utc,
)

logger = logging.getLogger(__name__)


class MutationOutcome(str, Enum):
    APPLIED    = "applied"
    STALE      = "stale"        # timestamp not newer than the stored one
    NOT_FOUND  = "not_found"
    NOT_OWNER  = "not_owner"
    NOT_ACTIVE = "not_active"


# active → resolved | cancelled, nothing else
_ALLOWED_TRANSITIONS = {
    AlertStatus.ACTIVE: {AlertStatus.RESOLVED, AlertStatus.CANCELLED},
}


class AlertRecordStore:
    """Repository for :class:`AlertRecord` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def insert(self, record: AlertRecord) -> AlertRecord:
        """Persist a new record; returns once the transaction has committed."""
        async with self._session_factory() as session:
            async with session.begin():
                session.add(record)
        return record

    async def get(self, alert_id: str) -> Optional[AlertRecord]:
        async with self._session_factory() as session:
            return await session.get(AlertRecord, alert_id)

    async def count(self, user_id: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(AlertRecord)
        if user_id is not None:
            stmt = stmt.where(AlertRecord.user_id == user_id)
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one()

    async def _locked(self, session: AsyncSession, alert_id: str) -> Optional[AlertRecord]:
        stmt = (
            select(AlertRecord)
            .where(AlertRecord.alert_id == alert_id)
            .with_for_update()
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def update_location(
        self,
        alert_id: str,
        user_id: str,
        update: LocationUpdate,
    ) -> Tuple[MutationOutcome, Optional[AlertRecord]]:
        """
        Move ``current_location`` forward.

        An update whose timestamp is not strictly newer than the stored
        ``last_updated`` is ignored (STALE) and leaves the row untouched.
        """
        async with self._session_factory() as session:
            async with session.begin():
                record = await self._locked(session, alert_id)
                if record is None:
                    return MutationOutcome.NOT_FOUND, None
                if record.user_id != user_id:
                    return MutationOutcome.NOT_OWNER, None
                if not record.is_active:
                    return MutationOutcome.NOT_ACTIVE, record

                incoming = as_utc(update.timestamp)
                if record.last_updated is not None and incoming <= as_utc(record.last_updated):
                    logger.info(
                        "Ignoring stale location for alert %s (%s <= %s)",
                        alert_id, incoming.isoformat(),
                        as_utc(record.last_updated).isoformat(),
                    )
                    return MutationOutcome.STALE, record

                record.current_lat = update.location.lat
                record.current_lng = update.location.lng
                record.last_updated = incoming
                record.direction = update.direction
            return MutationOutcome.APPLIED, record

    async def transition_status(
        self,
        alert_id: str,
        user_id: str,
        new_status: AlertStatus,
    ) -> Tuple[MutationOutcome, Optional[AlertRecord]]:
        async with self._session_factory() as session:
            async with session.begin():
                record = await self._locked(session, alert_id)
                if record is None:
                    return MutationOutcome.NOT_FOUND, None
                if record.user_id != user_id:
                    return MutationOutcome.NOT_OWNER, None

                current = AlertStatus(record.status)
                if new_status not in _ALLOWED_TRANSITIONS.get(current, set()):
                    return MutationOutcome.NOT_ACTIVE, record

                record.status = new_status.value
            return MutationOutcome.APPLIED, record
