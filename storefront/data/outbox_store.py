from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.status import OutboxStatus
from storefront.data.models import OutboxEvent, utcnow


class OutboxStore:
    """Transactional outbox table access.

    ``enqueue`` is meant to run inside the caller's business transaction; the
    mark/requeue helpers are used by the dispatcher and only flush.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(
        self,
        *,
        aggregate_type: str,
        aggregate_id: UUID,
        event_type: str,
        payload: bytes,
    ) -> OutboxEvent:
        event = OutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=payload,
            status=OutboxStatus.PENDING,
            attempts=0,
            created_at=utcnow(),
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_pending(self, limit: int, claimed_before: Optional[datetime] = None) -> List[OutboxEvent]:
        """PENDING events, oldest first.

        With ``claimed_before`` set, events claimed by a dispatcher at or after
        that time are left out.
        """
        stmt = select(OutboxEvent).where(OutboxEvent.status == OutboxStatus.PENDING)
        if claimed_before is not None:
            stmt = stmt.where(or_(OutboxEvent.claimed_at.is_(None), OutboxEvent.claimed_at < claimed_before))
        stmt = (
            stmt.order_by(OutboxEvent.created_at, OutboxEvent.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def claim_pending(self, limit: int, ttl_seconds: float) -> List[OutboxEvent]:
        """Stamp up to ``limit`` unclaimed PENDING events as taken.

        The caller commits before publishing. Other dispatchers skip the rows
        until they are marked or the claim is older than ``ttl_seconds``.
        """
        now = utcnow()
        events = await self.list_pending(limit, claimed_before=now - timedelta(seconds=ttl_seconds))
        for event in events:
            event.claimed_at = now
        await self.session.flush()
        return events

    async def list_for_aggregate(self, aggregate_type: str, aggregate_id: UUID) -> List[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.aggregate_type == aggregate_type, OutboxEvent.aggregate_id == aggregate_id)
            .order_by(OutboxEvent.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_sent(self, event_id: UUID) -> None:
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id)
            .values(
                status=OutboxStatus.SENT,
                attempts=OutboxEvent.attempts + 1,
                sent_at=utcnow(),
                claimed_at=None,
                last_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def mark_failed(self, event_id: UUID, error: str) -> None:
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id)
            .values(
                status=OutboxStatus.FAILED,
                attempts=OutboxEvent.attempts + 1,
                last_error=error[:1000],
                claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def requeue_failed(self, max_attempts: int) -> int:
        """Move FAILED events with attempts left back to PENDING."""
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatus.FAILED, OutboxEvent.attempts < max_attempts)
            .values(status=OutboxStatus.PENDING)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0
