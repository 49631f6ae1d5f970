"""
Outbox dispatcher background worker.

Polls the outbox table on a fixed interval, publishes PENDING events oldest
first and records the outcome of each one. A failing event never stops the
batch or the loop; only ``stop()`` does.

A batch is claimed and committed before anything is published, so several
dispatchers can share the table without sending the same event twice.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.config import Settings
from storefront.data.models import OutboxEvent
from storefront.data.outbox_store import OutboxStore

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    async def publish(self, event: OutboxEvent) -> None: ...


@dataclass
class TickResult:
    sent: int = 0
    failed: int = 0
    requeued: int = 0

    @property
    def processed(self) -> int:
        return self.sent + self.failed


class OutboxDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: EventPublisher,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.batch_size = settings.OUTBOX_BATCH_SIZE
        self.poll_interval = settings.OUTBOX_POLL_INTERVAL_SECONDS
        self.max_attempts = settings.OUTBOX_MAX_ATTEMPTS
        self.claim_ttl = settings.OUTBOX_CLAIM_TTL_SECONDS
        self._stop = asyncio.Event()

    async def run(self):
        logger.info(f"Outbox dispatcher started (polling every {self.poll_interval}s, batch {self.batch_size})")
        self._stop.clear()
        while not self._stop.is_set():
            try:
                await self.dispatch_pending()
            except Exception as e:
                logger.error(f"Outbox tick failed: {e}")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Outbox dispatcher stopped")

    def stop(self):
        self._stop.set()

    async def dispatch_pending(self) -> TickResult:
        result = TickResult()
        async with self.session_factory() as session:
            store = OutboxStore(session)

            if self.max_attempts > 1:
                result.requeued = await store.requeue_failed(self.max_attempts)
                await session.commit()
                if result.requeued:
                    logger.info(f"Re-queued {result.requeued} failed outbox events")

            # Committed before publishing so other dispatchers skip these rows.
            events = await store.claim_pending(self.batch_size, self.claim_ttl)
            await session.commit()
            if not events:
                return result
            # Detached rows keep their loaded state if a mark below rolls back.
            session.expunge_all()

            logger.info(f"Processing {len(events)} pending outbox events")
            for event in events:
                if await self._publish_one(session, store, event):
                    result.sent += 1
                else:
                    result.failed += 1

        return result

    async def _publish_one(self, session: AsyncSession, store: OutboxStore, event: OutboxEvent) -> bool:
        try:
            await self.publisher.publish(event)
        except Exception as e:
            logger.error(f"Failed to publish outbox event {event.id} ({event.event_type}): {e}")
            try:
                await store.mark_failed(event.id, str(e) or e.__class__.__name__)
                await session.commit()
            except Exception as mark_error:
                await session.rollback()
                logger.error(f"Failed to mark outbox event {event.id} as FAILED: {mark_error}")
            return False

        try:
            await store.mark_sent(event.id)
            await session.commit()
        except Exception as e:
            # Published but not recorded: the event goes out again once its claim expires.
            await session.rollback()
            logger.error(f"Failed to mark outbox event {event.id} as SENT: {e}")
            return True

        logger.info(f"Outbox event {event.id} sent and marked")
        return True
