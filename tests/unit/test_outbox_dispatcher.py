import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from storefront.core.status import OutboxStatus
from storefront.data.models import OutboxEvent
from storefront.data.outbox_store import OutboxStore
from storefront.messaging.dispatcher import OutboxDispatcher
from storefront.messaging.events import encode_delete_cart


@pytest.fixture
def enqueue(session_factory):
    async def _enqueue(count=1):
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        ids = []
        async with session_factory() as s:
            store = OutboxStore(s)
            for i in range(count):
                order_id = uuid.uuid4()
                event = await store.enqueue(
                    aggregate_type="ORDER",
                    aggregate_id=order_id,
                    event_type="DELETE_CART",
                    payload=encode_delete_cart(uuid.uuid4(), order_id),
                )
                event.created_at = base + timedelta(seconds=i)
                ids.append(event.id)
            await s.commit()
        return ids

    return _enqueue


async def statuses(session_factory):
    async with session_factory() as s:
        rows = (await s.execute(select(OutboxEvent))).scalars().all()
        return {row.id: row for row in rows}


@pytest.mark.asyncio
async def test_one_failure_does_not_block_the_batch(session_factory, settings, publisher, enqueue):
    first, second, third = await enqueue(3)
    publisher.fail_for.add(second)

    result = await OutboxDispatcher(session_factory, publisher, settings).dispatch_pending()

    assert (result.sent, result.failed) == (2, 1)
    rows = await statuses(session_factory)
    assert rows[first].status == OutboxStatus.SENT
    assert rows[third].status == OutboxStatus.SENT
    assert rows[second].status == OutboxStatus.FAILED
    assert rows[second].last_error == "broker unavailable"
    assert rows[first].sent_at is not None


@pytest.mark.asyncio
async def test_publishes_oldest_first(session_factory, settings, publisher, enqueue):
    ids = await enqueue(3)

    await OutboxDispatcher(session_factory, publisher, settings).dispatch_pending()

    assert [event.id for event in publisher.published] == ids


@pytest.mark.asyncio
async def test_batch_size_limits_a_tick(session_factory, settings, publisher, enqueue):
    ids = await enqueue(4)
    settings.OUTBOX_BATCH_SIZE = 3
    dispatcher = OutboxDispatcher(session_factory, publisher, settings)

    first = await dispatcher.dispatch_pending()
    second = await dispatcher.dispatch_pending()
    third = await dispatcher.dispatch_pending()

    assert (first.sent, second.sent, third.sent) == (3, 1, 0)
    assert [event.id for event in publisher.published] == ids


@pytest.mark.asyncio
async def test_sent_events_are_not_republished(session_factory, settings, publisher, enqueue):
    await enqueue(2)
    dispatcher = OutboxDispatcher(session_factory, publisher, settings)

    await dispatcher.dispatch_pending()
    await dispatcher.dispatch_pending()

    assert len(publisher.published) == 2


@pytest.mark.asyncio
async def test_failed_event_is_retried_on_a_later_tick(session_factory, settings, publisher, enqueue):
    (event_id,) = await enqueue(1)
    publisher.fail_for.add(event_id)
    dispatcher = OutboxDispatcher(session_factory, publisher, settings)

    await dispatcher.dispatch_pending()
    publisher.fail_for.clear()
    result = await dispatcher.dispatch_pending()

    assert result.requeued == 1
    assert result.sent == 1
    row = (await statuses(session_factory))[event_id]
    assert row.status == OutboxStatus.SENT
    assert row.attempts == 2


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(session_factory, settings, publisher, enqueue):
    (event_id,) = await enqueue(1)
    publisher.fail_for.add(event_id)
    dispatcher = OutboxDispatcher(session_factory, publisher, settings)

    for _ in range(settings.OUTBOX_MAX_ATTEMPTS + 2):
        await dispatcher.dispatch_pending()

    row = (await statuses(session_factory))[event_id]
    assert row.status == OutboxStatus.FAILED
    assert row.attempts == settings.OUTBOX_MAX_ATTEMPTS


@pytest.mark.asyncio
async def test_mark_sent_failure_is_logged_not_raised(session_factory, settings, publisher, enqueue, monkeypatch):
    first, second = await enqueue(2)
    real_mark_sent = OutboxStore.mark_sent

    async def flaky_mark_sent(self, event_id):
        if event_id == first:
            raise OperationalError("UPDATE outbox_events", {}, Exception("connection reset"))
        await real_mark_sent(self, event_id)

    monkeypatch.setattr(OutboxStore, "mark_sent", flaky_mark_sent)

    result = await OutboxDispatcher(session_factory, publisher, settings).dispatch_pending()

    assert result.sent == 2
    rows = await statuses(session_factory)
    assert rows[first].status == OutboxStatus.PENDING
    assert rows[second].status == OutboxStatus.SENT


@pytest.mark.asyncio
async def test_run_loop_survives_errors_and_stops_on_request(session_factory, settings, publisher, enqueue, monkeypatch):
    await enqueue(1)
    dispatcher = OutboxDispatcher(session_factory, publisher, settings)
    calls = 0
    real_dispatch = dispatcher.dispatch_pending

    async def sometimes_broken():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("database restarting")
        return await real_dispatch()

    monkeypatch.setattr(dispatcher, "dispatch_pending", sometimes_broken)

    task = asyncio.create_task(dispatcher.run())
    for _ in range(100):
        if publisher.published:
            break
        await asyncio.sleep(0.01)
    dispatcher.stop()
    await asyncio.wait_for(task, timeout=1)

    assert calls >= 2
    assert len(publisher.published) == 1


@pytest.mark.asyncio
async def test_claimed_events_are_skipped_until_the_claim_expires(session_factory, settings, enqueue):
    ids = await enqueue(3)

    async with session_factory() as s:
        claimed = await OutboxStore(s).claim_pending(2, ttl_seconds=60)
        await s.commit()
    assert [event.id for event in claimed] == ids[:2]

    async with session_factory() as s:
        rest = await OutboxStore(s).claim_pending(10, ttl_seconds=60)
        await s.commit()
    assert [event.id for event in rest] == ids[2:]

    async with session_factory() as s:
        assert await OutboxStore(s).claim_pending(10, ttl_seconds=60) == []
        for event in (await s.execute(select(OutboxEvent).where(OutboxEvent.id == ids[0]))).scalars():
            event.claimed_at = datetime.now(timezone.utc) - timedelta(minutes=5)
        await s.commit()

    async with session_factory() as s:
        expired = await OutboxStore(s).claim_pending(10, ttl_seconds=60)
    assert [event.id for event in expired] == ids[:1]


@pytest.mark.asyncio
async def test_second_dispatcher_does_not_republish_a_batch_in_progress(session_factory, settings, enqueue):
    ids = await enqueue(3)
    published = []
    overlapping_ticks = []

    class OverlappingPublisher:
        async def publish(self, event):
            if not overlapping_ticks:
                # Another dispatcher ticks while this batch is mid-flight.
                other = OutboxDispatcher(session_factory, self, settings)
                overlapping_ticks.append(await other.dispatch_pending())
            published.append(event.id)

    result = await OutboxDispatcher(session_factory, OverlappingPublisher(), settings).dispatch_pending()

    assert result.sent == 3
    assert overlapping_ticks[0].processed == 0
    assert published == ids
    rows = await statuses(session_factory)
    assert all(row.status == OutboxStatus.SENT and row.claimed_at is None for row in rows.values())
