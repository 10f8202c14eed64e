import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from payaware.db.helpers import DatabaseError
from payaware.jobs.reminder_scan_job import ReminderScanJob
from payaware.jobs.reminder_worker_pool import CandidateResult, ReminderWorkerPool
from payaware.models.domain.notification_domain import DEVICE_NOT_REGISTERED, DeliveryStatus, PushOutcome
from payaware.models.domain.subscription_domain import RecurrenceType
from payaware.models.domain.user_domain import User
from payaware.services.dedup_store import ReminderDedupStore, SubscriptionListCache
from payaware.services.delivery_service import DeliveryService
from tests.fakes import (
    FakeNotificationRepository,
    FakeProducer,
    FakePushClient,
    FakeSubscriptionRepository,
    FakeUserRepository,
    make_subscription,
)


class Harness:
    def __init__(self, fake_redis, now, subscriptions, users):
        self.redis = fake_redis
        self.queue = asyncio.Queue(maxsize=100)
        self.producer = FakeProducer()
        self.subscriptions = FakeSubscriptionRepository(subscriptions)
        self.users = FakeUserRepository(users)
        self.pool = ReminderWorkerPool(
            self.queue,
            ReminderDedupStore(fake_redis),
            self.producer,
            self.subscriptions,
            self.users,
            SubscriptionListCache(fake_redis),
            worker_count=2,
            clock=lambda: now,
        )
        self.scan = ReminderScanJob(self.subscriptions, self.queue, clock=lambda: now)

    async def drain(self) -> list[CandidateResult]:
        results = []
        while not self.queue.empty():
            results.append(await self.pool.process(self.queue.get_nowait()))
        return results


@pytest.fixture
def harness_factory(fake_redis, now, user):
    def factory(*subscriptions, users=None):
        return Harness(fake_redis, now, list(subscriptions), users if users is not None else [user])

    return factory


@pytest.mark.asyncio
async def test_publish_advances_monthly_subscription(harness_factory, fake_redis, now):
    sub = make_subscription(next_payment_date=now + timedelta(minutes=10), notification_offset=15)
    fake_redis.store["subscriptions:user:7"] = "[cached]"
    h = harness_factory(sub)

    result = await h.pool.process(sub)

    assert result is CandidateResult.PUBLISHED
    [request] = h.producer.published
    assert (request.user_id, request.subscription_id) == (7, 1)
    assert request.partition_key() == b"user-7"
    assert "Netflix" in request.message

    saved = h.subscriptions.items[1]
    assert saved.next_payment_date == datetime(2026, 4, 10, 12, 10, tzinfo=UTC)
    assert saved.notification_date == datetime(2026, 4, 10, 11, 55, tzinfo=UTC)
    assert "subscriptions:user:7" not in fake_redis.store
    assert fake_redis.ttls["reminder:subscription:1"] == 600


@pytest.mark.asyncio
async def test_non_recurring_subscription_is_not_advanced(harness_factory, now):
    sub = make_subscription(recurrence_type=RecurrenceType.NONE)
    h = harness_factory(sub)

    assert await h.pool.process(sub) is CandidateResult.PUBLISHED
    assert h.subscriptions.advanced == []


@pytest.mark.asyncio
async def test_overlapping_scans_publish_once(harness_factory, now):
    sub = make_subscription(
        recurrence_type=RecurrenceType.NONE,
        next_payment_date=now + timedelta(seconds=90),
        notification_offset=0,
    )
    h = harness_factory(sub)

    await h.scan.run_once()
    await h.scan.run_once()
    results = await h.drain()

    assert results == [CandidateResult.PUBLISHED, CandidateResult.DUPLICATE]
    assert len(h.producer.published) == 1


@pytest.mark.asyncio
async def test_late_reminder_publishes_once_until_payment(harness_factory, now):
    sub = make_subscription(
        recurrence_type=RecurrenceType.NONE,
        next_payment_date=now + timedelta(minutes=10),
        notification_offset=15,
    )
    h = harness_factory(sub)

    await h.scan.run_once()
    first = await h.drain()
    await h.scan.run_once()
    second = await h.drain()

    assert first == [CandidateResult.PUBLISHED]
    assert second == [CandidateResult.DUPLICATE]
    assert len(h.producer.published) == 1


@pytest.mark.asyncio
async def test_concurrent_workers_publish_once(harness_factory, now):
    sub = make_subscription(recurrence_type=RecurrenceType.NONE)
    h = harness_factory(sub)

    results = await asyncio.gather(*(h.pool.process(sub) for _ in range(5)))

    assert results.count(CandidateResult.PUBLISHED) == 1
    assert results.count(CandidateResult.DUPLICATE) == 4
    assert len(h.producer.published) == 1


@pytest.mark.asyncio
async def test_dedup_store_failure_means_no_publish(harness_factory, fake_redis):
    sub = make_subscription()
    h = harness_factory(sub)
    fake_redis.fail = True

    assert await h.pool.process(sub) is CandidateResult.DEDUP_ERROR
    assert h.producer.published == []
    assert h.subscriptions.advanced == []


@pytest.mark.asyncio
async def test_publish_failure_releases_marker_for_retry(harness_factory, fake_redis):
    sub = make_subscription()
    h = harness_factory(sub)
    h.producer.fail = True

    assert await h.pool.process(sub) is CandidateResult.PUBLISH_FAILED
    assert "reminder:subscription:1" not in fake_redis.store
    assert h.subscriptions.advanced == []

    h.producer.fail = False
    assert await h.pool.process(sub) is CandidateResult.PUBLISHED


@pytest.mark.asyncio
async def test_invalid_id_is_skipped(harness_factory, fake_redis):
    sub = make_subscription(id=0)
    h = harness_factory(sub)

    assert await h.pool.process(sub) is CandidateResult.INVALID
    assert fake_redis.set_calls == 0
    assert h.producer.published == []


@pytest.mark.asyncio
async def test_user_without_token_still_rolls_forward(harness_factory, fake_redis, now):
    sub = make_subscription()
    no_token = User(id=7, name="Ada", device_token=None)
    h = harness_factory(sub, users=[no_token])

    assert await h.pool.process(sub) is CandidateResult.NO_DEVICE_TOKEN
    assert h.producer.published == []
    assert h.subscriptions.items[1].next_payment_date == datetime(2026, 4, 10, 12, 10, tzinfo=UTC)

    # next cycle: same outcome, still no publish
    next_cycle = h.subscriptions.items[1]
    fake_redis.expire(next_cycle.dedup_key())
    assert await h.pool.process(next_cycle) is CandidateResult.NO_DEVICE_TOKEN
    assert h.producer.published == []


@pytest.mark.asyncio
async def test_user_lookup_failure_releases_marker(harness_factory, fake_redis):
    sub = make_subscription()
    h = harness_factory(sub)

    async def broken_get(user_id):
        raise DatabaseError("timeout", operation="fetch_one")

    h.users.get = broken_get

    assert await h.pool.process(sub) is CandidateResult.USER_LOOKUP_FAILED
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_failed_advance_is_counted_not_raised(harness_factory):
    sub = make_subscription()
    h = harness_factory(sub)
    h.subscriptions.fail_advance = True

    assert await h.pool.process(sub) is CandidateResult.PUBLISHED
    assert h.pool.advance_failures == 1


@pytest.mark.asyncio
async def test_started_pool_drains_queue(harness_factory, now):
    subs = [make_subscription(id=i, recurrence_type=RecurrenceType.NONE) for i in (1, 2, 3)]
    h = harness_factory(*subs)
    for sub in subs:
        h.queue.put_nowait(sub)

    h.pool.start()
    try:
        await asyncio.wait_for(h.queue.join(), timeout=1)
    finally:
        await h.pool.stop()

    assert sorted(r.subscription_id for r in h.producer.published) == [1, 2, 3]
    status = h.pool.get_status()
    assert status["results"]["published"] == 3
    assert status["workers_alive"] == 0


@pytest.mark.asyncio
async def test_edit_after_scan_is_not_overwritten_by_advance(harness_factory, now):
    sub = make_subscription(cost=9.99)
    h = harness_factory(sub)
    await h.scan.run_once()
    candidate = h.queue.get_nowait()

    # the user moves the payment and changes the price before the worker runs
    edited = sub.model_copy(
        update={"cost": 14.99, "next_payment_date": now + timedelta(days=3)}
    )
    h.subscriptions.items[1] = edited

    assert await h.pool.process(candidate) is CandidateResult.PUBLISHED
    assert h.subscriptions.items[1] == edited
    assert h.subscriptions.advanced == []
    assert h.pool.get_status()["advance_skipped"] == 1
    assert h.pool.advance_failures == 0


@pytest.mark.asyncio
async def test_unregistered_device_stops_next_cycle_publish(harness_factory, fake_redis, now):
    sub = make_subscription()
    h = harness_factory(sub)

    assert await h.pool.process(sub) is CandidateResult.PUBLISHED
    [request] = h.producer.published

    delivery = DeliveryService(
        h.subscriptions,
        h.users,
        FakeNotificationRepository(),
        FakePushClient(PushOutcome.terminal("not registered", DEVICE_NOT_REGISTERED)),
        jitter_max_s=0,
    )
    notification = await delivery.deliver(request)
    await delivery.drain_background()

    assert notification.status is DeliveryStatus.FAILED
    assert h.users.items[7].device_token is None

    next_cycle = h.subscriptions.items[1]
    assert next_cycle.next_payment_date == datetime(2026, 4, 10, 12, 10, tzinfo=UTC)
    fake_redis.expire(next_cycle.dedup_key())

    assert await h.pool.process(next_cycle) is CandidateResult.NO_DEVICE_TOKEN
    assert len(h.producer.published) == 1
