from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from payaware.models.domain.notification_domain import DeliveryStatus, Notification
from payaware.models.domain.subscription_domain import RecurrenceType
from payaware.repositories.notification_repository import NotificationRepository
from payaware.repositories.subscription_repository import RepositoryError, SubscriptionRepository
from payaware.repositories.user_repository import UserRepository
from payaware.services.recurrence import SubscriptionValidationError
from tests.fakes import make_subscription

SUB_MODULE = "payaware.repositories.subscription_repository"
NOTIF_MODULE = "payaware.repositories.notification_repository"
USER_MODULE = "payaware.repositories.user_repository"


def subscription_row(**overrides):
    row = {
        "id": 1,
        "user_id": 7,
        "service_name": "Netflix",
        "cost": 9.99,
        "next_payment_date": datetime(2026, 4, 1, 9, 0),
        "notification_offset": None,
        "recurrence_type": "",
        "tag": None,
        "high_priority": None,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_find_due_maps_legacy_rows():
    pool = object()
    now = datetime(2026, 4, 1, 8, 59, tzinfo=UTC)
    with patch(f"{SUB_MODULE}.fetch_all", AsyncMock(return_value=[subscription_row()])) as fetch:
        [sub] = await SubscriptionRepository(pool).find_due(now, now + timedelta(minutes=2))

    assert fetch.await_args.args[2] == (now + timedelta(minutes=2), now)
    assert sub.recurrence_type is RecurrenceType.NONE
    assert sub.notification_offset == 0
    assert sub.tag == ""
    assert sub.next_payment_date.tzinfo is UTC


@pytest.mark.asyncio
async def test_save_writes_derived_notification_date():
    sub = make_subscription()
    with patch(f"{SUB_MODULE}.execute_query", AsyncMock(return_value=1)) as execute:
        await SubscriptionRepository(object()).save(sub)

    params = execute.await_args.args[2]
    assert sub.notification_date in params
    assert params[-1] == sub.id


@pytest.mark.asyncio
async def test_save_missing_row_raises():
    with patch(f"{SUB_MODULE}.execute_query", AsyncMock(return_value=0)):
        with pytest.raises(RepositoryError) as exc:
            await SubscriptionRepository(object()).save(make_subscription())
    assert exc.value.recoverable is False


@pytest.mark.asyncio
async def test_advance_payment_only_touches_dates_of_unchanged_row():
    old = datetime(2026, 3, 10, 12, 10, tzinfo=UTC)
    new = datetime(2026, 4, 10, 12, 10, tzinfo=UTC)
    notify = datetime(2026, 4, 10, 11, 55, tzinfo=UTC)
    with patch(f"{SUB_MODULE}.execute_query", AsyncMock(return_value=1)) as execute:
        applied = await SubscriptionRepository(object()).advance_payment(1, old, new, notify)

    assert applied is True
    query, params = execute.await_args.args[1:]
    assert params == (new, notify, 1, old)
    assert "WHERE id = %s" in query
    assert "AND next_payment_date = %s" in query
    assert "cost" not in query
    assert "service_name" not in query


@pytest.mark.asyncio
async def test_advance_payment_on_edited_row_is_skipped():
    old = datetime(2026, 3, 10, 12, 10, tzinfo=UTC)
    with patch(f"{SUB_MODULE}.execute_query", AsyncMock(return_value=0)):
        applied = await SubscriptionRepository(object()).advance_payment(
            1, old, old + timedelta(days=31), old + timedelta(days=31)
        )

    assert applied is False


@pytest.mark.asyncio
async def test_create_validates_before_insert():
    with patch(f"{SUB_MODULE}.fetch_one", AsyncMock()) as fetch:
        with pytest.raises(SubscriptionValidationError):
            await SubscriptionRepository(object()).create(make_subscription(cost=-1))
    fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_delete_removes_history_first():
    with patch(f"{SUB_MODULE}.execute_transaction", AsyncMock()) as transaction:
        await SubscriptionRepository(object()).delete(5)

    statements = transaction.await_args.args[1]
    assert statements[0][0].startswith("DELETE FROM notifications")
    assert statements[1] == ("DELETE FROM subscriptions WHERE id = %s", (5,))


def notification_row(**overrides):
    row = {
        "id": 3,
        "user_id": 7,
        "subscription_id": 1,
        "message": "Don't forget to pay",
        "sent_at": datetime(2026, 4, 1, 9, 0, tzinfo=UTC),
        "status": "success",
        "read_at": None,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_notification_history_paging():
    with patch(f"{NOTIF_MODULE}.fetch_all", AsyncMock(return_value=[notification_row()])) as fetch:
        [notification] = await NotificationRepository(object()).list_for_user(7)

    assert fetch.await_args.args[2] == (7, 20, 0)
    assert notification.status is DeliveryStatus.SUCCESS


@pytest.mark.asyncio
@pytest.mark.parametrize("limit, offset", [(0, 0), (10, -1)])
async def test_notification_history_rejects_bad_paging(limit, offset):
    with pytest.raises(ValueError):
        await NotificationRepository(object()).list_for_user(7, limit=limit, offset=offset)


@pytest.mark.asyncio
async def test_mark_read_for_other_user_returns_none():
    with patch(f"{NOTIF_MODULE}.fetch_one", AsyncMock(return_value=None)):
        assert await NotificationRepository(object()).mark_read(3, user_id=99) is None


@pytest.mark.asyncio
async def test_create_notification_returns_stored_row():
    notification = Notification(
        user_id=7,
        subscription_id=1,
        message="Don't forget to pay",
        sent_at=datetime(2026, 4, 1, 9, 0, tzinfo=UTC),
        status=DeliveryStatus.FAILED,
    )
    row = notification_row(status="failed")
    with patch(f"{NOTIF_MODULE}.fetch_one", AsyncMock(return_value=row)) as fetch:
        stored = await NotificationRepository(object()).create(notification)

    assert stored.id == 3
    assert fetch.await_args.args[2][-1] == "failed"


@pytest.mark.asyncio
async def test_clear_device_token_is_idempotent():
    with patch(f"{USER_MODULE}.execute_query", AsyncMock(side_effect=[1, 0])):
        repo = UserRepository(object())
        assert await repo.clear_device_token(7) is True
        assert await repo.clear_device_token(7) is False
