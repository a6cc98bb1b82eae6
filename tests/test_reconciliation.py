"""Tests for notification reconciliation (debounce and cross-type suppression)."""

from unittest.mock import AsyncMock

import pytest

from outlook_gateway.models.notifications import ChangeType, NotificationEvent
from outlook_gateway.services.reconciliation import (
    NotificationReconciler,
    group_by_subscription,
    is_suppressed,
    suppressing_change_types,
)
from outlook_gateway.utils.errors import CacheUnavailable

CREATED, UPDATED, DELETED = ChangeType.CREATED, ChangeType.UPDATED, ChangeType.DELETED


def event(change_type: ChangeType, event_id: str = "X", account: str = "work", sub: str = "sub-1"):
    return NotificationEvent(
        account_name=account,
        event_id=event_id,
        change_type=change_type,
        subscription_id=sub,
        raw_payload={"changeType": change_type.value},
    )


@pytest.fixture
def reconciler(memory_cache):
    return NotificationReconciler(memory_cache)


class TestSuppressionTable:
    """The pure decision function."""

    @pytest.mark.parametrize("change_type", [CREATED, UPDATED, DELETED])
    def test_self_duplicate(self, change_type):
        assert is_suppressed(change_type, {change_type})

    @pytest.mark.parametrize(
        "incoming,seen,expected",
        [
            (UPDATED, {CREATED}, True),
            (UPDATED, {DELETED}, True),
            (CREATED, {UPDATED}, True),
            (DELETED, {UPDATED}, True),
            (CREATED, {DELETED}, False),
            (DELETED, {CREATED}, False),
            (CREATED, set(), False),
        ],
    )
    def test_cross_type(self, incoming, seen, expected):
        assert is_suppressed(incoming, seen) is expected

    def test_suppressing_change_types(self):
        assert suppressing_change_types(UPDATED) == (UPDATED, CREATED, DELETED)
        assert suppressing_change_types(CREATED) == (CREATED, UPDATED)


class TestNotificationReconciler:
    async def test_duplicate_within_window_is_suppressed(self, reconciler, memory_cache):
        assert await reconciler.accept(event(CREATED)) is True
        assert await reconciler.accept(event(CREATED)) is False
        assert await memory_cache.get("work:created:X") is not None

    async def test_update_after_create_suppressed(self, reconciler):
        assert await reconciler.accept(event(CREATED)) is True
        assert await reconciler.accept(event(UPDATED)) is False

    async def test_delete_after_update_suppressed(self, reconciler):
        assert await reconciler.accept(event(UPDATED)) is True
        assert await reconciler.accept(event(DELETED)) is False

    async def test_created_redelivered_across_window(self, reconciler, clock):
        """TTL 120s: created at t=0 accepted, t=10 suppressed, t=130 accepted."""
        assert await reconciler.accept(event(CREATED, "E1")) is True
        clock.advance(10)
        assert await reconciler.accept(event(CREATED, "E1")) is False
        clock.advance(120)
        assert await reconciler.accept(event(CREATED, "E1")) is True

    async def test_update_one_second_after_create(self, reconciler, clock):
        assert await reconciler.accept(event(CREATED, "E2")) is True
        clock.advance(1)
        assert await reconciler.accept(event(UPDATED, "E2")) is False

    async def test_update_accepted_after_window(self, reconciler, clock):
        assert await reconciler.accept(event(CREATED)) is True
        clock.advance(10)
        assert await reconciler.accept(event(UPDATED)) is False
        clock.advance(120)
        assert await reconciler.accept(event(UPDATED)) is True

    async def test_update_then_create_keeps_update(self, reconciler):
        assert await reconciler.accept(event(UPDATED)) is True
        assert await reconciler.accept(event(CREATED)) is False

    async def test_batch_keeps_arrival_order(self, reconciler):
        accepted = await reconciler.reconcile([event(CREATED), event(UPDATED), event(DELETED)])
        assert [e.change_type for e in accepted] == [CREATED, DELETED]

    async def test_accounts_are_independent(self, reconciler):
        assert await reconciler.accept(event(CREATED, account="work")) is True
        assert await reconciler.accept(event(CREATED, account="home")) is True

    async def test_cache_read_failure_fails_open(self):
        cache = AsyncMock()
        cache.get = AsyncMock(side_effect=CacheUnavailable("down"))
        cache.add = AsyncMock(return_value=True)
        reconciler = NotificationReconciler(cache)

        assert await reconciler.accept(event(UPDATED)) is True
        assert await reconciler.accept(event(UPDATED)) is True

    async def test_cache_write_failure_still_accepts(self):
        cache = AsyncMock()
        cache.get = AsyncMock(return_value=None)
        cache.add = AsyncMock(side_effect=CacheUnavailable("down"))
        reconciler = NotificationReconciler(cache)

        assert await reconciler.accept(event(CREATED)) is True

    async def test_lost_claim_race_is_suppressed(self):
        cache = AsyncMock()
        cache.get = AsyncMock(return_value=None)
        cache.add = AsyncMock(return_value=False)
        reconciler = NotificationReconciler(cache)

        assert await reconciler.accept(event(CREATED)) is False

    async def test_stores_with_reconciler_ttl(self):
        cache = AsyncMock()
        cache.get = AsyncMock(return_value=None)
        cache.add = AsyncMock(return_value=True)
        reconciler = NotificationReconciler(cache, ttl=45)

        await reconciler.accept(event(CREATED))
        key, _payload, ttl = cache.add.await_args.args
        assert key == "work:created:X"
        assert ttl == 45


def test_group_by_subscription_preserves_order():
    events = [
        event(CREATED, "a", sub="s1"),
        event(CREATED, "b", sub="s2"),
        event(UPDATED, "c", sub="s1"),
    ]
    groups = group_by_subscription(events)
    assert [(sub, [e.event_id for e in items]) for sub, _, items in groups] == [
        ("s1", ["a", "c"]),
        ("s2", ["b"]),
    ]
