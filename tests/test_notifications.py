"""Tests for the notification inbox service."""

from unittest.mock import AsyncMock, patch

import pytest

from mnno_school.coordination import (
    DataAccessContext,
    DataSource,
    GlobalCache,
    LocalPersistence,
    NotificationReceived,
    NotificationsRead,
    RequestCoordinator,
)
from mnno_school.services.notifications import NotificationInbox, count_unread
from mnno_school.settings import CoordinationSettings

NOTIFICATIONS = [
    {"id": "n3", "company_id": "c1", "read": False},
    {"id": "n2", "company_id": "c2", "read": False},
    {"id": "n1", "company_id": "c1", "read": True},
]


@pytest.fixture()
def context(clock):
    return DataAccessContext(
        CoordinationSettings(),
        cache=GlobalCache(ttl_seconds=30, clock=clock),
        coordinator=RequestCoordinator(throttle_window_seconds=0, clock=clock),
        persistence=LocalPersistence(clock=clock),
    )


class TestListNotifications:
    """Inbox reads go through the data-access context."""

    @pytest.mark.anyio()
    async def test_loads_and_caches(self, context):
        fetch = AsyncMock(return_value=NOTIFICATIONS)
        inbox = NotificationInbox(context, fetch_notifications=fetch)

        first = await inbox.list_notifications("u1")
        second = await inbox.list_notifications("u1")
        assert first.data == NOTIFICATIONS
        assert first.source is DataSource.network
        assert second.source is DataSource.cache
        fetch.assert_awaited_once_with("u1")

    @pytest.mark.anyio()
    async def test_filters_by_company(self, context):
        inbox = NotificationInbox(context, fetch_notifications=AsyncMock(return_value=NOTIFICATIONS))
        result = await inbox.list_notifications("u1", "c1")
        assert [n["id"] for n in result.data] == ["n3", "n1"]
        assert await inbox.unread_count("u1", "c1") == 1
        assert await inbox.unread_count("u1") == 2

    @pytest.mark.anyio()
    async def test_never_persisted(self, context):
        inbox = NotificationInbox(context, fetch_notifications=AsyncMock(return_value=NOTIFICATIONS))
        await inbox.list_notifications("u1")
        assert context.persistence.keys() == []

    @pytest.mark.anyio()
    async def test_received_event_triggers_refetch(self, context):
        fetch = AsyncMock(side_effect=[NOTIFICATIONS[1:], NOTIFICATIONS])
        inbox = NotificationInbox(context, fetch_notifications=fetch)

        await inbox.list_notifications("u1")
        context.events.publish(NotificationReceived(user_id="u1", notification_id="n3"))
        result = await inbox.list_notifications("u1")
        assert result.source is DataSource.network
        assert result.data == NOTIFICATIONS
        assert fetch.await_count == 2

    @pytest.mark.anyio()
    async def test_defaults_to_supabase_query(self, context):
        inbox = NotificationInbox(context)
        with patch(
            "mnno_school.supabase_api.list_notifications", AsyncMock(return_value=[])
        ) as mock_list:
            await inbox.list_notifications("u7")
        mock_list.assert_awaited_once_with("u7")

    def test_last_known_empty_when_never_loaded(self, context):
        assert NotificationInbox(context).last_known("u1") == []


class TestMarkAllRead:
    """Marking read publishes ``notifications-read``."""

    @pytest.mark.anyio()
    async def test_marks_and_publishes(self, context):
        mark = AsyncMock(return_value=2)
        inbox = NotificationInbox(
            context, fetch_notifications=AsyncMock(return_value=NOTIFICATIONS), mark_read=mark
        )
        published = []
        context.events.subscribe(NotificationsRead, published.append)
        await inbox.list_notifications("u1")

        assert await inbox.mark_all_read("u1", "c1") == 2
        mark.assert_awaited_once_with("u1", "c1")
        assert published == [NotificationsRead(user_id="u1")]
        assert "notifications:u1" not in context.cache

    @pytest.mark.anyio()
    async def test_failure_publishes_nothing(self, context):
        inbox = NotificationInbox(context, mark_read=AsyncMock(side_effect=ConnectionError("x")))
        published = []
        context.events.subscribe(NotificationsRead, published.append)
        with pytest.raises(ConnectionError):
            await inbox.mark_all_read("u1")
        assert published == []


def test_count_unread():
    assert count_unread(NOTIFICATIONS) == 2
    assert count_unread([]) == 0
