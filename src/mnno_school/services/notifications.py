"""Per-user notification inbox.

Notifications are loaded through the data-access context under the
``notifications:{user_id}`` key.  They change often and are cheap to
refetch, so they are never mirrored to snapshots.  A
``notification-received`` or ``notifications-read`` event drops the cached
list (see :meth:`DataAccessContext._wire_events`).
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mnno_school import supabase_api
from mnno_school.coordination import (
    NOTIFICATIONS_NAMESPACE,
    DataAccessContext,
    LoadResult,
    NotificationsRead,
    cache_key,
)

logger = logging.getLogger(__name__)

NotificationFetcher = Callable[[str], Awaitable[list[dict[str, Any]]]]
ReadMarker = Callable[[str, str | None], Awaitable[int]]


def _for_company(
    notifications: list[dict[str, Any]], company_id: str | None
) -> list[dict[str, Any]]:
    if not company_id:
        return list(notifications)
    return [n for n in notifications if str(n.get("company_id")) == company_id]


def count_unread(notifications: list[dict[str, Any]]) -> int:
    return sum(1 for n in notifications if not n.get("read"))


class NotificationInbox:
    def __init__(
        self,
        context: DataAccessContext,
        fetch_notifications: NotificationFetcher | None = None,
        mark_read: ReadMarker | None = None,
    ) -> None:
        self._context = context
        self._fetch_notifications = fetch_notifications
        self._mark_read = mark_read

    async def list_notifications(
        self,
        user_id: str,
        company_id: str | None = None,
        *,
        force_refresh: bool = False,
    ) -> LoadResult:
        """Return the user's notifications, newest first, optionally for one company."""
        fetch = self._fetch_notifications or supabase_api.list_notifications
        result = await self._context.load(
            cache_key(NOTIFICATIONS_NAMESPACE, user_id),
            lambda: fetch(user_id),
            force_refresh=force_refresh,
            persist=False,
        )
        return LoadResult(_for_company(result.data, company_id), result.source, result.stale)

    async def unread_count(self, user_id: str, company_id: str | None = None) -> int:
        result = await self.list_notifications(user_id, company_id)
        return count_unread(result.data)

    def last_known(self, user_id: str, company_id: str | None = None) -> list[dict[str, Any]]:
        data = self._context.last_known(cache_key(NOTIFICATIONS_NAMESPACE, user_id)) or []
        return _for_company(data, company_id)

    async def mark_all_read(self, user_id: str, company_id: str | None = None) -> int:
        """Flag every unread notification as read and announce it on the event bus."""
        mark = self._mark_read or supabase_api.mark_notifications_read
        changed = await mark(user_id, company_id)
        self._context.events.publish(NotificationsRead(user_id=user_id))
        logger.info("Marked %d notification(s) read for %s", changed, user_id)
        return changed
