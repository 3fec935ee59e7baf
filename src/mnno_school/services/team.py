"""Team member directory for the selected company.

Only the most recent request is allowed to update the directory: switching
company cancels the in-flight load for the previous one, and a response
that arrives after being superseded is dropped instead of overwriting the
newer members.  A ``company-selected`` event for another company clears
the directory.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mnno_school import supabase_api
from mnno_school.coordination import (
    TEAM_MEMBERS_NAMESPACE,
    CompanySelected,
    DataAccessContext,
    LoadResult,
    cache_key,
)

logger = logging.getLogger(__name__)

MemberFetcher = Callable[[str], Awaitable[list[dict[str, Any]]]]

_SCOPE = "team-members"


class TeamDirectory:
    def __init__(
        self, context: DataAccessContext, fetch_members: MemberFetcher | None = None
    ) -> None:
        self._context = context
        self._fetch_members = fetch_members
        self._inflight: asyncio.Task[LoadResult] | None = None
        self.company_id: str | None = None
        self.members: list[dict[str, Any]] = []
        context.events.subscribe(CompanySelected, self._on_company_selected, owner=self)

    def close(self) -> None:
        self.reset()
        self._context.events.clear_owner(self)

    async def show_members(
        self, company_id: str, *, force_refresh: bool = False
    ) -> LoadResult | None:
        """Load the members of *company_id* and make them the current view.

        Returns ``None`` when a newer request superseded this one before it
        completed.  Members are not mirrored to snapshots (avatars make the
        payload too large).
        """
        guard = self._context.guard
        ticket = guard.begin(_SCOPE, company_id)

        previous = self._inflight
        if previous is not None and not previous.done():
            logger.debug("Cancelling superseded team member load")
            previous.cancel()

        fetch = self._fetch_members or supabase_api.list_team_members
        task = asyncio.ensure_future(
            self._context.load(
                cache_key(TEAM_MEMBERS_NAMESPACE, company_id),
                lambda: fetch(company_id),
                force_refresh=force_refresh,
                persist=False,
            )
        )
        self._inflight = task
        try:
            result = await task
        except asyncio.CancelledError:
            if task.cancelled() and not guard.is_current(_SCOPE, ticket):
                logger.debug("Team member load for %s was superseded", company_id)
                return None
            raise
        finally:
            if self._inflight is task:
                self._inflight = None

        if not guard.is_current(_SCOPE, ticket):
            logger.debug("Discarding late team members for %s", company_id)
            return None

        self.company_id = company_id
        self.members = result.data
        return result

    def reset(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None
        self._context.guard.reset(_SCOPE)
        self.company_id = None
        self.members = []

    def _on_company_selected(self, event: CompanySelected) -> None:
        loading = self._context.guard.current_marker(_SCOPE) if self._inflight else None
        if event.company_id not in (self.company_id, loading):
            logger.debug("Company %s selected, clearing team members", event.company_id)
            self.reset()
