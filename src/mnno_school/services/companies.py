"""Company directory – the user's companies and the selected company.

Company lists are loaded through the data-access context under the
``companies:{user_id}`` key and mirrored to snapshots.  When a user's
company relations change, every listener that reacts to it funnels into
one debounced forced reload.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mnno_school import supabase_api
from mnno_school.coordination import (
    COMPANIES_NAMESPACE,
    SELECTION_NAMESPACE,
    CompanyRelationChanged,
    CompanySelected,
    DataAccessContext,
    LoadResult,
    cache_key,
)

logger = logging.getLogger(__name__)

CompanyFetcher = Callable[[str], Awaitable[list[dict[str, Any]]]]


class CompanyDirectory:
    def __init__(
        self,
        context: DataAccessContext,
        fetch_companies: CompanyFetcher | None = None,
    ) -> None:
        self._context = context
        self._fetch_companies = fetch_companies
        context.events.subscribe(CompanyRelationChanged, self._on_relation_changed, owner=self)

    def close(self) -> None:
        self._context.events.clear_owner(self)

    async def list_user_companies(self, user_id: str, *, force_refresh: bool = False) -> LoadResult:
        key = cache_key(COMPANIES_NAMESPACE, user_id)
        fetch = self._fetch_companies or supabase_api.list_user_companies
        return await self._context.load(key, lambda: fetch(user_id), force_refresh=force_refresh)

    def last_known_companies(self, user_id: str) -> list[dict[str, Any]]:
        return self._context.last_known(cache_key(COMPANIES_NAMESPACE, user_id)) or []

    def select_company(self, user_id: str, company_id: str) -> dict[str, str]:
        """Record *company_id* as the user's selected company.

        Raises ``LookupError`` when the company is not in the user's
        last known company list.
        """
        company = next(
            (c for c in self.last_known_companies(user_id) if str(c.get("id")) == company_id),
            None,
        )
        if company is None:
            raise LookupError(f"Company {company_id} is not available to user {user_id}")

        selection = {"id": company_id, "name": str(company.get("nome") or "")}
        self._context.remember(cache_key(SELECTION_NAMESPACE, user_id), selection)
        self._context.events.publish(
            CompanySelected(user_id=user_id, company_id=company_id, company_name=selection["name"])
        )
        logger.info("User %s selected company %s", user_id, company_id)
        return selection

    def selected_company(self, user_id: str) -> dict[str, str] | None:
        selection: dict[str, str] | None = self._context.recall(
            cache_key(SELECTION_NAMESPACE, user_id)
        )
        return selection

    # ------------------------------------------------------------------
    # Relation changes
    # ------------------------------------------------------------------

    def _on_relation_changed(self, event: CompanyRelationChanged) -> None:
        reload = self._context.coordinator.debounce(
            self._reload, key=f"reload-companies:{event.user_id}"
        )
        reload(event.user_id)

    async def _reload(self, user_id: str) -> None:
        try:
            result = await self.list_user_companies(user_id, force_refresh=True)
        except Exception as exc:
            logger.warning("Reloading companies for %s failed: %s", user_id, exc)
            return
        # The forced reload stands in for the automatic one that would follow.
        self._context.coordinator.skip_next_request()
        logger.info("Reloaded %d companies for %s", len(result.data), user_id)
