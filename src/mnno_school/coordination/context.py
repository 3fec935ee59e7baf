"""Data-access context – the service object that owns the coordination layer.

One :class:`DataAccessContext` is created when the application starts and
closed when it stops (see the FastAPI lifespan in :mod:`mnno_school.app`).
It owns the cache, the request coordinator, the snapshot store, the event
bus and the stale-response guard, and implements the load flow every
feature service goes through:

    coordinator gate -> global cache (hit / coalesce / fetch) -> snapshot write-through
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from mnno_school.coordination.cache import DataList, Fetcher, GlobalCache
from mnno_school.coordination.coordinator import RequestCoordinator
from mnno_school.coordination.events import (
    CompanyRelationChanged,
    CompanyUpdated,
    EventBus,
    ForceReloadCompanies,
    NotificationReceived,
    NotificationsRead,
    UserProfileUpdated,
    UserSignedOut,
)
from mnno_school.coordination.persistence import LocalPersistence
from mnno_school.coordination.supersede import StaleResponseGuard
from mnno_school.settings import CoordinationSettings
from mnno_school.settings import settings as default_settings

logger = logging.getLogger(__name__)

COMPANIES_NAMESPACE = "companies"
TEAM_MEMBERS_NAMESPACE = "team_members"
SELECTION_NAMESPACE = "selection"
NOTIFICATIONS_NAMESPACE = "notifications"


def cache_key(namespace: str, scope: str) -> str:
    """Build the ``namespace:scope`` key shared by the cache and the snapshots."""
    return f"{namespace}:{scope}"


class DataSource(StrEnum):
    """Where the data returned by :meth:`DataAccessContext.load` came from."""

    network = "network"
    cache = "cache"
    coalesced = "coalesced"
    snapshot = "snapshot"


class LoadBlocked(RuntimeError):
    """Raised when the error backoff refuses a load and no data is available."""

    def __init__(self, key: str, retry_after: float) -> None:
        super().__init__(
            f"Requests for {key} are paused for {retry_after:.0f}s after repeated errors"
        )
        self.key = key
        self.retry_after = retry_after


@dataclass
class LoadResult:
    data: DataList
    source: DataSource
    stale: bool = False


class DataAccessContext:
    """Process-wide owner of the coordination services."""

    def __init__(
        self,
        config: CoordinationSettings | None = None,
        *,
        cache: GlobalCache | None = None,
        coordinator: RequestCoordinator | None = None,
        persistence: LocalPersistence | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.config = config or default_settings
        self.cache = cache or GlobalCache(
            ttl_seconds=self.config.cache_ttl_seconds,
            eviction_interval_seconds=self.config.eviction_interval_seconds,
        )
        self.coordinator = coordinator or RequestCoordinator(
            throttle_window_seconds=self.config.throttle_window_seconds,
            debounce_delay_ms=self.config.debounce_delay_ms,
            error_backoff_base_seconds=self.config.error_backoff_base_seconds,
            error_backoff_max_seconds=self.config.error_backoff_max_seconds,
        )
        self.persistence = persistence or LocalPersistence(
            self.config.snapshot_db_path,
            version=self.config.snapshot_version,
            max_entry_bytes=self.config.snapshot_max_entry_bytes,
        )
        self.events = events or EventBus()
        self.guard = StaleResponseGuard()

        self._persisted_keys: set[str] = set()
        self._unsubscribe_cache = self.cache.subscribe(self._write_through)
        self._wire_events()

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.cache.start()
        logger.info(
            "Data-access context started (ttl=%ss, throttle=%ss, eviction every %ss)",
            self.config.cache_ttl_seconds,
            self.config.throttle_window_seconds,
            self.config.eviction_interval_seconds,
        )

    async def close(self) -> None:
        await self.cache.close()
        self.coordinator.reset()
        self.events.clear_owner(self)
        self._unsubscribe_cache()
        self.persistence.close()
        logger.info("Data-access context closed")

    async def __aenter__(self) -> DataAccessContext:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Load flow
    # ------------------------------------------------------------------

    async def load(
        self,
        key: str,
        fetcher: Fetcher,
        *,
        force_refresh: bool = False,
        persist: bool = True,
    ) -> LoadResult:
        """Load *key* through the coordinator, the cache and the snapshot store.

        A refused request returns the data already available (fresh cache
        data, else the snapshot).  When nothing is available at all the
        load goes ahead regardless, so the gate never starves a first load,
        unless the error backoff is active: then :class:`LoadBlocked` is raised.
        Fetch errors propagate; the previous cache data stays in place and
        can be read with :meth:`last_known`.
        """
        if persist:
            self._persisted_keys.add(key)

        cached = self.cache.peek(key)
        snapshot = None
        if cached is None and persist:
            snapshot = self.persistence.read(key, self.config.snapshot_max_age_minutes)
        has_existing = cached is not None or snapshot is not None

        allowed = self.coordinator.should_make_request(
            force_refresh=force_refresh, has_cached_data=has_existing, key=key
        )
        if not allowed:
            if self.cache.is_pending(key):
                return LoadResult(await self.cache.get(key, fetcher), DataSource.coalesced)
            if cached is not None:
                return LoadResult(cached, DataSource.cache)
            if snapshot is not None:
                return LoadResult(snapshot, DataSource.snapshot, stale=True)
            retry_after = self.coordinator.error_block_remaining()
            if retry_after:
                raise LoadBlocked(key, retry_after)
            logger.debug("No data available for %s, loading despite the request gate", key)

        was_fresh = not force_refresh and self.cache.has(key)
        was_pending = self.cache.is_pending(key)
        started = time.monotonic()
        with self.coordinator.request(key):
            data = await self.cache.get(key, fetcher, force=force_refresh)

        elapsed = time.monotonic() - started
        if elapsed > self.config.slow_loading_threshold_seconds:
            logger.warning("Loading %s took %.0fs", key, elapsed)

        if was_fresh:
            source = DataSource.cache
        elif was_pending:
            source = DataSource.coalesced
        else:
            source = DataSource.network
        return LoadResult(data, source)

    def last_known(self, key: str) -> DataList | None:
        """Best available data for *key*, stale cache entries and snapshots included."""
        data = self.cache.peek(key, allow_stale=True)
        if data is not None:
            return data
        return self.persistence.read(key, self.config.snapshot_max_age_minutes)

    def remember(self, key: str, data: Any) -> bool:
        """Persist a small value (e.g. the selected company) outside the cache."""
        return self.persistence.write(key, data)

    def recall(self, key: str) -> Any | None:
        return self.persistence.read(key, self.config.snapshot_max_age_minutes)

    def invalidate(self, key: str | None = None, *, snapshots: bool = False) -> None:
        self.cache.invalidate(key)
        if snapshots:
            if key is None:
                self.persistence.clear_all()
            else:
                self.persistence.clear(key)

    def _write_through(self, key: str, data: DataList) -> None:
        if key in self._persisted_keys:
            self.persistence.write(key, data)

    # ------------------------------------------------------------------
    # Event wiring
    # ------------------------------------------------------------------

    def _wire_events(self) -> None:
        self.events.subscribe(ForceReloadCompanies, self._on_force_reload, owner=self)
        self.events.subscribe(CompanyRelationChanged, self._on_relation_changed, owner=self)
        self.events.subscribe(CompanyUpdated, self._on_company_updated, owner=self)
        self.events.subscribe(UserProfileUpdated, self._on_profile_updated, owner=self)
        self.events.subscribe(NotificationReceived, self._on_notifications_changed, owner=self)
        self.events.subscribe(NotificationsRead, self._on_notifications_changed, owner=self)
        self.events.subscribe(UserSignedOut, self._on_signed_out, owner=self)

    def _on_force_reload(self, _event: ForceReloadCompanies) -> None:
        self.cache.invalidate_namespace(COMPANIES_NAMESPACE)

    def _on_relation_changed(self, event: CompanyRelationChanged) -> None:
        key = cache_key(COMPANIES_NAMESPACE, event.user_id)
        self.cache.invalidate(key)
        self.persistence.clear(key)

    def _on_company_updated(self, event: CompanyUpdated) -> None:
        self.cache.invalidate_namespace(COMPANIES_NAMESPACE)
        self.cache.invalidate(cache_key(TEAM_MEMBERS_NAMESPACE, event.company_id))

    def _on_profile_updated(self, event: UserProfileUpdated) -> None:
        # Member lists embed display names and avatars.
        self.cache.invalidate_namespace(TEAM_MEMBERS_NAMESPACE)

    def _on_notifications_changed(self, event: NotificationReceived | NotificationsRead) -> None:
        self.cache.invalidate(cache_key(NOTIFICATIONS_NAMESPACE, event.user_id))

    def _on_signed_out(self, event: UserSignedOut) -> None:
        logger.info("User %s signed out, clearing cached data", event.user_id)
        self.cache.invalidate()
        self.persistence.clear_all()
        self._persisted_keys.clear()

    def stats(self) -> dict[str, Any]:
        return {
            "cache": self.cache.stats(),
            "coordinator": self.coordinator.stats(),
            "persistedKeys": sorted(self._persisted_keys),
        }
