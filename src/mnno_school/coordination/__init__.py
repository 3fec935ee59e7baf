"""Client-side data-access coordination layer.

Re-exports the public names so callers can write
``from mnno_school.coordination import GlobalCache``.
"""

from mnno_school.coordination.cache import CacheEntry, GlobalCache  # noqa: F401
from mnno_school.coordination.context import (  # noqa: F401
    COMPANIES_NAMESPACE,
    NOTIFICATIONS_NAMESPACE,
    SELECTION_NAMESPACE,
    TEAM_MEMBERS_NAMESPACE,
    DataAccessContext,
    DataSource,
    LoadBlocked,
    LoadResult,
    cache_key,
)
from mnno_school.coordination.coordinator import RequestCoordinator  # noqa: F401
from mnno_school.coordination.events import (  # noqa: F401
    EVENT_TYPES,
    CompanyRelationChanged,
    CompanySelected,
    CompanyUpdated,
    Event,
    EventBus,
    ForceReloadCompanies,
    NotificationReceived,
    NotificationsRead,
    UserProfileUpdated,
    UserSignedOut,
)
from mnno_school.coordination.persistence import LocalPersistence  # noqa: F401
from mnno_school.coordination.rate_limit import Debouncer, RateLimiter  # noqa: F401
from mnno_school.coordination.supersede import StaleResponseGuard  # noqa: F401
