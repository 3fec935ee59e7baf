"""Typed application event bus.

Unrelated parts of the application notify each other of cache-relevant
changes (a company relation changed, a forced reload, a sign-out) through
this bus.  Events are frozen dataclasses; handlers subscribe to an event
*type*, so emitters and listeners are checked against the same class.
"""

from __future__ import annotations

import contextlib
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    """Base class for every application event."""

    name = "event"


@dataclass(frozen=True)
class CompanyRelationChanged(Event):
    user_id: str
    name = "company-relation-changed"


@dataclass(frozen=True)
class CompanySelected(Event):
    user_id: str
    company_id: str
    company_name: str = ""
    name = "company-selected"


@dataclass(frozen=True)
class CompanyUpdated(Event):
    company_id: str
    name = "company-updated"


@dataclass(frozen=True)
class ForceReloadCompanies(Event):
    name = "force-reload-companies"


@dataclass(frozen=True)
class UserProfileUpdated(Event):
    user_id: str
    name = "user-profile-updated"


@dataclass(frozen=True)
class NotificationReceived(Event):
    user_id: str
    notification_id: str
    name = "notification-received"


@dataclass(frozen=True)
class NotificationsRead(Event):
    user_id: str
    name = "notifications-read"


@dataclass(frozen=True)
class UserSignedOut(Event):
    user_id: str
    name = "user-signed-out"


EVENT_TYPES: dict[str, type[Event]] = {
    cls.name: cls
    for cls in (
        CompanyRelationChanged,
        CompanySelected,
        CompanyUpdated,
        ForceReloadCompanies,
        UserProfileUpdated,
        NotificationReceived,
        NotificationsRead,
        UserSignedOut,
    )
}

E = TypeVar("E", bound=Event)
Handler = Callable[[Any], None]


class EventBus:
    """Publish/subscribe channel keyed by event type."""

    def __init__(self) -> None:
        self._handlers: dict[type[Event], list[Handler]] = defaultdict(list)
        self._owners: dict[int, list[tuple[type[Event], Handler]]] = defaultdict(list)

    def subscribe(
        self,
        event_type: type[E],
        handler: Callable[[E], None],
        *,
        owner: object | None = None,
    ) -> Callable[[], None]:
        """Register *handler* for *event_type*; returns an unsubscribe function.

        Subscriptions made with an *owner* can be dropped together with
        :meth:`clear_owner`.
        """
        self._handlers[event_type].append(handler)
        if owner is not None:
            self._owners[id(owner)].append((event_type, handler))

        def unsubscribe() -> None:
            self._remove(event_type, handler)

        return unsubscribe

    def _remove(self, event_type: type[Event], handler: Handler) -> None:
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        with contextlib.suppress(ValueError):
            handlers.remove(handler)
        if not handlers:
            del self._handlers[event_type]

    def clear_owner(self, owner: object) -> None:
        for event_type, handler in self._owners.pop(id(owner), []):
            self._remove(event_type, handler)

    def publish(self, event: Event) -> int:
        """Deliver *event* to its handlers; returns how many ran successfully."""
        logger.debug("Publishing event %s: %s", event.name, event)
        delivered = 0
        for handler in list(self._handlers.get(type(event), ())):
            try:
                handler(event)
            except Exception:
                logger.exception("Handler for event %s failed", event.name)
                continue
            delivered += 1
        return delivered

    def handler_count(self, event_type: type[Event]) -> int:
        return len(self._handlers.get(event_type, ()))
