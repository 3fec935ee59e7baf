"""Stale-response guard for superseded requests."""

from __future__ import annotations

import itertools


class StaleResponseGuard:
    """Track the latest request per scope so late results can be discarded.

    ``begin()`` hands out a ticket; a result may only be applied while
    ``is_current()`` still holds for that ticket.  A newer ``begin()`` on the
    same scope invalidates every earlier ticket, whatever the order in which
    their responses arrive.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._latest: dict[str, tuple[int, str]] = {}

    def begin(self, scope: str, marker: str) -> int:
        ticket = next(self._counter)
        self._latest[scope] = (ticket, marker)
        return ticket

    def is_current(self, scope: str, ticket: int) -> bool:
        latest = self._latest.get(scope)
        return latest is not None and latest[0] == ticket

    def current_marker(self, scope: str) -> str | None:
        latest = self._latest.get(scope)
        return latest[1] if latest else None

    def reset(self, scope: str | None = None) -> None:
        if scope is None:
            self._latest.clear()
        else:
            self._latest.pop(scope, None)
