"""Shared outbound HTTP helpers."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from mnno_school.settings import settings


@asynccontextmanager
async def http_session(client: httpx.AsyncClient | None = None) -> AsyncIterator[httpx.AsyncClient]:
    """Yield *client* as-is, or a short-lived client closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as owned:
        yield owned
