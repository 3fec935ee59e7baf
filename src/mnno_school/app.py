"""MNNO School – FastAPI web application.

Serves the company and team directories through the data-access
coordination layer, the lesson video status lookup, and the stateless
embedding / Loom proxies.
"""

import logging
import math
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import Body, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from mnno_school import __version__
from mnno_school.coordination import (
    EVENT_TYPES,
    TEAM_MEMBERS_NAMESPACE,
    DataAccessContext,
    LoadBlocked,
    cache_key,
)
from mnno_school.routes import router as proxy_router
from mnno_school.services.companies import CompanyDirectory
from mnno_school.services.notifications import NotificationInbox, count_unread
from mnno_school.services.team import TeamDirectory
from mnno_school.services.video_status import resolve_video, wait_for_video
from mnno_school.settings import settings

_PKG_DIR = Path(__file__).resolve().parent

# Upper bound for ``/api/videos/status?wait=``.
MAX_VIDEO_WAIT_SECONDS = 120.0


# ---------------------------------------------------------------------------
# Lifespan – one data-access context per process
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Create the data-access context and the services built on it."""
    context = DataAccessContext(settings)
    companies = CompanyDirectory(context)
    team = TeamDirectory(context)
    app.state.context = context
    app.state.companies = companies
    app.state.team = team
    app.state.notifications = NotificationInbox(context)
    context.start()
    try:
        yield
    finally:
        team.close()
        companies.close()
        await context.close()


app = FastAPI(
    title="mnno-school API",
    version=__version__,
    description=(
        "REST API for MNNO School. Company, team and notification lists are served through "
        "a coordinated cache (single-flight fetches, throttled refreshes and "
        "local snapshots); the embedding and Loom endpoints proxy third-party "
        "APIs so their keys stay on the server."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=_lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

app.include_router(proxy_router)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

# Third-party loggers that log every HTTP exchange at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore")


def _setup_logging(level: int = logging.WARNING) -> None:
    """Send ``mnno_school.*`` records to stderr in uvicorn's colour scheme.

    At DEBUG, where the coordination layer logs each gate decision, records
    are prefixed with an ``HH:MM:SS`` timestamp.
    """
    from uvicorn.logging import DefaultFormatter

    fmt = "%(levelprefix)s %(name)s - %(message)s"
    if level <= logging.DEBUG:
        fmt = "%(asctime)s " + fmt
    handler = logging.StreamHandler()
    handler.setFormatter(DefaultFormatter(fmt=fmt, datefmt="%H:%M:%S", use_colors=True))

    service_logger = logging.getLogger("mnno_school")
    service_logger.handlers = [handler]
    service_logger.setLevel(level)
    service_logger.propagate = False

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


_setup_logging()
logger = logging.getLogger(__name__)


def _context(request: Request) -> DataAccessContext:
    context: DataAccessContext = request.app.state.context
    return context


def _load_failed(exc: Exception, data: Any) -> JSONResponse:
    """Error response carrying the last known *data*.

    A load refused by the error backoff answers 503 with ``Retry-After``;
    any other failure is an upstream error (502).
    """
    if isinstance(exc, LoadBlocked):
        return JSONResponse(
            {"error": str(exc), "data": data},
            status_code=503,
            headers={"Retry-After": str(math.ceil(exc.retry_after))},
        )
    return JSONResponse({"error": str(exc), "data": data}, status_code=502)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Status"], summary="Service health")
async def health() -> JSONResponse:
    return JSONResponse(
        {"status": "ok", "version": __version__, "supabase": settings.supabase_enabled}
    )


@app.get("/api/companies", tags=["Companies"], summary="List the user's companies")
async def list_companies(
    request: Request,
    userId: str = Query(..., description="Supabase user ID."),  # noqa: N803
    forceRefresh: bool = Query(  # noqa: N803
        False, description="Bypass the cache and the request throttle."
    ),
) -> JSONResponse:
    """Return the companies the user belongs to, sorted by name.

    ``source`` tells where the data came from (``network``, ``cache``,
    ``coalesced`` or ``snapshot``).  When the fetch fails the response is
    a 502 (503 while requests are paused after repeated errors) carrying
    the last known list in ``data``.
    """
    directory: CompanyDirectory = request.app.state.companies
    try:
        result = await directory.list_user_companies(userId, force_refresh=forceRefresh)
    except Exception as exc:
        logger.exception("Failed to list companies for %s", userId)
        return _load_failed(exc, directory.last_known_companies(userId))
    return JSONResponse(
        {"companies": result.data, "source": result.source, "stale": result.stale}
    )


class SelectCompanyRequest(BaseModel):
    """Request body for selecting a company."""

    userId: str
    companyId: str


@app.post("/api/companies/select", tags=["Companies"], summary="Select a company")
async def select_company(body: SelectCompanyRequest, request: Request) -> JSONResponse:
    directory: CompanyDirectory = request.app.state.companies
    try:
        selection = directory.select_company(body.userId, body.companyId)
    except LookupError as exc:
        return JSONResponse({"error": str(exc)}, status_code=404)
    return JSONResponse({"selected": selection})


@app.get("/api/companies/selected", tags=["Companies"], summary="Get the selected company")
async def selected_company(
    request: Request,
    userId: str = Query(..., description="Supabase user ID."),  # noqa: N803
) -> JSONResponse:
    directory: CompanyDirectory = request.app.state.companies
    return JSONResponse({"selected": directory.selected_company(userId)})


@app.get(
    "/api/team-members",
    tags=["Companies"],
    summary="List the members of a company",
    responses={409: {"description": "Superseded by a request for another company"}},
)
async def list_team_members(
    request: Request,
    companyId: str = Query(..., description="Company ID."),  # noqa: N803
    forceRefresh: bool = Query(False),  # noqa: N803
) -> JSONResponse:
    """Return the team members of *companyId*.

    Only the latest team-member request wins: a request overtaken by one
    for another company answers 409 instead of returning stale members.
    """
    team: TeamDirectory = request.app.state.team
    try:
        result = await team.show_members(companyId, force_refresh=forceRefresh)
    except Exception as exc:
        logger.exception("Failed to list team members for %s", companyId)
        last = _context(request).last_known(cache_key(TEAM_MEMBERS_NAMESPACE, companyId))
        return _load_failed(exc, last or [])
    if result is None:
        return JSONResponse(
            {"error": "Superseded by a newer team member request"}, status_code=409
        )
    return JSONResponse({"members": result.data, "source": result.source})


@app.get("/api/notifications", tags=["Notifications"], summary="List the user's notifications")
async def list_notifications(
    request: Request,
    userId: str = Query(..., description="Supabase user ID."),  # noqa: N803
    companyId: str | None = Query(  # noqa: N803
        None, description="Only notifications for this company."
    ),
    forceRefresh: bool = Query(False),  # noqa: N803
) -> JSONResponse:
    """Return the user's notifications, newest first, with the unread count."""
    inbox: NotificationInbox = request.app.state.notifications
    try:
        result = await inbox.list_notifications(userId, companyId, force_refresh=forceRefresh)
    except Exception as exc:
        logger.exception("Failed to list notifications for %s", userId)
        return _load_failed(exc, inbox.last_known(userId, companyId))
    return JSONResponse(
        {
            "notifications": result.data,
            "unreadCount": count_unread(result.data),
            "source": result.source,
        }
    )


class MarkReadRequest(BaseModel):
    """Request body for marking notifications as read."""

    userId: str
    companyId: str | None = None


@app.post("/api/notifications/read", tags=["Notifications"], summary="Mark notifications read")
async def mark_notifications_read(body: MarkReadRequest, request: Request) -> JSONResponse:
    inbox: NotificationInbox = request.app.state.notifications
    try:
        updated = await inbox.mark_all_read(body.userId, body.companyId)
    except Exception as exc:
        logger.exception("Failed to mark notifications read for %s", body.userId)
        return JSONResponse({"error": str(exc)}, status_code=502)
    return JSONResponse({"ok": True, "updated": updated})


@app.get("/api/videos/status", tags=["Videos"], summary="Resolve a lesson video")
async def video_status(
    value: str = Query("", description="Stored lesson video value (URL or mux-video-<id>)."),
    wait: float = Query(
        0.0, ge=0.0, description="Seconds to keep polling while the upload is processing."
    ),
) -> JSONResponse:
    if wait > 0:
        state = await wait_for_video(value, timeout_seconds=min(wait, MAX_VIDEO_WAIT_SECONDS))
    else:
        state = await resolve_video(value)
    return JSONResponse(state)


@app.get("/api/cache/stats", tags=["Cache"], summary="Cache and coordinator counters")
async def cache_stats(request: Request) -> JSONResponse:
    return JSONResponse(_context(request).stats())


class InvalidateRequest(BaseModel):
    """Request body for cache invalidation.

    With neither ``key`` nor ``namespace`` everything is invalidated.
    """

    key: str | None = None
    namespace: str | None = None
    snapshots: bool = False


@app.post("/api/cache/invalidate", tags=["Cache"], summary="Invalidate cached data")
async def invalidate_cache(body: InvalidateRequest, request: Request) -> JSONResponse:
    context = _context(request)
    if body.namespace:
        removed = context.cache.invalidate_namespace(body.namespace)
        if body.snapshots:
            context.persistence.clear_namespace(body.namespace)
        return JSONResponse({"ok": True, "invalidated": removed})
    context.invalidate(body.key, snapshots=body.snapshots)
    return JSONResponse({"ok": True})


@app.post("/api/events/{name}", tags=["Events"], summary="Publish an application event")
async def publish_event(
    name: str,
    request: Request,
    payload: dict[str, Any] | None = Body(None),
) -> JSONResponse:
    """Publish the event *name* with *payload* as its fields (snake_case).

    For example ``POST /api/events/company-relation-changed`` with
    ``{"user_id": "u1"}`` drops the user's cached company list.
    """
    event_type = EVENT_TYPES.get(name)
    if event_type is None:
        return JSONResponse({"error": f"Unknown event: {name}"}, status_code=404)
    try:
        event = event_type(**(payload or {}))
    except TypeError as exc:
        return JSONResponse({"error": f"Invalid payload for {name}: {exc}"}, status_code=400)
    delivered = _context(request).events.publish(event)
    return JSONResponse({"event": name, "delivered": delivered})


if __name__ == "__main__":
    from mnno_school.cli import cli

    cli()
