"""Low-level PostgREST access to the Supabase project."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mnno_school._http import http_session
from mnno_school.settings import settings

logger = logging.getLogger(__name__)


class SupabaseError(Exception):
    """A PostgREST request failed or Supabase is not configured."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _get_headers() -> dict[str, str]:
    if not settings.supabase_enabled:
        raise SupabaseError(
            "Supabase is not configured. Set MNNO_SUPABASE_URL and MNNO_SUPABASE_KEY."
        )
    return {
        "apikey": settings.supabase_key,
        "Authorization": f"Bearer {settings.supabase_key}",
        "Content-Type": "application/json",
    }


def _rest_url(path: str) -> str:
    return f"{settings.supabase_url.rstrip('/')}/rest/v1/{path.lstrip('/')}"


def _raise_for_status(resp: httpx.Response, what: str) -> None:
    if resp.is_success:
        return
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("message") or body.get("error") or resp.text
    else:
        detail = resp.text
    msg = f"Supabase {what} failed ({resp.status_code}): {str(detail)[:300]}"
    logger.warning(msg)
    raise SupabaseError(msg, status_code=resp.status_code)


async def select_rows(
    table: str,
    params: dict[str, str],
    *,
    client: httpx.AsyncClient | None = None,
) -> list[dict[str, Any]]:
    """``GET /rest/v1/{table}`` with PostgREST query *params*."""
    headers = _get_headers()
    async with http_session(client) as http:
        try:
            resp = await http.get(_rest_url(table), headers=headers, params=params)
        except httpx.HTTPError as exc:
            raise SupabaseError(f"Network error querying {table}: {exc}") from exc
    _raise_for_status(resp, f"select on {table}")
    rows: list[dict[str, Any]] = resp.json()
    logger.debug("Selected %d row(s) from %s", len(rows), table)
    return rows


async def call_rpc(
    function: str,
    payload: dict[str, Any],
    *,
    client: httpx.AsyncClient | None = None,
) -> Any:
    """``POST /rest/v1/rpc/{function}`` with a JSON *payload*."""
    headers = _get_headers()
    async with http_session(client) as http:
        try:
            resp = await http.post(_rest_url(f"rpc/{function}"), headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise SupabaseError(f"Network error calling {function}: {exc}") from exc
    _raise_for_status(resp, f"rpc {function}")
    return resp.json()


async def update_rows(
    table: str,
    params: dict[str, str],
    values: dict[str, Any],
    *,
    client: httpx.AsyncClient | None = None,
) -> list[dict[str, Any]]:
    """``PATCH /rest/v1/{table}``; returns the updated rows."""
    headers = {**_get_headers(), "Prefer": "return=representation"}
    async with http_session(client) as http:
        try:
            resp = await http.patch(
                _rest_url(table), headers=headers, params=params, json=values
            )
        except httpx.HTTPError as exc:
            raise SupabaseError(f"Network error updating {table}: {exc}") from exc
    _raise_for_status(resp, f"update on {table}")
    rows: list[dict[str, Any]] = resp.json()
    logger.debug("Updated %d row(s) in %s", len(rows), table)
    return rows
