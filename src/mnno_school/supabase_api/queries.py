"""Domain queries used as cache fetchers by the feature services."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mnno_school.supabase_api._client import call_rpc, select_rows, update_rows

logger = logging.getLogger(__name__)


async def list_user_companies(
    user_id: str, *, client: httpx.AsyncClient | None = None
) -> list[dict[str, Any]]:
    """Return the companies *user_id* belongs to, sorted by name."""
    rows = await select_rows(
        "user_empresa",
        {"select": "empresas(*)", "user_id": f"eq.{user_id}"},
        client=client,
    )
    companies = [row["empresas"] for row in rows if row.get("empresas")]
    companies.sort(key=lambda c: (c.get("nome") or "").lower())
    return companies


async def list_team_members(
    company_id: str, *, client: httpx.AsyncClient | None = None
) -> list[dict[str, Any]]:
    """Return the members of *company_id* via the ``get_company_users`` RPC."""
    rows = await call_rpc("get_company_users", {"_empresa_id": company_id}, client=client)
    return [
        {
            "id": user.get("id"),
            "displayName": user.get("display_name"),
            "email": user.get("email"),
            "avatar": user.get("avatar"),
            "createdAt": user.get("created_at"),
            "superAdmin": bool(user.get("super_admin")),
            "isAdmin": bool(user.get("is_admin")),
            "cargoId": user.get("cargo_id"),
            "roleName": user.get("cargo_title"),
        }
        for user in rows or []
    ]


async def get_video_row(
    video_id: str, *, client: httpx.AsyncClient | None = None
) -> dict[str, Any] | None:
    """Return the Mux columns of one ``videos`` row, or ``None`` if absent."""
    rows = await select_rows(
        "videos",
        {
            "select": "mux_status,mux_playback_id,mux_thumbnail_url",
            "id": f"eq.{video_id}",
            "limit": "1",
        },
        client=client,
    )
    return rows[0] if rows else None


async def list_notifications(
    user_id: str, *, client: httpx.AsyncClient | None = None
) -> list[dict[str, Any]]:
    """Return the notifications addressed to *user_id*, newest first."""
    return await select_rows(
        "user_notifications",
        {"select": "*", "user_id": f"eq.{user_id}", "order": "created_at.desc"},
        client=client,
    )


async def mark_notifications_read(
    user_id: str,
    company_id: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> int:
    """Flag the unread notifications of *user_id* as read; returns how many changed."""
    params = {"user_id": f"eq.{user_id}", "read": "eq.false"}
    if company_id:
        params["company_id"] = f"eq.{company_id}"
    rows = await update_rows("user_notifications", params, {"read": True}, client=client)
    return len(rows)
