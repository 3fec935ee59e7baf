"""Loom video metadata proxy.

Resolves a Loom share or embed URL to the video's metadata through the
Loom REST API.  Requires ``MNNO_LOOM_API_KEY``.
"""

from __future__ import annotations

import logging
import re
from typing import Any, TypedDict

import httpx

from mnno_school._http import http_session
from mnno_school.services.errors import ProxyError
from mnno_school.settings import settings

logger = logging.getLogger(__name__)

LOOM_API_URL = "https://api.loom.com/v1/videos/{video_id}"

_SHARE_RE = re.compile(r"loom\.com/share/([a-zA-Z0-9_-]+)")
_EMBED_RE = re.compile(r"loom\.com/embed/([a-zA-Z0-9_-]+)")


class LoomMetadata(TypedDict):
    videoId: str
    title: str | None
    downloadUrl: str | None
    embedUrl: str | None
    thumbnailUrl: str | None
    duration: float | None


def extract_loom_video_id(url: str) -> str | None:
    """Return the video ID of a Loom share/embed URL, or ``None``."""
    match = _SHARE_RE.search(url) or _EMBED_RE.search(url)
    return match.group(1) if match else None


def _download_url(video: dict[str, Any]) -> str | None:
    # The API has exposed the media URL under several names over time.
    for field in ("download_url", "video_url", "stream_url"):
        if video.get(field):
            return str(video[field])
    for container in ("assets", "media"):
        nested = video.get(container)
        if isinstance(nested, dict) and nested.get("video_url"):
            return str(nested["video_url"])
    embed = video.get("embed_url")
    if embed:
        return str(embed).replace("/embed/", "/share/")
    return None


async def fetch_loom_metadata(
    video_id: str, *, client: httpx.AsyncClient | None = None
) -> LoomMetadata:
    if not settings.loom_api_key:
        raise ProxyError("LOOM_API_KEY is not configured", status_code=500)

    headers = {
        "Authorization": f"Bearer {settings.loom_api_key}",
        "Content-Type": "application/json",
    }
    async with http_session(client) as http:
        try:
            resp = await http.get(LOOM_API_URL.format(video_id=video_id), headers=headers)
        except httpx.HTTPError as exc:
            raise ProxyError(f"HTTP error: {exc}", status_code=502) from exc

    logger.info("Loom API answered %s for video %s", resp.status_code, video_id)
    if resp.status_code == 404:
        raise ProxyError(f"Loom video {video_id} not found", status_code=404)
    if not resp.is_success:
        raise ProxyError(
            f"Loom API error: {resp.status_code} {resp.reason_phrase}", status_code=502
        )

    try:
        video: dict[str, Any] = resp.json()
    except ValueError as exc:
        raise ProxyError("Loom API returned invalid JSON", status_code=502) from exc

    return {
        "videoId": video_id,
        "title": video.get("name") or video.get("title"),
        "downloadUrl": _download_url(video),
        "embedUrl": video.get("embed_url"),
        "thumbnailUrl": video.get("thumbnail_url"),
        "duration": video.get("duration"),
    }
