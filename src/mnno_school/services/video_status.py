"""Lesson video resolution – external URLs and Mux uploads.

Lesson videos are stored either as a plain external URL (YouTube, Loom,
...) or as ``mux-video-<id>``, a reference to a row of the ``videos``
table that the Mux webhook fills in once the upload is processed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Literal, TypedDict

from mnno_school import supabase_api
from mnno_school.settings import settings

logger = logging.getLogger(__name__)

MUX_PREFIX = "mux-video-"
MUX_STREAM_URL = "https://stream.mux.com/{playback_id}.m3u8"

MuxStatus = Literal["idle", "uploading", "processing", "ready", "errored", "unknown"]
RowFetcher = Callable[[str], Awaitable[dict[str, Any] | None]]

_TERMINAL: frozenset[str] = frozenset({"idle", "ready", "errored", "unknown"})


class VideoState(TypedDict):
    url: str | None
    playbackId: str | None
    muxStatus: MuxStatus
    thumbnailUrl: str | None
    error: str | None


def _state(
    status: MuxStatus,
    url: str | None = None,
    playback_id: str | None = None,
    thumbnail_url: str | None = None,
    error: str | None = None,
) -> VideoState:
    return {
        "url": url,
        "playbackId": playback_id,
        "muxStatus": status,
        "thumbnailUrl": thumbnail_url,
        "error": error,
    }


async def resolve_video(value: str | None, fetch_row: RowFetcher | None = None) -> VideoState:
    """Resolve one stored video *value* into its current playback state."""
    if not value:
        return _state("idle")
    if not value.startswith(MUX_PREFIX):
        return _state("ready", url=value)

    video_id = value[len(MUX_PREFIX) :]
    if not video_id:
        return _state("unknown")

    fetch = fetch_row or supabase_api.get_video_row
    try:
        row = await fetch(video_id)
    except supabase_api.SupabaseError as exc:
        logger.error("Could not look up Mux video %s: %s", video_id, exc)
        return _state("errored", error=str(exc))

    if row is None:
        # The webhook has not written the row yet.
        return _state("processing")

    status = row.get("mux_status") or "unknown"
    playback_id = row.get("mux_playback_id")
    if status == "ready" and playback_id:
        return _state(
            "ready",
            url=MUX_STREAM_URL.format(playback_id=playback_id),
            playback_id=playback_id,
            thumbnail_url=row.get("mux_thumbnail_url"),
        )
    if status == "errored":
        return _state("errored")
    if status == "uploading":
        return _state("uploading")
    return _state("processing")


async def wait_for_video(
    value: str | None,
    *,
    timeout_seconds: float,
    interval_seconds: float | None = None,
    fetch_row: RowFetcher | None = None,
) -> VideoState:
    """Poll :func:`resolve_video` until the video settles or *timeout_seconds* pass.

    Returns the last observed state; a video still processing at the
    deadline is returned as-is.
    """
    interval = settings.video_poll_interval_seconds if interval_seconds is None else interval_seconds
    deadline = time.monotonic() + timeout_seconds
    while True:
        state = await resolve_video(value, fetch_row)
        if state["muxStatus"] in _TERMINAL:
            return state
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return state
        await asyncio.sleep(min(interval, remaining))
