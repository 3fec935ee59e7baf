"""Query embedding proxy – OpenAI Embeddings API.

Stateless: one text in, one vector out.  Requires ``MNNO_OPENAI_API_KEY``.
"""

from __future__ import annotations

import logging

import httpx

from mnno_school._http import http_session
from mnno_school.services.errors import ProxyError
from mnno_school.settings import settings

logger = logging.getLogger(__name__)

OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"


def is_embedding_enabled() -> bool:
    return bool(settings.openai_api_key)


async def generate_embedding(text: str, *, client: httpx.AsyncClient | None = None) -> list[float]:
    """Return the embedding vector of *text*."""
    if not is_embedding_enabled():
        raise ProxyError("OPENAI_API_KEY is not configured", status_code=500)

    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {settings.openai_api_key}",
    }
    body = {"model": settings.embedding_model, "input": text}

    async with http_session(client) as http:
        try:
            resp = await http.post(OPENAI_EMBEDDINGS_URL, headers=headers, json=body)
        except httpx.HTTPError as exc:
            raise ProxyError(f"HTTP error: {exc}", status_code=502) from exc

    if not resp.is_success:
        try:
            message = resp.json().get("error", {}).get("message")
        except (ValueError, AttributeError):
            message = None
        logger.warning("OpenAI embeddings returned %s", resp.status_code)
        raise ProxyError(
            message or f"OpenAI API error: {resp.status_code} {resp.reason_phrase}",
            status_code=502,
        )

    data = resp.json()
    try:
        embedding: list[float] = data["data"][0]["embedding"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ProxyError("Unexpected response from OpenAI embeddings", status_code=502) from exc
    logger.debug("Generated a %d-dimension embedding", len(embedding))
    return embedding
