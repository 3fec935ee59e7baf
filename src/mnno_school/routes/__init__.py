"""Stateless proxy routes – thin wrappers over the embedding and Loom services."""

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from mnno_school.services import embeddings, loom
from mnno_school.services.errors import ProxyError

router = APIRouter(prefix="/api", tags=["Proxies"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class EmbeddingRequest(BaseModel):
    query: str | None = None


class LoomMetadataRequest(BaseModel):
    url: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.options("/generate-query-embedding", include_in_schema=False)
@router.options("/loom-metadata", include_in_schema=False)
async def preflight() -> Response:
    return Response("ok", media_type="text/plain")


@router.post("/generate-query-embedding", summary="Embed a search query")
async def generate_query_embedding(body: EmbeddingRequest) -> JSONResponse:
    """Return the OpenAI embedding vector of ``query``."""
    query = (body.query or "").strip()
    if not query:
        return _error("Query is required", 400)
    try:
        embedding = await embeddings.generate_embedding(query)
    except ProxyError as exc:
        return _error(exc.message, exc.status_code)
    return JSONResponse({"embedding": embedding})


@router.post("/loom-metadata", summary="Resolve Loom video metadata")
async def loom_metadata(body: LoomMetadataRequest) -> JSONResponse:
    """Return title and download URL of a Loom share or embed link."""
    if not body.url:
        return _error("URL is required", 400)
    video_id = loom.extract_loom_video_id(body.url)
    if video_id is None:
        return _error("Invalid Loom URL", 400)
    try:
        metadata = await loom.fetch_loom_metadata(video_id)
    except ProxyError as exc:
        return _error(exc.message, exc.status_code)
    return JSONResponse(metadata)
