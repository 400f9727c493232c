from __future__ import annotations

import logging
from pathlib import Path

import httpx
from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import PlainTextResponse, StreamingResponse
from jinja2 import Environment, FileSystemLoader
from starlette.background import BackgroundTask

from rpmproxy.core.dependencies import AppContext, get_context, get_provider
from rpmproxy.domain.errors import NotFound
from rpmproxy.providers.base import Provider
from rpmproxy.services.discovery import run_discovery_cycle
from rpmproxy.services.repodata import REPODATA_DOCUMENTS, generate_repo_metadata

logger = logging.getLogger(__name__)
router = APIRouter()

CACHE_TTL_RPM = 30 * 24 * 60 * 60  # 30 days
CACHE_TTL_METADATA = 5 * 60  # regenerated on every request

templates = Environment(
    loader=FileSystemLoader(str(Path(__file__).resolve().parents[1] / "templates")),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


def _cache_headers(max_age: int) -> dict:
    value = f"public, max-age={max_age}"
    return {"Cache-Control": value, "CDN-Cache-Control": value}


# ---------------------------------------------------------------------------
# Landing pages
# ---------------------------------------------------------------------------

@router.get("/", response_class=PlainTextResponse)
async def index(context: AppContext = Depends(get_context)) -> str:
    """
    List every configured repository with install instructions.
    """
    return templates.get_template("index.txt").render(
        repos=[p.repo_config() for p in context.registry],
        base_url=context.settings.base_url,
    )


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.get("/{provider_id}", response_class=PlainTextResponse)
@router.get("/{provider_id}/", response_class=PlainTextResponse)
async def provider_index(
    provider: Provider = Depends(get_provider),
    context: AppContext = Depends(get_context),
) -> str:
    versions = await context.ledger.all(provider.provider_id)
    return templates.get_template("provider.txt").render(
        repo=provider.repo_config(),
        versions=versions,
        base_url=context.settings.base_url,
    )


# ---------------------------------------------------------------------------
# Repository metadata
# ---------------------------------------------------------------------------

@router.get("/{provider_id}/repodata/{document}")
async def repodata(
    document: str,
    provider: Provider = Depends(get_provider),
    context: AppContext = Depends(get_context),
) -> Response:
    """
    Serve repomd.xml and the compressed metadata documents, regenerated from
    stored metadata on every request.
    """
    if document not in REPODATA_DOCUMENTS:
        raise NotFound(f"Unknown repodata document: {document}")

    versions = await context.ledger.all(provider.provider_id)
    if not versions:
        raise HTTPException(status_code=503, detail="No versions available")

    metadata_list = await context.metadata_store(provider.provider_id).get_many(versions)
    if not metadata_list:
        raise HTTPException(
            status_code=503,
            detail="Metadata not yet extracted. Please try again in a few minutes.",
        )

    content, media_type = generate_repo_metadata(metadata_list).files()[document]
    return Response(content=content, media_type=media_type, headers=_cache_headers(CACHE_TTL_METADATA))


# ---------------------------------------------------------------------------
# Scheduled trigger
# ---------------------------------------------------------------------------

@router.post("/{provider_id}/__trigger-scheduled", response_class=PlainTextResponse)
async def trigger_scheduled(
    provider: Provider = Depends(get_provider),
    context: AppContext = Depends(get_context),
) -> str:
    """
    Run one discovery cycle for the provider immediately.
    """
    result = await run_discovery_cycle(
        provider,
        context.ledger,
        context.metadata_store(provider.provider_id),
        context.settings.max_extractions_per_run,
    )
    if result.error:
        logger.warning(f"Triggered cycle for {provider.provider_id} failed: {result.error}")
    return f"Scheduled task triggered for provider: {provider.provider_id}"


# ---------------------------------------------------------------------------
# .repo file and RPM downloads
# ---------------------------------------------------------------------------

@router.get("/{provider_id}/{filename}")
async def provider_file(
    filename: str,
    provider: Provider = Depends(get_provider),
    context: AppContext = Depends(get_context),
) -> Response:
    repo = provider.repo_config()

    if filename == f"{provider.provider_id}.repo":
        content = templates.get_template("repo_file.repo").render(
            repo=repo, base_url=context.settings.base_url
        )
        return PlainTextResponse(content)

    if filename.endswith(".rpm"):
        return await _stream_rpm(provider, filename, context)

    raise NotFound(f"Not found: {filename}")


async def _stream_rpm(provider: Provider, filename: str, context: AppContext) -> Response:
    """
    Stream an RPM from its origin, looked up by exact filename in the ledger.
    """
    version = await context.ledger.find_by_filename(provider.provider_id, filename)
    if version is None:
        raise NotFound(f"RPM not found in index: {filename}")

    client = context.http_client()
    try:
        origin = await client.send(
            client.build_request("GET", version.download_url, headers={"Accept-Encoding": "identity"}),
            stream=True,
        )
    except httpx.HTTPError as e:
        await client.aclose()
        logger.error(f"Failed to fetch {filename} from origin: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch RPM from origin") from e

    if not origin.is_success:
        await origin.aclose()
        await client.aclose()
        raise HTTPException(status_code=502, detail="Failed to fetch RPM from origin")

    headers = {
        "Content-Disposition": f'attachment; filename="{filename}"',
        **_cache_headers(CACHE_TTL_RPM),
    }
    # aiter_bytes() undoes any content coding the origin applied anyway, so
    # its Content-Length only holds for an unencoded body.
    content_length = origin.headers.get("content-length")
    if content_length and "content-encoding" not in origin.headers:
        headers["Content-Length"] = content_length

    async def close() -> None:
        await origin.aclose()
        await client.aclose()

    return StreamingResponse(
        origin.aiter_bytes(),
        status_code=origin.status_code,
        media_type="application/x-rpm",
        headers=headers,
        background=BackgroundTask(close),
    )
