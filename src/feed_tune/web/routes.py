# ABOUTME: FastAPI route handlers for the feed-tune JSON API.
# ABOUTME: Feed preview/add/refresh/delete, item listing, interactions, channel search, image proxy, cron.

import secrets

import structlog
from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import Response

from feed_tune.config import Settings, get_settings
from feed_tune.errors import MissingCredential, Unauthorized
from feed_tune.models import FeedCreate, FeedType, InteractionFlag, InteractionUpdate
from feed_tune.services.ingestion import IngestionService
from feed_tune.services.interactions import (
    feed_summary,
    list_items,
    require_user,
    set_interaction,
)

log = structlog.get_logger()
router = APIRouter(prefix="/api")

IMAGE_CACHE_CONTROL = "public, max-age=86400"


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_ingestion(request: Request) -> IngestionService:
    return request.app.state.ingestion


def current_user(request: Request, settings: Settings = Depends(get_app_settings)) -> str | None:
    """User id forwarded by the upstream auth proxy, or None when unauthenticated."""
    user_id = request.headers.get(settings.auth_header)
    return user_id.strip() if user_id and user_id.strip() else None


@router.get("/feeds/preview")
async def preview_feed(
    source: str | None = Query(None),
    type: FeedType = Query(FeedType.RSS),
    user_id: str | None = Depends(current_user),
    ingestion: IngestionService = Depends(get_ingestion),
):
    """Fetch and normalize a source for the add-feed flow without storing anything."""
    require_user(user_id)
    preview = await ingestion.preview_feed(source, type)
    return {"success": True, **preview.model_dump(mode="json")}


@router.get("/feeds")
async def list_feeds(
    user_id: str | None = Depends(current_user),
    ingestion: IngestionService = Depends(get_ingestion),
):
    feeds = await ingestion.list_feeds(user_id)
    return {"success": True, "feeds": [feed.model_dump(mode="json") for feed in feeds]}


@router.get("/feeds/summary")
async def summary(
    user_id: str | None = Depends(current_user),
    ingestion: IngestionService = Depends(get_ingestion),
):
    counts = await feed_summary(ingestion.session_factory, user_id)
    return {"success": True, **counts.model_dump()}


@router.post("/feeds")
async def add_feed(
    body: FeedCreate,
    user_id: str | None = Depends(current_user),
    ingestion: IngestionService = Depends(get_ingestion),
):
    result = await ingestion.add_feed(user_id, body.source, body.type)
    return {"success": True, "message": "Feed added", **result.model_dump(mode="json")}


@router.delete("/feeds/{feed_id}")
async def delete_feed(
    feed_id: int,
    user_id: str | None = Depends(current_user),
    ingestion: IngestionService = Depends(get_ingestion),
):
    await ingestion.delete_feed(user_id, feed_id)
    return {"success": True, "message": "Feed deleted"}


@router.post("/feeds/{feed_id}/refresh")
async def refresh_feed(
    feed_id: int,
    skip_cache: bool = Query(False),
    user_id: str | None = Depends(current_user),
    ingestion: IngestionService = Depends(get_ingestion),
):
    result = await ingestion.refresh_feed(user_id, feed_id, skip_cache=skip_cache)
    return {"success": True, **result.model_dump(mode="json")}


@router.get("/feeds/{feed_id}/items")
async def feed_items(
    feed_id: int,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str | None = Depends(current_user),
    ingestion: IngestionService = Depends(get_ingestion),
):
    items = await list_items(
        ingestion.session_factory, user_id, feed_id=feed_id, limit=limit, offset=offset
    )
    return {"success": True, "items": [item.model_dump(mode="json") for item in items]}


@router.get("/items")
async def items(
    flag: InteractionFlag | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str | None = Depends(current_user),
    ingestion: IngestionService = Depends(get_ingestion),
):
    """Items across the caller's feeds, optionally only favorites, read-later, or read."""
    found = await list_items(
        ingestion.session_factory, user_id, flag=flag, limit=limit, offset=offset
    )
    return {"success": True, "items": [item.model_dump(mode="json") for item in found]}


@router.post("/interactions")
async def update_interaction(
    body: InteractionUpdate,
    user_id: str | None = Depends(current_user),
    ingestion: IngestionService = Depends(get_ingestion),
):
    flags = await set_interaction(
        ingestion.session_factory, user_id, body.item_id, body.flag, body.value
    )
    return {"success": True, "item_id": body.item_id, **flags}


@router.get("/youtube/channels")
async def search_channels(
    q: str | None = Query(None),
    user_id: str | None = Depends(current_user),
    ingestion: IngestionService = Depends(get_ingestion),
):
    require_user(user_id)
    channels = await ingestion.search_channels(q)
    return {"success": True, "channels": [c.model_dump(mode="json") for c in channels]}


@router.get("/image-proxy")
async def image_proxy(
    url: str | None = Query(None),
    ingestion: IngestionService = Depends(get_ingestion),
):
    """Stateless byte pass-through for thumbnails blocked by CORS."""
    image = await ingestion.fetcher.fetch_image(url)
    return Response(
        content=image.content,
        media_type=image.content_type,
        headers={
            "Cache-Control": IMAGE_CACHE_CONTROL,
            "Access-Control-Allow-Origin": "*",
        },
    )


@router.post("/cron/refresh")
async def cron_refresh(
    authorization: str | None = Header(None),
    skip_cache: bool = Query(False),
    settings: Settings = Depends(get_app_settings),
    ingestion: IngestionService = Depends(get_ingestion),
):
    """Refresh every active feed; called by an external scheduler."""
    if settings.cron_secret is None:
        raise MissingCredential("Cron secret is not configured")
    expected = f"Bearer {settings.cron_secret.get_secret_value()}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        log.warning("cron_unauthorized")
        raise Unauthorized("Unauthorized")

    summary = await ingestion.refresh_all(skip_cache=skip_cache)
    return {"success": True, **summary.model_dump(mode="json")}
