# ABOUTME: Feed ingestion pipeline: fetch -> parse/adapt -> normalize -> dedup -> store.
# ABOUTME: Exposes preview, add, refresh (single-flight per feed), refresh-all, delete, and listing.

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from urllib.parse import urlsplit

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_tune.config import Settings
from feed_tune.db.models import Feed
from feed_tune.db.session import storage_errors
from feed_tune.errors import Conflict, FeedTuneError, InvalidInput, NotFound
from feed_tune.models import (
    AddFeedResult,
    ChannelSummary,
    FeedMetadata,
    FeedPreview,
    FeedType,
    FeedView,
    RefreshResult,
    RefreshSummary,
)
from feed_tune.services.dedup import insert_new_items
from feed_tune.services.fetcher import SourceFetcher, validate_url
from feed_tune.services.interactions import require_user
from feed_tune.services.normalizer import normalize_rss_entry, normalize_youtube_videos
from feed_tune.services.rss_parser import parse_feed
from feed_tune.services.singleflight import SingleFlight
from feed_tune.services.youtube import YouTubeClient, channel_url, classify_channel_input

log = structlog.get_logger()


def favicon_for(link: str | None) -> str | None:
    if not link:
        return None
    try:
        parts = urlsplit(link)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}/favicon.ico"


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def feed_view(feed: Feed) -> FeedView:
    return FeedView(
        id=feed.id,
        type=feed.type,
        source=feed.source,
        title=feed.title,
        description=feed.description,
        link=feed.link,
        favicon=feed.favicon,
        active=feed.active,
        created_at=_as_utc(feed.created_at),
        last_fetched_at=_as_utc(feed.last_fetched_at),
    )


def parse_feed_type(value: FeedType | str | None) -> FeedType:
    try:
        return FeedType(value or FeedType.RSS)
    except ValueError as e:
        raise InvalidInput(f"Unsupported feed type: {value}") from e


class IngestionService:
    """Entry point for every ingestion trigger: manual refresh, periodic pass, or cron."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fetcher: SourceFetcher,
        youtube: YouTubeClient,
        settings: Settings,
        now: Callable[[], datetime] | None = None,
    ):
        self.session_factory = session_factory
        self.fetcher = fetcher
        self.youtube = youtube
        self.settings = settings
        self.now = now or (lambda: datetime.now(UTC))
        self._refreshes = SingleFlight()

    # Fetch + parse + normalize

    def _validate_source(self, source: str | None, feed_type: FeedType) -> str:
        if feed_type == FeedType.RSS:
            return validate_url(source)
        ref = classify_channel_input(source)
        return ref.value if ref.kind == "id" else source.strip()

    async def _load_rss(self, url: str) -> FeedPreview:
        document = await self.fetcher.fetch_feed(url)
        parsed = parse_feed(document, self.settings.max_items_per_feed, now=self.now)
        link = parsed.link or url
        return FeedPreview(
            feed=FeedMetadata(
                type=FeedType.RSS,
                source=url,
                title=parsed.title or "Untitled feed",
                description=parsed.description,
                link=link,
                favicon=favicon_for(link),
            ),
            items=[normalize_rss_entry(entry) for entry in parsed.entries],
        )

    async def _load_youtube(self, identifier: str) -> FeedPreview:
        result = await self.youtube.fetch_channel(identifier)
        channel = result.channel
        return FeedPreview(
            feed=FeedMetadata(
                type=FeedType.YOUTUBE,
                source=channel.id,
                title=channel.title or "Unknown channel",
                description=channel.description,
                link=channel_url(channel.id),
                favicon=channel.thumbnail,
            ),
            items=normalize_youtube_videos(result.videos, now=self.now),
        )

    async def _load(self, source: str, feed_type: FeedType) -> FeedPreview:
        if feed_type == FeedType.YOUTUBE:
            return await self._load_youtube(source)
        return await self._load_rss(source)

    async def preview_feed(self, source: str | None, feed_type: FeedType | str) -> FeedPreview:
        """Fetch, parse and normalize a source without touching storage."""
        feed_type = parse_feed_type(feed_type)
        source = self._validate_source(source, feed_type)
        preview = await self._load(source, feed_type)
        log.info("feed_previewed", source=source, type=feed_type, items=len(preview.items))
        return preview

    # Feed lifecycle

    async def _ensure_not_subscribed(self, user_id: str, source: str) -> None:
        async with self.session_factory() as session:
            existing = await session.execute(
                select(Feed.id).where(
                    Feed.user_id == user_id,
                    Feed.source == source,
                    Feed.active.is_(True),
                    Feed.deleted_at.is_(None),
                )
            )
            if existing.first() is not None:
                raise Conflict(f"Feed already added: {source}")

    async def add_feed(
        self, user_id: str | None, source: str | None, feed_type: FeedType | str = FeedType.RSS
    ) -> AddFeedResult:
        """Subscribe a user to a source and store its current items.

        The pre-check is a fast path; the partial unique index on active feeds
        is what actually prevents duplicates.
        """
        user_id = require_user(user_id)
        feed_type = parse_feed_type(feed_type)
        source = self._validate_source(source, feed_type)

        with storage_errors("checking existing feeds"):
            await self._ensure_not_subscribed(user_id, source)

        preview = await self._load(source, feed_type)
        meta = preview.feed
        if meta.source != source:
            with storage_errors("checking existing feeds"):
                await self._ensure_not_subscribed(user_id, meta.source)

        with storage_errors("adding feed"):
            async with self.session_factory() as session:
                feed = Feed(
                    user_id=user_id,
                    type=meta.type.value,
                    source=meta.source,
                    title=meta.title,
                    description=meta.description,
                    link=meta.link,
                    favicon=meta.favicon,
                    active=True,
                    created_at=self.now(),
                )
                session.add(feed)
                try:
                    await session.flush()
                except IntegrityError as e:
                    await session.rollback()
                    log.info("feed_add_conflict", user_id=user_id, source=meta.source)
                    raise Conflict(f"Feed already added: {meta.source}") from e

                new_count = await insert_new_items(session, feed.id, preview.items)
                feed.last_fetched_at = self.now()
                await session.commit()
                view = feed_view(feed)

        log.info("feed_added", feed_id=view.id, user_id=user_id, type=meta.type, items=new_count)
        return AddFeedResult(feed=view, new_item_count=new_count)

    async def _owned_feed(self, session: AsyncSession, user_id: str, feed_id: int) -> Feed:
        result = await session.execute(
            select(Feed).where(
                Feed.id == feed_id,
                Feed.user_id == user_id,
                Feed.active.is_(True),
                Feed.deleted_at.is_(None),
            )
        )
        feed = result.scalar_one_or_none()
        if feed is None:
            raise NotFound(f"Feed not found: {feed_id}")
        return feed

    async def list_feeds(self, user_id: str | None) -> list[FeedView]:
        user_id = require_user(user_id)
        with storage_errors("listing feeds"):
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Feed)
                    .where(Feed.user_id == user_id, Feed.active.is_(True), Feed.deleted_at.is_(None))
                    .order_by(Feed.created_at.desc())
                )
                return [feed_view(feed) for feed in result.scalars().all()]

    async def delete_feed(self, user_id: str | None, feed_id: int) -> None:
        """Soft-delete: the feed goes inactive, its items stay."""
        user_id = require_user(user_id)
        with storage_errors("deleting feed"):
            async with self.session_factory() as session:
                feed = await self._owned_feed(session, user_id, feed_id)
                feed.active = False
                feed.deleted_at = self.now()
                await session.commit()
        log.info("feed_deleted", feed_id=feed_id, user_id=user_id)

    # Refresh

    async def refresh_feed(
        self, user_id: str | None, feed_id: int, skip_cache: bool = False
    ) -> RefreshResult:
        """Run one ingestion pass for a feed the caller owns."""
        user_id = require_user(user_id)
        with storage_errors("loading feed"):
            async with self.session_factory() as session:
                feed = await self._owned_feed(session, user_id, feed_id)
                last_fetched = _as_utc(feed.last_fetched_at)
        return await self._refresh_if_due(feed_id, last_fetched, skip_cache)

    def _in_cooldown(self, last_fetched: datetime | None) -> bool:
        cooldown = timedelta(seconds=self.settings.refresh_cooldown_seconds)
        return last_fetched is not None and self.now() - last_fetched < cooldown

    async def _refresh_if_due(
        self, feed_id: int, last_fetched: datetime | None, skip_cache: bool
    ) -> RefreshResult:
        """Apply the cooldown for this caller, then join or start the shared pass.

        Only real passes are shared, so a skip_cache caller never receives
        another caller's cooldown skip.
        """
        if not skip_cache and self._in_cooldown(last_fetched):
            log.info("feed_refresh_skipped", feed_id=feed_id, last_fetched_at=last_fetched)
            return RefreshResult(feed_id=feed_id, new_item_count=0, skipped=True)
        return await self._refreshes.run(feed_id, lambda: self._refresh(feed_id))

    async def _refresh(self, feed_id: int) -> RefreshResult:
        with storage_errors("loading feed"):
            async with self.session_factory() as session:
                feed = await session.get(Feed, feed_id)
                if feed is None or not feed.active or feed.deleted_at is not None:
                    raise NotFound(f"Feed not found: {feed_id}")
                source, feed_type = feed.source, FeedType(feed.type)

        # Nothing is written unless the whole fetch/parse succeeded
        preview = await self._load(source, feed_type)

        with storage_errors("storing items"):
            async with self.session_factory() as session:
                new_count = await insert_new_items(session, feed_id, preview.items)
                feed = await session.get(Feed, feed_id)
                if feed is not None:
                    meta = preview.feed
                    feed.title = meta.title or feed.title
                    feed.description = meta.description or feed.description
                    feed.link = meta.link or feed.link
                    feed.favicon = meta.favicon or feed.favicon
                    feed.last_fetched_at = self.now()
                await session.commit()

        log.info("feed_refreshed", feed_id=feed_id, new_items=new_count)
        return RefreshResult(feed_id=feed_id, new_item_count=new_count)

    async def refresh_all(self, skip_cache: bool = False) -> RefreshSummary:
        """Refresh every active feed concurrently; one feed failing does not stop the rest."""
        with storage_errors("listing active feeds"):
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Feed.id, Feed.last_fetched_at).where(
                        Feed.active.is_(True), Feed.deleted_at.is_(None)
                    )
                )
                feeds = [(fid, _as_utc(fetched)) for fid, fetched in result.all()]

        if not feeds:
            log.warning("no_active_feeds")
            return RefreshSummary(feeds=0, new_items=0, failed=0)

        results = await asyncio.gather(
            *(self._refresh_if_due(fid, fetched, skip_cache) for fid, fetched in feeds),
            return_exceptions=True,
        )

        feed_ids = [fid for fid, _ in feeds]
        new_items = failed = 0
        for feed_id, outcome in zip(feed_ids, results, strict=True):
            if isinstance(outcome, FeedTuneError):
                failed += 1
                log.warning("feed_refresh_failed", feed_id=feed_id, error=outcome.message)
            elif isinstance(outcome, Exception):
                failed += 1
                log.error("feed_refresh_crashed", feed_id=feed_id, exc_info=outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                new_items += outcome.new_item_count

        log.info("refresh_complete", feeds=len(feed_ids), new_items=new_items, failed=failed)
        return RefreshSummary(feeds=len(feed_ids), new_items=new_items, failed=failed)

    async def search_channels(self, query: str | None) -> list[ChannelSummary]:
        return await self.youtube.search_channels(query or "")


def build_ingestion_service(
    settings: Settings,
    client: httpx.AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> IngestionService:
    """Wire the fetcher, YouTube adapter and storage around one outbound httpx client."""
    fetcher = SourceFetcher(client, settings)
    return IngestionService(session_factory, fetcher, YouTubeClient(fetcher, settings), settings)
