# ABOUTME: Maps RSS entries and YouTube playlist items onto one canonical item record.
# ABOUTME: Field fallbacks are declared per source type; only the date fallback depends on the clock.

import contextlib
import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog
from bs4 import BeautifulSoup

from feed_tune.models import FeedEntry, FeedType, NormalizedItem
from feed_tune.services.resolution import FieldRule, resolve_fields

log = structlog.get_logger()

WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
THUMBNAIL_URL = "https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"

_WHITESPACE_RE = re.compile(r"\s+")

YOUTUBE_VIDEO_FIELDS: dict[str, FieldRule] = {
    "video_id": FieldRule(("contentDetails.videoId", "snippet.resourceId.videoId")),
    "title": FieldRule(("snippet.title",), ""),
    "description": FieldRule(("snippet.description",), ""),
    "published": FieldRule(("contentDetails.videoPublishedAt", "snippet.publishedAt")),
    "thumbnail": FieldRule(
        (
            "snippet.thumbnails.high.url",
            "snippet.thumbnails.medium.url",
            "snippet.thumbnails.default.url",
        )
    ),
    "author": FieldRule(("snippet.videoOwnerChannelTitle", "snippet.channelTitle")),
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def html_to_text(html: str | None) -> str:
    """Render markup as a single line of plain text."""
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(" ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 provider timestamp into an aware UTC datetime."""
    if not value:
        return None
    with contextlib.suppress(ValueError, TypeError):
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    return None


def normalize_rss_entry(entry: FeedEntry) -> NormalizedItem:
    """Canonical record for an RSS/Atom entry.

    The description is the plain-text snippet; raw HTML is kept in ``content``.
    """
    return NormalizedItem(
        title=entry.title.strip(),
        link=entry.link,
        description=html_to_text(entry.description or entry.content),
        content=entry.content or None,
        published_at=entry.published_at.astimezone(UTC),
        published_inferred=entry.published_inferred,
        thumbnail=entry.thumbnail,
        source_type=FeedType.RSS,
        author=entry.author,
        guid=entry.guid or entry.link or None,
    )


def normalize_youtube_video(
    video: dict[str, Any], now: Callable[[], datetime] = _utcnow
) -> NormalizedItem | None:
    """Canonical record for a playlistItems entry, or None when it has no video id.

    The link is synthesized from the video id; the payload carries no watch URL.
    """
    fields = resolve_fields(video, YOUTUBE_VIDEO_FIELDS)
    video_id = fields["video_id"]
    if not video_id:
        log.warning("youtube_item_without_video_id", title=fields["title"])
        return None

    published_at = parse_timestamp(fields["published"])
    inferred = published_at is None
    if inferred:
        published_at = now()

    return NormalizedItem(
        title=fields["title"].strip(),
        link=WATCH_URL.format(video_id=video_id),
        description=fields["description"].strip(),
        published_at=published_at,
        published_inferred=inferred,
        thumbnail=fields["thumbnail"] or THUMBNAIL_URL.format(video_id=video_id),
        source_type=FeedType.YOUTUBE,
        author=fields["author"],
        guid=video_id,
        video_id=video_id,
    )


def normalize_youtube_videos(
    videos: list[dict[str, Any]], now: Callable[[], datetime] = _utcnow
) -> list[NormalizedItem]:
    items = (normalize_youtube_video(video, now) for video in videos)
    return [item for item in items if item is not None]
