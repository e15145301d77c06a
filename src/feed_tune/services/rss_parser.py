# ABOUTME: RSS/Atom document parser built on feedparser.
# ABOUTME: Resolves per-entry fields through a fallback table and rejects malformed XML outright.

import contextlib
import io
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import feedparser
import structlog
from feedparser.exceptions import CharacterEncodingOverride, NonXMLContentType

from feed_tune.errors import ParseFailed
from feed_tune.models import FeedEntry, ParsedFeed
from feed_tune.services.resolution import FieldRule, resolve_fields

log = structlog.get_logger()

# Warnings feedparser raises for documents that are still well-formed feeds
BENIGN_BOZO = (CharacterEncodingOverride, NonXMLContentType)

RSS_ENTRY_FIELDS: dict[str, FieldRule] = {
    "title": FieldRule(("title",), ""),
    "link": FieldRule(("link",), ""),
    "description": FieldRule(("description", "content_encoded"), ""),
    "content": FieldRule(("content_encoded", "description"), ""),
    "published_at": FieldRule(("published", "updated")),
    "thumbnail": FieldRule(("media_content", "media_thumbnail", "enclosure_image")),
    "author": FieldRule(("author",)),
    "guid": FieldRule(("guid", "link")),
}


def _to_datetime(parsed_time) -> datetime | None:
    """Convert a feedparser UTC struct_time into an aware datetime."""
    if not parsed_time:
        return None
    with contextlib.suppress(ValueError, TypeError):
        return datetime(*parsed_time[:6], tzinfo=UTC)
    return None


def _widest_media_url(media: list[dict[str, Any]] | None) -> str | None:
    """Pick the widest media:content url, falling back to the first one."""
    if not media:
        return None
    best_url, best_width = None, 0
    for item in media:
        url = item.get("url")
        try:
            width = int(item.get("width") or 0)
        except ValueError:
            width = 0
        if url and width > best_width:
            best_url, best_width = url, width
    return best_url or next((m.get("url") for m in media if m.get("url")), None)


def _first_image_enclosure(enclosures: list[dict[str, Any]] | None) -> str | None:
    for enclosure in enclosures or []:
        if (enclosure.get("type") or "").startswith("image/") and enclosure.get("href"):
            return enclosure["href"]
    return None


def _entry_record(entry: dict[str, Any]) -> dict[str, Any]:
    """Flatten a feedparser entry into the keys RSS_ENTRY_FIELDS refers to."""
    content = entry.get("content") or []
    thumbnails = entry.get("media_thumbnail") or []
    return {
        "title": entry.get("title"),
        "link": entry.get("link"),
        "description": entry.get("summary"),
        "content_encoded": content[0].get("value") if content else None,
        "published": _to_datetime(entry.get("published_parsed")),
        "updated": _to_datetime(entry.get("updated_parsed")),
        "media_content": _widest_media_url(entry.get("media_content")),
        "media_thumbnail": thumbnails[0].get("url") if thumbnails else None,
        "enclosure_image": _first_image_enclosure(entry.get("enclosures")),
        "author": entry.get("author"),
        "guid": entry.get("id"),
    }


def build_entry(entry: dict[str, Any], now: Callable[[], datetime]) -> FeedEntry:
    fields = resolve_fields(_entry_record(entry), RSS_ENTRY_FIELDS)
    inferred = fields["published_at"] is None
    if inferred:
        fields["published_at"] = now()
    return FeedEntry(published_inferred=inferred, **fields)


def parse_feed(
    document: str | bytes,
    max_items: int | None = None,
    now: Callable[[], datetime] | None = None,
) -> ParsedFeed:
    """Parse a raw RSS/Atom document into feed metadata and entries.

    Entries keep document order. A malformed document raises ParseFailed with
    the underlying parser message; no partial result is returned.
    """
    now = now or (lambda: datetime.now(UTC))
    raw = document.encode("utf-8") if isinstance(document, str) else document

    # A stream keeps feedparser from treating the document as a URL or path
    parsed = feedparser.parse(io.BytesIO(raw))

    if parsed.bozo and not isinstance(parsed.bozo_exception, BENIGN_BOZO):
        message = str(parsed.bozo_exception)
        log.error("feed_parse_error", error=message)
        raise ParseFailed(message)
    if not parsed.get("version") and not parsed.entries:
        raise ParseFailed("Document is not an RSS or Atom feed")

    entries = parsed.entries[:max_items] if max_items else parsed.entries
    meta = parsed.feed
    feed = ParsedFeed(
        title=meta.get("title") or "",
        description=meta.get("subtitle") or meta.get("description") or "",
        link=meta.get("link") or "",
        language=meta.get("language"),
        entries=[build_entry(entry, now) for entry in entries],
    )
    log.debug("feed_parsed", title=feed.title, entries=len(feed.entries))
    return feed
