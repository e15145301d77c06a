# ABOUTME: Pydantic schemas for data validation and serialization.
# ABOUTME: Defines parsed feed entries, normalized items, previews, and API payloads.

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class FeedType(StrEnum):
    RSS = "rss"
    YOUTUBE = "youtube"


class InteractionFlag(StrEnum):
    READ = "is_read"
    FAVORITE = "is_favorite"
    READ_LATER = "is_read_later"


class FeedEntry(BaseModel):
    """One RSS/Atom entry after field resolution, before normalization."""

    title: str
    link: str
    description: str
    content: str
    published_at: datetime
    published_inferred: bool = False
    thumbnail: str | None = None
    author: str | None = None
    guid: str | None = None


class ParsedFeed(BaseModel):
    """Feed-level metadata plus entries in document order."""

    title: str
    description: str
    link: str
    language: str | None = None
    entries: list[FeedEntry] = Field(default_factory=list)


class NormalizedItem(BaseModel):
    """Canonical item record shared by RSS and YouTube sources."""

    title: str
    link: str
    description: str
    content: str | None = None
    published_at: datetime
    published_inferred: bool = False
    thumbnail: str | None = None
    source_type: FeedType
    author: str | None = None
    guid: str | None = None
    video_id: str | None = None


class ChannelDetails(BaseModel):
    """Result of the channel-details call (step 1 of the uploads traversal)."""

    id: str
    title: str
    description: str
    thumbnail: str | None = None
    uploads_playlist_id: str | None = None


class ChannelSummary(BaseModel):
    """YouTube channel search hit, normalized for display."""

    id: str
    title: str
    description: str
    thumbnail: str
    url: str
    published_at: datetime | None = None


class FeedMetadata(BaseModel):
    type: FeedType
    source: str
    title: str
    description: str
    link: str
    favicon: str | None = None


class FeedPreview(BaseModel):
    """Fetched, parsed and normalized feed with no storage side effects."""

    feed: FeedMetadata
    items: list[NormalizedItem]


class FeedView(BaseModel):
    """Stored feed, as returned to API callers."""

    id: int
    type: FeedType
    source: str
    title: str
    description: str | None
    link: str | None
    favicon: str | None
    active: bool
    created_at: datetime
    last_fetched_at: datetime | None


class ItemView(BaseModel):
    """Stored item joined with the caller's interaction flags."""

    id: int
    feed_id: int
    item_type: FeedType
    title: str
    link: str
    description: str | None
    thumbnail: str | None
    published_at: datetime
    published_inferred: bool
    is_read: bool = False
    is_favorite: bool = False
    is_read_later: bool = False


class AddFeedResult(BaseModel):
    feed: FeedView
    new_item_count: int


class RefreshResult(BaseModel):
    feed_id: int
    new_item_count: int
    skipped: bool = False


class RefreshSummary(BaseModel):
    feeds: int
    new_items: int
    failed: int


class FeedSummary(BaseModel):
    """Per-user counts of active feeds and flagged items."""

    total_feeds: int
    rss_feeds: int
    youtube_feeds: int
    total_read: int
    total_favorites: int
    total_read_later: int


class FeedCreate(BaseModel):
    """Request body for adding a feed."""

    source: str
    type: FeedType = FeedType.RSS


class InteractionUpdate(BaseModel):
    """Request body for toggling one interaction flag."""

    item_id: int
    flag: InteractionFlag
    value: bool = True
