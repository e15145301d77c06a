# ABOUTME: YouTube Data API v3 adapter for channel videos and channel search.
# ABOUTME: Resolves handles, walks channel -> uploads playlist -> playlist items, surfaces provider errors.

import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote, urlsplit

import structlog

from feed_tune.config import Settings
from feed_tune.errors import InvalidInput, MissingCredential, NotFound, UpstreamError
from feed_tune.models import ChannelDetails, ChannelSummary
from feed_tune.services.fetcher import SourceFetcher
from feed_tune.services.resolution import FieldRule, resolve_fields

log = structlog.get_logger()

# A YouTube channel ID always starts with "UC" and is 24 characters total.
CHANNEL_ID_RE = re.compile(r"^UC[\w-]{22}$")
_CHANNEL_PATH_RE = re.compile(r"/channel/(UC[\w-]{22})")
_NAME_RE = re.compile(r"^[\w.\-]{3,50}$")
YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com"}

AVATAR_PLACEHOLDER = "https://ui-avatars.com/api/?name={name}&background=random&color=fff&size=120"

CHANNEL_FIELDS: dict[str, FieldRule] = {
    "title": FieldRule(("snippet.title",), ""),
    "description": FieldRule(("snippet.description",), ""),
    "thumbnail": FieldRule(
        (
            "snippet.thumbnails.high.url",
            "snippet.thumbnails.medium.url",
            "snippet.thumbnails.default.url",
        )
    ),
    "uploads_playlist_id": FieldRule(("contentDetails.relatedPlaylists.uploads",)),
}

SEARCH_FIELDS: dict[str, FieldRule] = {
    "id": FieldRule(("id.channelId", "snippet.channelId"), ""),
    "title": FieldRule(("snippet.title", "snippet.channelTitle"), ""),
    "description": FieldRule(("snippet.description",), ""),
    "thumbnail": FieldRule(
        ("snippet.thumbnails.high.url", "snippet.thumbnails.default.url")
    ),
    "published_at": FieldRule(("snippet.publishedAt",)),
}


@dataclass(frozen=True)
class ChannelRef:
    """A channel identifier as typed by a user: a raw id, a handle, or a legacy username."""

    kind: str
    value: str


@dataclass
class ChannelVideos:
    channel: ChannelDetails
    videos: list[dict[str, Any]] = field(default_factory=list)


def classify_channel_input(value: str | None) -> ChannelRef:
    """Classify a channel id, @handle, channel URL, or bare name."""
    value = (value or "").strip()
    if not value:
        raise InvalidInput("channel identifier is required")

    if CHANNEL_ID_RE.match(value):
        return ChannelRef("id", value)
    if value.startswith("@"):
        return ChannelRef("handle", value)

    if "youtube.com" in value or "youtu.be" in value:
        url = urlsplit(value if value.startswith("http") else f"https://{value}")
        if url.hostname not in YOUTUBE_HOSTS:
            raise InvalidInput(f"Not a YouTube channel URL: {value}")
        match = _CHANNEL_PATH_RE.match(url.path)
        if match:
            return ChannelRef("id", match.group(1))
        segments = [s for s in url.path.split("/") if s]
        if segments and segments[0].startswith("@"):
            return ChannelRef("handle", segments[0])
        if len(segments) >= 2 and segments[0] == "user":
            return ChannelRef("username", segments[1])
        if len(segments) >= 2 and segments[0] == "c":
            return ChannelRef("handle", f"@{segments[1]}")
        raise InvalidInput(f"Could not find a channel in URL: {value}")

    if _NAME_RE.match(value):
        return ChannelRef("handle", f"@{value}")
    raise InvalidInput(f"Not a valid YouTube channel identifier: {value}")


def channel_url(channel_id: str) -> str:
    return f"https://www.youtube.com/channel/{channel_id}"


def avatar_placeholder(title: str) -> str:
    return AVATAR_PLACEHOLDER.format(name=quote(title or "Channel"))


class YouTubeClient:
    """Thin adapter over the YouTube Data API. Every call is one awaited GET."""

    def __init__(self, fetcher: SourceFetcher, settings: Settings):
        self.fetcher = fetcher
        self.settings = settings

    def _api_key(self) -> str:
        key = self.settings.youtube_api_key
        if key is None or not key.get_secret_value():
            raise MissingCredential("YouTube API key is not configured")
        return key.get_secret_value()

    async def _call(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        api_key = self._api_key()
        url = f"{self.settings.youtube_api_url.rstrip('/')}/{endpoint}"
        data = await self.fetcher.fetch_json(url, params={**params, "key": api_key})

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            log.error("youtube_api_error", endpoint=endpoint, error=message)
            raise UpstreamError(message or "Unknown YouTube API error")
        return data

    async def resolve_channel_id(self, ref: ChannelRef) -> str:
        """Turn a handle or username into a channel id with one channels lookup."""
        if ref.kind == "id":
            return ref.value

        lookup = {"forHandle": ref.value} if ref.kind == "handle" else {"forUsername": ref.value}
        data = await self._call("channels", {"part": "id", **lookup})
        items = data.get("items") or []
        if not items or not items[0].get("id"):
            raise NotFound(f"YouTube channel not found: {ref.value}")

        channel_id = items[0]["id"]
        log.info("youtube_handle_resolved", handle=ref.value, channel_id=channel_id)
        return channel_id

    async def get_channel(self, channel_id: str) -> ChannelDetails:
        data = await self._call("channels", {"part": "snippet,contentDetails", "id": channel_id})
        items = data.get("items") or []
        if not items:
            raise NotFound(f"YouTube channel not found: {channel_id}")
        return ChannelDetails(id=channel_id, **resolve_fields(items[0], CHANNEL_FIELDS))

    async def list_uploads(self, playlist_id: str) -> list[dict[str, Any]]:
        """First page of the uploads playlist; no pagination."""
        data = await self._call(
            "playlistItems",
            {
                "part": "snippet,contentDetails",
                "playlistId": playlist_id,
                "maxResults": self.settings.youtube_max_results,
            },
        )
        return list(data.get("items") or [])

    async def fetch_channel(self, identifier: str) -> ChannelVideos:
        """Resolve a channel and list its most recent uploads.

        Channels without an uploads playlist yield an empty video list and no
        playlistItems call is made.
        """
        ref = classify_channel_input(identifier)
        self._api_key()

        channel_id = await self.resolve_channel_id(ref)
        channel = await self.get_channel(channel_id)
        if not channel.uploads_playlist_id:
            log.warning("no_uploads_playlist", channel_id=channel_id)
            return ChannelVideos(channel=channel)

        videos = await self.list_uploads(channel.uploads_playlist_id)
        log.info("youtube_channel_fetched", channel_id=channel_id, videos=len(videos))
        return ChannelVideos(channel=channel, videos=videos)

    async def search_channels(self, query: str) -> list[ChannelSummary]:
        query = (query or "").strip()
        if not query:
            raise InvalidInput("search query is required")

        data = await self._call(
            "search",
            {
                "part": "snippet",
                "type": "channel",
                "q": query,
                "maxResults": self.settings.youtube_search_results,
            },
        )

        results = []
        for item in data.get("items") or []:
            fields = resolve_fields(item, SEARCH_FIELDS)
            if not fields["id"]:
                continue
            results.append(
                ChannelSummary(
                    id=fields["id"],
                    title=fields["title"],
                    description=fields["description"],
                    thumbnail=fields["thumbnail"] or avatar_placeholder(fields["title"]),
                    url=channel_url(fields["id"]),
                    published_at=fields["published_at"],
                )
            )
        log.info("youtube_channels_searched", query=query, results=len(results))
        return results
