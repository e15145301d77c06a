# ABOUTME: Shared constants and builders for feed-tune tests.
# ABOUTME: Sample documents, a settable clock, the fake upstream router, and YouTube API payloads.

from collections.abc import Callable
from datetime import UTC, datetime

import httpx

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

SAMPLE_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Blog</title>
    <link>https://blog.example.com/</link>
    <description>Posts about things</description>
    <item>
      <title>A</title>
      <link>https://blog.example.com/a</link>
      <description>&lt;p&gt;First &lt;b&gt;post&lt;/b&gt;&lt;/p&gt;</description>
      <pubDate>Mon, 01 Jan 2024 00:00:00 GMT</pubDate>
    </item>
    <item>
      <title>B</title>
      <link>https://blog.example.com/b</link>
      <description>Second post</description>
      <pubDate>Tue, 02 Jan 2024 00:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""


class Clock:
    """Settable clock injected wherever the code asks for ``now``."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def mock_client(handler: Callable) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler`` instead of the network."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class Upstream:
    """Programmable fake of every outbound endpoint, recording each request."""

    def __init__(self):
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, path_prefix: str, response) -> None:
        """Answer requests whose host+path starts with ``path_prefix``."""
        if isinstance(response, httpx.Response):
            # Fresh copy per request; a Response is bound to one request
            self.routes[path_prefix] = lambda _request: httpx.Response(
                response.status_code, headers=response.headers, content=response.content
            )
        else:
            self.routes[path_prefix] = response

    def calls(self, path_prefix: str) -> list[httpx.Request]:
        return [r for r in self.requests if f"{r.url.host}{r.url.path}".startswith(path_prefix)]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        target = f"{request.url.host}{request.url.path}"
        for prefix in sorted(self.routes, key=len, reverse=True):
            if target.startswith(prefix):
                result = self.routes[prefix](request)
                if hasattr(result, "__await__"):
                    result = await result
                return result
        return httpx.Response(404, text="not found")


# YouTube Data API fakes

API = "www.googleapis.com/youtube/v3"
CHANNEL_ID = "UC" + "a" * 22


def channel_payload(channel_id=CHANNEL_ID, uploads="UU" + "a" * 22) -> dict:
    details = {"relatedPlaylists": {"uploads": uploads}} if uploads else {}
    return {
        "items": [
            {
                "id": channel_id,
                "snippet": {
                    "title": "Example Channel",
                    "description": "Videos",
                    "thumbnails": {"default": {"url": "https://yt3.ggpht.com/avatar.jpg"}},
                },
                "contentDetails": details,
            }
        ]
    }


def playlist_payload(*video_ids: str) -> dict:
    return {
        "items": [
            {
                "snippet": {"title": f"Video {vid}", "publishedAt": "2024-05-01T00:00:00Z"},
                "contentDetails": {"videoId": vid},
            }
            for vid in video_ids
        ]
    }


def channels_route(handle_id=CHANNEL_ID, details=None):
    """Answer both the handle lookup (part=id) and the details call."""

    def route(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("part") == "id":
            items = [{"id": handle_id}] if handle_id else []
            return httpx.Response(200, json={"items": items})
        return httpx.Response(200, json=details or channel_payload())

    return route
