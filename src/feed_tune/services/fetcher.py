# ABOUTME: Source fetcher for feed documents, provider JSON, and proxied images.
# ABOUTME: Wraps an injected httpx client and maps transport failures to FetchFailed/FetchTimeout.

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import httpx
import structlog

from feed_tune.config import Settings
from feed_tune.errors import FetchFailed, FetchTimeout, InvalidInput

log = structlog.get_logger()

DEFAULT_IMAGE_TYPE = "image/jpeg"


@dataclass
class ImagePayload:
    content: bytes
    content_type: str


def validate_url(url: str | None) -> str:
    """Return the stripped URL if it is an absolute http(s) URI, else raise InvalidInput."""
    if not url or not url.strip():
        raise InvalidInput("url parameter is required")
    url = url.strip()
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise InvalidInput(f"Malformed URL: {url} ({e})") from e
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidInput(f"Not an absolute http(s) URL: {url}")
    return url


@contextmanager
def transport_errors(url: str):
    """Map httpx failures raised while requesting or reading ``url`` onto the taxonomy."""
    try:
        yield
    except httpx.TimeoutException as e:
        log.warning("fetch_timeout", url=url, error=str(e))
        raise FetchTimeout(f"Timed out fetching {url}") from e
    except httpx.HTTPError as e:
        log.warning("fetch_http_error", url=url, error=str(e))
        raise FetchFailed(f"Request to {url} failed: {e}") from e
    except httpx.InvalidURL as e:
        raise InvalidInput(f"Malformed URL: {url} ({e})") from e


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """Create the shared outbound client with the configured deadline and UA."""
    return httpx.AsyncClient(
        timeout=settings.feed_timeout,
        headers={"User-Agent": settings.feed_user_agent},
        follow_redirects=True,
        max_redirects=3,
    )


class SourceFetcher:
    """Single-GET retrieval of raw source content. No retries, no caching."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings):
        self.client = client
        self.settings = settings

    async def _get(self, url: str, *, timeout: float | None = None, **kwargs) -> httpx.Response:
        with transport_errors(url):
            if timeout is None:
                return await self.client.get(url, **kwargs)
            return await self.client.get(url, timeout=timeout, **kwargs)

    async def fetch_feed(self, url: str) -> bytes:
        """Fetch a feed document and return its raw bytes.

        The body is streamed so an oversized document is abandoned as soon as
        it passes ``max_feed_bytes``, whether or not it declares a length.
        """
        url = validate_url(url)
        limit = self.settings.max_feed_bytes
        with transport_errors(url):
            async with self.client.stream("GET", url) as response:
                if not response.is_success:
                    raise FetchFailed(f"Feed fetch failed: HTTP {response.status_code}")

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > limit:
                    raise FetchFailed(f"Feed is too large ({declared} bytes, limit {limit})")

                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > limit:
                        raise FetchFailed(f"Feed is too large (over {limit} bytes)")

        log.debug("feed_fetched", url=url, size=len(body))
        return bytes(body)

    async def fetch_image(self, url: str) -> ImagePayload:
        """Fetch image bytes for pass-through with the short image deadline."""
        url = validate_url(url)
        response = await self._get(url, timeout=self.settings.image_proxy_timeout)
        if not response.is_success:
            raise FetchFailed(f"Image fetch failed: HTTP {response.status_code}")
        content_type = response.headers.get("content-type") or DEFAULT_IMAGE_TYPE
        return ImagePayload(content=response.content, content_type=content_type)

    async def fetch_json(self, url: str, params: dict[str, Any] | None = None) -> dict:
        """Fetch a JSON object.

        Error responses whose body is a JSON object are returned as-is so the
        caller can surface the provider's own error payload.
        """
        response = await self._get(url, params=params)
        try:
            data = response.json()
        except ValueError as e:
            if not response.is_success:
                raise FetchFailed(f"Request failed: HTTP {response.status_code}") from e
            raise FetchFailed(f"Invalid JSON from {url}") from e

        if not isinstance(data, dict):
            raise FetchFailed(f"Unexpected JSON payload from {url}")
        if not response.is_success and "error" not in data:
            raise FetchFailed(f"Request failed: HTTP {response.status_code}")
        return data
