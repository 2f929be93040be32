"""RSS/Atom feed fetching using httpx and feedparser."""

import logging
import os
from datetime import datetime
from time import struct_time
from urllib.parse import urlparse

import feedparser
import httpx

from feed_autogen.models import RawEntry

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = float(os.environ.get("FEED_FETCH_TIMEOUT", "10"))
USER_AGENT = "feed-autogen/0.1 (+https://github.com/feed-autogen)"
ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml"


class FeedParseError(Exception):
    """Raised when a feed cannot be fetched or parsed."""


def fetch_entries(url: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> list[RawEntry]:
    """Fetch an RSS or Atom feed and return its entries in upstream order.

    Args:
        url: The feed URL.
        timeout: Seconds allowed for the whole HTTP exchange.

    Returns:
        One RawEntry per feed entry. Entries with no usable identifier are
        returned with natural_key=None rather than dropped.

    Raises:
        FeedParseError: If the URL is invalid, unreachable, times out, or
            does not point to a feed.
    """
    validate_url(url)

    try:
        response = httpx.get(
            url,
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT, "Accept": ACCEPT},
        )
    except httpx.TimeoutException:
        raise FeedParseError(f"Timed out after {timeout:g}s fetching feed")
    except httpx.HTTPError as e:
        raise FeedParseError(f"Could not reach URL: {e}")

    if response.status_code in (401, 403):
        raise FeedParseError(
            "Feed requires authentication. Ensure the URL is publicly accessible."
        )
    if response.status_code >= 400:
        raise FeedParseError(f"Could not reach URL: HTTP {response.status_code}")

    return parse_entries(response.content)


def parse_entries(document: bytes | str) -> list[RawEntry]:
    """Parse a feed document into raw entries, keeping document order."""
    parsed = feedparser.parse(document)

    if not parsed.feed.get("title") and not parsed.entries:
        raise FeedParseError("URL does not point to a valid RSS or Atom feed")

    if parsed.bozo:
        logger.warning("Feed has formatting issues: %s", parsed.bozo_exception)

    return [_to_raw_entry(entry) for entry in parsed.entries]


def validate_url(url: str) -> None:
    """Validate that the URL has a valid format."""
    try:
        result = urlparse(url)
        if not result.scheme or not result.netloc:
            raise FeedParseError("Invalid URL format")
        if result.scheme not in ("http", "https"):
            raise FeedParseError("Invalid URL format: only http and https are supported")
    except ValueError:
        raise FeedParseError("Invalid URL format")


def _to_raw_entry(entry: dict) -> RawEntry:
    guid = entry.get("id") or entry.get("guid") or entry.get("link")
    return RawEntry(
        natural_key=guid.strip() if isinstance(guid, str) and guid.strip() else None,
        title=entry.get("title"),
        content=_entry_content(entry),
        url=entry.get("link"),
        published_at=_parse_date(entry),
    )


def _entry_content(entry: dict) -> str | None:
    """Prefer full content over the summary when the feed carries both."""
    content = entry.get("content")
    if isinstance(content, list) and content:
        value = content[0].get("value")
        if value:
            return value
    return entry.get("summary") or entry.get("description")


def _parse_date(entry: dict) -> datetime | None:
    """Parse publication date from a feedparser entry, as naive UTC."""
    for field in ("published_parsed", "updated_parsed"):
        time_struct = entry.get(field)
        if isinstance(time_struct, struct_time):
            try:
                return datetime(*time_struct[:6])
            except (ValueError, OverflowError):
                continue
    return None
