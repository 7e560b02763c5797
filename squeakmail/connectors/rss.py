"""RSS/Atom feed client: conditional GET with aiohttp, parsing with feedparser."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from time import struct_time
from typing import Any, Dict, List, Optional

import aiohttp
import feedparser
from dateutil.parser import parse as dateparse

from squeakmail import __version__
from squeakmail.connectors.base import (
    NOT_MODIFIED,
    FeedClient,
    FeedDocument,
    FetchResponse,
    RawItem,
)
from squeakmail.errors import MalformedFeedError, NetworkError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"squeakmail/{__version__}"
DEFAULT_TIMEOUT = 30.0
UNTITLED = "Untitled"


def build_request_headers(
    user_agent: str,
    etag: Optional[str] = None,
    last_modified: Optional[str] = None,
) -> Dict[str, str]:
    """Request headers for a (possibly conditional) GET."""
    headers = {"User-Agent": user_agent}
    if etag is not None:
        headers["If-None-Match"] = etag
    if last_modified is not None:
        headers["If-Modified-Since"] = last_modified
    return headers


def _parse_date(entry: Any, fallback: datetime) -> datetime:
    """Publication date of an entry as an aware UTC datetime."""
    for field in ("published_parsed", "updated_parsed"):
        value = entry.get(field)
        # feedparser normalises *_parsed to UTC
        if isinstance(value, struct_time):
            try:
                return datetime(*value[:6], tzinfo=timezone.utc)
            except (ValueError, OverflowError):
                continue
    # feedparser leaves the raw string when it cannot read the format
    for field in ("published", "updated"):
        raw = entry.get(field)
        if not raw:
            continue
        try:
            parsed = dateparse(raw)
            if parsed.tzinfo is None:
                return parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        except (ValueError, OverflowError):
            continue
    return fallback


def _parse_entry(entry: Any, feed_link: str, fetched_at: datetime) -> Optional[RawItem]:
    """Convert a feedparser entry to a RawItem, or None if it has no identity."""
    link = entry.get("link")
    guid = entry.get("id") or link
    if not guid:
        return None
    return RawItem(
        guid=guid,
        link=link or feed_link,
        title=entry.get("title") or UNTITLED,
        pub_date=_parse_date(entry, fetched_at),
        comments_link=entry.get("comments") or None,
    )


def parse_feed_document(
    url: str,
    body: bytes,
    etag: Optional[str] = None,
    last_modified: Optional[str] = None,
    content_type: Optional[str] = None,
    fetched_at: Optional[datetime] = None,
) -> FeedDocument:
    """Parse a fetched body into a FeedDocument.

    Raises:
        MalformedFeedError: If the body is not an RSS or Atom document.
    """
    if fetched_at is None:
        fetched_at = datetime.now(timezone.utc)

    response_headers = {"content-location": url}
    if content_type:
        response_headers["content-type"] = content_type
    parsed = feedparser.parse(body, response_headers=response_headers)

    entries = parsed.get("entries", [])
    meta = parsed.get("feed", {})
    # Only reject when nothing usable came out; minor bozo with entries is OK
    if not entries and (not parsed.get("version") or (parsed.get("bozo") and not meta.get("title"))):
        reason = parsed.get("bozo_exception") or "unrecognised document"
        raise MalformedFeedError(f"{url}: not a valid RSS or Atom feed ({reason})")

    feed_link = meta.get("link") or url
    items: List[RawItem] = []
    seen: set = set()
    for entry in entries:
        item = _parse_entry(entry, feed_link, fetched_at)
        if item is None:
            logger.warning("%s: skipping entry with no identifier: %s", url, entry.get("title", "?"))
            continue
        if item.guid in seen:
            continue
        seen.add(item.guid)
        items.append(item)

    return FeedDocument(
        link=feed_link,
        title=meta.get("title") or UNTITLED,
        etag=etag,
        last_modified=last_modified,
        items=items,
    )


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{exc.__class__.__name__}: {text}" if text else exc.__class__.__name__


class RSSFeedClient(FeedClient):
    """Fetch RSS/Atom feeds over HTTP, honouring ETag and Last-Modified."""

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def fetch(
        self,
        url: str,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> FetchResponse:
        """GET the feed and parse it. Parsing runs in an executor."""
        headers = build_request_headers(self.user_agent, etag, last_modified)
        session = self._get_session()
        try:
            async with session.get(
                url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status == 304:
                    logger.debug("%s: not modified", url)
                    return NOT_MODIFIED
                if not 200 <= resp.status < 300:
                    raise NetworkError(f"{url}: unexpected status code: {resp.status}")
                new_etag = resp.headers.get("ETag")
                new_last_modified = resp.headers.get("Last-Modified")
                content_type = resp.headers.get("Content-Type")
                body = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"{url}: {_describe(e)}") from e

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: parse_feed_document(url, body, new_etag, new_last_modified, content_type),
        )
