"""Tests for the RSS/Atom feed client."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Dict, Optional

import aiohttp
import pytest

from squeakmail.connectors.base import NOT_MODIFIED, FeedDocument, NotModified
from squeakmail.connectors.rss import (
    UNTITLED,
    RSSFeedClient,
    build_request_headers,
    parse_feed_document,
)
from squeakmail.errors import FeedClientError, MalformedFeedError, NetworkError

FEED_URL = "https://example.com/feed.xml"
FETCHED_AT = datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc)

RSS_BODY = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Blog</title>
    <link>https://example.com/</link>
    <description>Posts</description>
    <item>
      <title>First post</title>
      <link>https://example.com/first</link>
      <guid>urn:example:1</guid>
      <pubDate>Fri, 01 Mar 2024 12:00:00 +0200</pubDate>
      <comments>https://example.com/first#comments</comments>
    </item>
    <item>
      <title>Second post</title>
      <link>https://example.com/second</link>
    </item>
    <item>
      <title>Duplicate</title>
      <guid>urn:example:1</guid>
    </item>
    <item>
      <description>No title, link or guid</description>
    </item>
  </channel>
</rss>
"""

ATOM_BODY = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <link href="https://atom.example.com/"/>
  <id>urn:uuid:feed</id>
  <updated>2024-03-01T10:00:00Z</updated>
  <entry>
    <title>Atom entry</title>
    <link href="https://atom.example.com/entry"/>
    <id>urn:uuid:entry-1</id>
    <updated>2024-02-28T08:30:00Z</updated>
  </entry>
</feed>
"""

UNDATED_BODY = b"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0">
  <channel>
    <title>Hugo Site</title>
    <link>https://hugo.example.com/</link>
    <item>
      <title>About</title>
      <link>https://hugo.example.com/about/</link>
      <guid>https://hugo.example.com/about/</guid>
      <pubDate>Mon, 01 Jan 0001 00:00:00 +0000</pubDate>
    </item>
    <item>
      <title>Post</title>
      <link>https://hugo.example.com/post/</link>
      <guid>https://hugo.example.com/post/</guid>
      <pubDate>Fri, 01 Mar 2024 12:00:00 +0000</pubDate>
    </item>
  </channel>
</rss>
"""

UNTITLED_BODY = b"""<?xml version="1.0"?>
<rss version="2.0"><channel><link>https://example.com/</link>
<item><link>https://example.com/a</link></item>
</channel></rss>
"""


# --- Fake HTTP ---

class FakeResponse:
    def __init__(self, status: int, body: bytes = b"", headers: Optional[Dict[str, str]] = None):
        self.status = status
        self._body = body
        self.headers = headers or {}

    async def read(self) -> bytes:
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession; records request headers."""

    def __init__(self, response=None, error: Optional[BaseException] = None):
        self.response = response
        self.error = error
        self.requests = []
        self.closed = False

    def get(self, url, headers=None, timeout=None):
        self.requests.append((url, headers))
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self):
        self.closed = True


# --- Parsing Tests ---

class TestParseFeedDocument:
    def test_rss_feed_metadata(self):
        doc = parse_feed_document(FEED_URL, RSS_BODY, etag='"v1"', fetched_at=FETCHED_AT)
        assert isinstance(doc, FeedDocument)
        assert doc.title == "Example Blog"
        assert doc.link == "https://example.com/"
        assert doc.etag == '"v1"'
        assert doc.last_modified is None

    def test_rss_items(self):
        doc = parse_feed_document(FEED_URL, RSS_BODY, fetched_at=FETCHED_AT)
        assert [i.guid for i in doc.items] == ["urn:example:1", "https://example.com/second"]

        first, second = doc.items
        assert first.title == "First post"
        assert first.link == "https://example.com/first"
        assert first.comments_link == "https://example.com/first#comments"
        assert first.pub_date == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

        assert second.comments_link is None
        assert second.pub_date == FETCHED_AT

    def test_atom_feed(self):
        doc = parse_feed_document(FEED_URL, ATOM_BODY, fetched_at=FETCHED_AT)
        assert doc.title == "Atom Example"
        assert doc.link == "https://atom.example.com/"
        (entry,) = doc.items
        assert entry.guid == "urn:uuid:entry-1"
        assert entry.link == "https://atom.example.com/entry"
        assert entry.pub_date == datetime(2024, 2, 28, 8, 30, tzinfo=timezone.utc)

    def test_year_one_date_kept(self):
        doc = parse_feed_document(FEED_URL, UNDATED_BODY, fetched_at=FETCHED_AT)
        assert [i.pub_date for i in doc.items] == [
            datetime(1, 1, 1, tzinfo=timezone.utc),
            datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        ]

    def test_missing_titles_default(self):
        doc = parse_feed_document(FEED_URL, UNTITLED_BODY, fetched_at=FETCHED_AT)
        assert doc.title == UNTITLED
        assert doc.items[0].title == UNTITLED

    def test_not_a_feed(self):
        with pytest.raises(MalformedFeedError):
            parse_feed_document(FEED_URL, b"<html><body>Hello</body></html>")

    def test_garbage(self):
        with pytest.raises(MalformedFeedError):
            parse_feed_document(FEED_URL, b"\x00\x01 definitely not xml")

    def test_malformed_is_client_error(self):
        assert issubclass(MalformedFeedError, FeedClientError)


class TestRequestHeaders:
    def test_unconditional(self):
        assert build_request_headers("agent") == {"User-Agent": "agent"}

    def test_conditional(self):
        headers = build_request_headers("agent", '"abc"', "Mon, 01 Jan 2024 00:00:00 GMT")
        assert headers["If-None-Match"] == '"abc"'
        assert headers["If-Modified-Since"] == "Mon, 01 Jan 2024 00:00:00 GMT"


# --- Client Tests ---

class TestRSSFeedClient:
    @pytest.mark.asyncio
    async def test_not_modified(self):
        session = FakeSession(FakeResponse(304))
        client = RSSFeedClient(user_agent="test", session=session)

        response = await client.fetch(FEED_URL, etag='"abc"')

        assert response is NOT_MODIFIED
        assert isinstance(response, NotModified)
        _, headers = session.requests[0]
        assert headers["If-None-Match"] == '"abc"'
        assert "If-Modified-Since" not in headers

    @pytest.mark.asyncio
    async def test_ok_returns_document_with_tokens(self):
        session = FakeSession(FakeResponse(
            200,
            RSS_BODY,
            {"ETag": '"v2"', "Last-Modified": "Fri, 01 Mar 2024 12:00:00 GMT"},
        ))
        client = RSSFeedClient(session=session)

        doc = await client.fetch(FEED_URL)

        assert doc.etag == '"v2"'
        assert doc.last_modified == "Fri, 01 Mar 2024 12:00:00 GMT"
        assert len(doc.items) == 2

    @pytest.mark.asyncio
    async def test_server_error(self):
        client = RSSFeedClient(session=FakeSession(FakeResponse(500)))
        with pytest.raises(NetworkError, match="unexpected status code: 500"):
            await client.fetch(FEED_URL)

    @pytest.mark.asyncio
    async def test_connection_error(self):
        session = FakeSession(error=aiohttp.ClientConnectionError("refused"))
        client = RSSFeedClient(session=session)
        with pytest.raises(NetworkError, match="refused"):
            await client.fetch(FEED_URL)

    @pytest.mark.asyncio
    async def test_timeout(self):
        client = RSSFeedClient(session=FakeSession(error=asyncio.TimeoutError()))
        with pytest.raises(NetworkError, match="TimeoutError"):
            await client.fetch(FEED_URL)

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        client = RSSFeedClient(session=FakeSession(FakeResponse(200, b"<html></html>")))
        with pytest.raises(MalformedFeedError):
            await client.fetch(FEED_URL)

    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self):
        session = FakeSession(FakeResponse(304))
        client = RSSFeedClient(session=session)
        await client.close()
        assert not session.closed
