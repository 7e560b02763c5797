"""Feed clients. Only HTTP RSS/Atom is supported."""

from squeakmail.connectors.base import (
    NOT_MODIFIED,
    FeedClient,
    FeedDocument,
    FetchResponse,
    NotModified,
    RawItem,
)
from squeakmail.connectors.rss import RSSFeedClient

__all__ = [
    "NOT_MODIFIED",
    "FeedClient",
    "FeedDocument",
    "FetchResponse",
    "NotModified",
    "RawItem",
    "RSSFeedClient",
]
