"""Feed client interface and the result types it returns."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union


@dataclass(frozen=True)
class RawItem:
    """One entry as parsed from a feed document, before storage."""

    guid: str
    link: str
    title: str
    pub_date: datetime
    comments_link: Optional[str] = None


@dataclass
class FeedDocument:
    """A successfully fetched and parsed feed, with its fresh caching tokens."""

    link: str
    title: str
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    items: List[RawItem] = field(default_factory=list)


@dataclass(frozen=True)
class NotModified:
    """The server confirmed nothing changed since the supplied tokens."""


NOT_MODIFIED = NotModified()

FetchResponse = Union[NotModified, FeedDocument]


class FeedClient(ABC):
    """Abstract base for feed clients.

    Implementations raise NetworkError or MalformedFeedError from
    squeakmail.errors; any other exception is treated as a bug.
    """

    @abstractmethod
    async def fetch(
        self,
        url: str,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> FetchResponse:
        """Fetch a feed, conditionally when tokens are given.

        Returns:
            NOT_MODIFIED when the server answered 304, otherwise a
            FeedDocument.
        """
        ...

    async def close(self) -> None:
        """Release any held resources."""
