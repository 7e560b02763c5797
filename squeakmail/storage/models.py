"""Data models for the squeakmail storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import MINYEAR, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

# Fixed-width UTC text form: lexical order matches chronological order and
# SQLite's DATETIME() accepts it.
PUB_DATE_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


class ReadState(int, Enum):
    """One-way read flag of an item. Only UNREAD -> READ exists."""

    UNREAD = 0
    READ = 1


class FeedState(NamedTuple):
    """Caching tokens from the last successful fetch. None means absent."""

    etag: Optional[str] = None
    last_modified: Optional[str] = None


class ItemKey(NamedTuple):
    """Identity of an item; guids are only unique within their feed."""

    feed_url: str
    guid: str


@dataclass
class Feed:
    """A configured feed and the caching tokens of its last fetch."""

    url: str
    link: str
    title: str
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @property
    def state(self) -> FeedState:
        return FeedState(self.etag, self.last_modified)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Feed:
        return cls(
            url=row["url"],
            link=row["link"],
            title=row["title"],
            etag=row.get("etag"),
            last_modified=row.get("last_modified"),
        )


@dataclass
class Item:
    """A single feed entry as stored."""

    feed_url: str
    guid: str
    link: str
    title: str
    pub_date: datetime
    comments_link: Optional[str] = None
    read_state: ReadState = ReadState.UNREAD

    @property
    def key(self) -> ItemKey:
        return ItemKey(self.feed_url, self.guid)

    @property
    def is_read(self) -> bool:
        return self.read_state is ReadState.READ

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Item:
        return cls(
            feed_url=row["feed_url"],
            guid=row["guid"],
            link=row["link"],
            comments_link=row.get("comments_link"),
            title=row["title"],
            pub_date=parse_pub_date(row["pub_date"]),
            read_state=ReadState(int(row["is_read"])),
        )


# --- Helpers ---

def format_pub_date(value: datetime) -> str:
    """Normalise to UTC and render in the stored text form.

    Naive datetimes are taken to be UTC already. The year is always four
    digits, including the "0001-01-01" some feeds emit for undated entries.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    try:
        value = value.astimezone(timezone.utc)
    except OverflowError:
        # Offset pushes the instant outside datetime's range
        value = (datetime.min if value.year == MINYEAR else datetime.max).replace(tzinfo=timezone.utc)
    return f"{value.year:04d}-{value:%m-%d %H:%M:%S.%f}"


def parse_pub_date(value: Any) -> datetime:
    """Parse a stored pub_date back into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.strptime(str(value), PUB_DATE_FORMAT)
        except ValueError:
            from dateutil.parser import parse
            parsed = parse(str(value))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class FetchStatus(str, Enum):
    """Outcome of one feed-fetch attempt."""

    PENDING = "pending"
    NOT_MODIFIED = "not_modified"
    FETCHED = "fetched"
    FAILED = "failed"


@dataclass
class FeedFetchResult:
    """Result of fetching a single feed."""

    feed_url: str
    status: FetchStatus = FetchStatus.PENDING
    received: int = 0
    inserted: int = 0
    duplicates: int = 0
    duration_seconds: float = 0.0
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status in (FetchStatus.FETCHED, FetchStatus.NOT_MODIFIED)


@dataclass
class FetchSummary:
    """Aggregate result from a full fetch run, in configuration order."""

    results: List[FeedFetchResult] = field(default_factory=list)
    total_received: int = 0
    total_inserted: int = 0
    total_duplicates: int = 0
    total_errors: int = 0
    duration_seconds: float = 0.0

    def add(self, result: FeedFetchResult) -> None:
        self.results.append(result)
        self.total_received += result.received
        self.total_inserted += result.inserted
        self.total_duplicates += result.duplicates
        if result.status is FetchStatus.FAILED:
            self.total_errors += 1

    @property
    def failures(self) -> List[FeedFetchResult]:
        return [r for r in self.results if r.status is FetchStatus.FAILED]
