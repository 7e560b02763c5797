"""Fetch coordinator: conditional fetch of every configured feed.

Feeds are fetched concurrently up to a bound, each with its own timeout.
A successful response is reconciled into storage in one transaction per
feed; a failure is recorded on that feed's result and never stops the run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional, Sequence

from squeakmail.connectors.base import FeedClient, FeedDocument, NotModified
from squeakmail.errors import FeedClientError, FeedNotFoundError, StorageIntegrityError
from squeakmail.storage.db import DatabaseManager
from squeakmail.storage.models import FeedFetchResult, FeedState, FetchStatus, FetchSummary

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 1
DEFAULT_TIMEOUT = 30.0


class FetchCoordinator:
    """Fetches configured feeds and stores new items.

    Usage:
        coordinator = FetchCoordinator(db, RSSFeedClient(), settings.feeds)
        summary = await coordinator.run()
    """

    def __init__(
        self,
        db: DatabaseManager,
        client: FeedClient,
        feeds: Sequence[str],
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.db = db
        self.client = client
        self.feeds = list(dict.fromkeys(feeds))
        self.concurrency = max(1, concurrency)
        self.timeout = timeout

    async def run(self) -> FetchSummary:
        """Fetch every feed once.

        Per-feed client failures end up in the summary. A storage integrity
        error is re-raised once every in-flight feed has finished.
        """
        summary = FetchSummary()
        t0 = time.monotonic()
        if not self.feeds:
            logger.warning("No feeds configured")
            return summary

        sem = asyncio.Semaphore(self.concurrency)
        results = await asyncio.gather(
            *(self._fetch_feed(url, sem) for url in self.feeds),
            return_exceptions=True,
        )

        fatal: Optional[BaseException] = None
        for url, result in zip(self.feeds, results):
            if isinstance(result, BaseException):
                logger.error("Feed %s aborted: %s", url, result)
                if fatal is None:
                    fatal = result
                continue
            summary.add(result)

        summary.duration_seconds = time.monotonic() - t0
        logger.info(
            "Fetch complete: %d feeds, %d received, %d inserted, %d duplicates, %d failed in %.1fs",
            len(summary.results),
            summary.total_received,
            summary.total_inserted,
            summary.total_duplicates,
            summary.total_errors,
            summary.duration_seconds,
        )
        if fatal is not None:
            raise fatal
        return summary

    async def _fetch_feed(self, url: str, sem: asyncio.Semaphore) -> FeedFetchResult:
        """Pending -> NotModified | Fetched | Failed for a single feed."""
        result = FeedFetchResult(feed_url=url)
        t0 = time.monotonic()

        async with sem:
            state = await self._get_state(url)
            logger.info("Fetching %s...", url)
            try:
                response = await asyncio.wait_for(
                    self.client.fetch(url, state.etag, state.last_modified),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                self._fail(result, f"fetch timed out after {self.timeout:g}s")
            except FeedClientError as e:
                self._fail(result, str(e))
            else:
                if isinstance(response, NotModified):
                    result.status = FetchStatus.NOT_MODIFIED
                    logger.info("Feed %s: not modified", url)
                else:
                    await self._store(url, response, result)

        result.duration_seconds = time.monotonic() - t0
        return result

    async def _get_state(self, url: str) -> FeedState:
        """Stored caching tokens; a feed never fetched before has none.

        An unknown feed is not created here. Its row is written by the first
        successful fetch, so a failed first fetch leaves storage untouched.
        """
        try:
            return await self.db.get_feed_state(url)
        except FeedNotFoundError:
            return FeedState()

    async def _store(self, url: str, document: FeedDocument, result: FeedFetchResult) -> None:
        """Upsert the feed and insert its new items as one transaction."""
        result.received = len(document.items)
        try:
            async with self.db.transaction() as tx:
                await tx.upsert_feed(
                    url,
                    document.link,
                    document.title,
                    document.etag,
                    document.last_modified,
                )
                for item in document.items:
                    created = await tx.insert_item_if_absent(
                        url,
                        item.guid,
                        item.link,
                        item.comments_link,
                        item.title,
                        item.pub_date,
                    )
                    if created:
                        result.inserted += 1
                    else:
                        result.duplicates += 1
        except StorageIntegrityError:
            logger.exception("Feed %s: storage integrity violation, rolled back", url)
            raise

        result.status = FetchStatus.FETCHED
        logger.info(
            "Feed %s: received=%d, inserted=%d, dups=%d",
            url, result.received, result.inserted, result.duplicates,
        )

    @staticmethod
    def _fail(result: FeedFetchResult, message: str) -> None:
        result.status = FetchStatus.FAILED
        result.error_message = message
        logger.warning("Feed %s failed: %s", result.feed_url, message)
