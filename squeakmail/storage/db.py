"""SQLite database manager for feeds and items (aiosqlite, WAL mode)."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import aiosqlite

from squeakmail.errors import (
    FeedNotFoundError,
    ForeignKeyViolation,
    StorageError,
    StorageIntegrityError,
)
from squeakmail.storage.migrations import apply_migrations
from squeakmail.storage.models import Feed, FeedState, Item, ItemKey, format_pub_date

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


def _integrity_error(exc: sqlite3.IntegrityError) -> StorageIntegrityError:
    if "FOREIGN KEY" in str(exc).upper():
        return ForeignKeyViolation(str(exc))
    return StorageIntegrityError(str(exc))


class Transaction:
    """Write operations bound to one open transaction.

    Obtained from ``DatabaseManager.transaction()``; everything done through
    it commits or rolls back together.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def upsert_feed(
        self,
        url: str,
        link: str,
        title: str,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> None:
        """Insert a feed, or refresh its link, title and caching tokens."""
        try:
            await self._conn.execute(
                """INSERT INTO feed (url, link, title, etag, last_modified)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(url) DO UPDATE SET
                       link=excluded.link,
                       title=excluded.title,
                       etag=excluded.etag,
                       last_modified=excluded.last_modified""",
                (url, link, title, etag, last_modified),
            )
        except sqlite3.IntegrityError as e:
            raise _integrity_error(e) from e

    async def insert_item_if_absent(
        self,
        feed_url: str,
        guid: str,
        link: str,
        comments_link: Optional[str],
        title: str,
        pub_date: datetime,
    ) -> bool:
        """Insert an item unless (feed_url, guid) is already stored.

        Returns True when a row was created. An existing row is left exactly
        as it is, including its read state.
        """
        try:
            cursor = await self._conn.execute(
                """INSERT INTO item
                   (feed_url, guid, link, comments_link, title, pub_date, is_read)
                   VALUES (?, ?, ?, ?, ?, ?, 0)
                   ON CONFLICT(feed_url, guid) DO NOTHING""",
                (feed_url, guid, link, comments_link, title, format_pub_date(pub_date)),
            )
        except sqlite3.IntegrityError as e:
            raise _integrity_error(e) from e
        return cursor.rowcount == 1

    async def mark_items_read(self, keys: Iterable[ItemKey]) -> int:
        """Mark exactly the given items read. Returns count of rows changed.

        Keys that are unknown or already read are skipped silently.
        """
        rows = [(feed_url, guid) for feed_url, guid in keys]
        if not rows:
            return 0
        try:
            cursor = await self._conn.executemany(
                """UPDATE item SET is_read = 1
                   WHERE feed_url = ? AND guid = ? AND is_read = 0""",
                rows,
            )
        except sqlite3.IntegrityError as e:
            raise _integrity_error(e) from e
        return max(cursor.rowcount, 0)


class DatabaseManager:
    """Async SQLite manager for the feed and item tables.

    Usage:
        db = DatabaseManager("squeakmail.db")
        await db.initialize()
        # ... use db ...
        await db.close()
    """

    def __init__(self, db_path: str, cache_size_mb: int = 16):
        self.db_path = db_path
        self.cache_size_mb = cache_size_mb
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database, configure pragmas and apply migrations.

        Raises:
            StorageError: If the file cannot be opened as a squeakmail
                database. The connection is closed before raising.
        """
        try:
            if self.db_path != MEMORY_PATH:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self.db_path)
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"cannot open database {self.db_path}: {e}") from e
        self._conn.row_factory = aiosqlite.Row

        try:
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute(f"PRAGMA cache_size=-{self.cache_size_mb * 1000}")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute("PRAGMA foreign_keys=ON")
            await apply_migrations(self._conn)
        except sqlite3.Error as e:
            await self.close()
            raise StorageError(f"cannot open database {self.db_path}: {e}") from e
        except BaseException:
            await self.close()
            raise
        logger.info("Database initialized: %s", self.db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Acquire the write lock and run the block as one transaction.

        SQLite errors surface as StorageError (StorageIntegrityError for
        constraint violations) after the rollback.
        """
        conn = self.conn
        async with self._write_lock:
            try:
                await conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"cannot begin transaction: {e}") from e
            try:
                yield Transaction(conn)
                await conn.commit()
            except sqlite3.IntegrityError as e:
                await conn.rollback()
                raise _integrity_error(e) from e
            except sqlite3.Error as e:
                await conn.rollback()
                raise StorageError(f"transaction failed: {e}") from e
            except BaseException:
                await conn.rollback()
                raise

    # --- Feeds ---

    async def get_feed_state(self, url: str) -> FeedState:
        """Return the caching tokens of a known feed."""
        cursor = await self.conn.execute(
            "SELECT etag, last_modified FROM feed WHERE url = ?", (url,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise FeedNotFoundError(url)
        return FeedState(etag=row["etag"], last_modified=row["last_modified"])

    async def get_feed(self, url: str) -> Optional[Feed]:
        cursor = await self.conn.execute("SELECT * FROM feed WHERE url = ?", (url,))
        row = await cursor.fetchone()
        return Feed.from_row(dict(row)) if row else None

    async def get_feeds(self) -> List[Feed]:
        """Return all stored feeds ordered by URL."""
        cursor = await self.conn.execute("SELECT * FROM feed ORDER BY url")
        rows = await cursor.fetchall()
        return [Feed.from_row(dict(r)) for r in rows]

    async def upsert_feed(
        self,
        url: str,
        link: str,
        title: str,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> None:
        async with self.transaction() as tx:
            await tx.upsert_feed(url, link, title, etag, last_modified)

    # --- Items ---

    async def insert_item_if_absent(
        self,
        feed_url: str,
        guid: str,
        link: str,
        comments_link: Optional[str],
        title: str,
        pub_date: datetime,
    ) -> bool:
        async with self.transaction() as tx:
            return await tx.insert_item_if_absent(
                feed_url, guid, link, comments_link, title, pub_date
            )

    async def mark_items_read(self, keys: Iterable[ItemKey]) -> int:
        async with self.transaction() as tx:
            return await tx.mark_items_read(keys)

    async def list_unread_items(self) -> List[Item]:
        """All unread items, oldest first; ties ordered by (feed_url, guid)."""
        cursor = await self.conn.execute(
            """SELECT * FROM item WHERE is_read = 0
               ORDER BY pub_date ASC, feed_url ASC, guid ASC"""
        )
        rows = await cursor.fetchall()
        return [Item.from_row(dict(r)) for r in rows]

    async def get_item(self, feed_url: str, guid: str) -> Optional[Item]:
        cursor = await self.conn.execute(
            "SELECT * FROM item WHERE feed_url = ? AND guid = ?", (feed_url, guid)
        )
        row = await cursor.fetchone()
        return Item.from_row(dict(row)) if row else None

    async def count_items(
        self, feed_url: Optional[str] = None, unread_only: bool = False
    ) -> int:
        """Count items, optionally for one feed and/or unread only."""
        query = "SELECT COUNT(*) FROM item WHERE 1=1"
        params: list = []
        if feed_url is not None:
            query += " AND feed_url = ?"
            params.append(feed_url)
        if unread_only:
            query += " AND is_read = 0"
        cursor = await self.conn.execute(query, params)
        row = await cursor.fetchone()
        return row[0] if row else 0

    # --- Maintenance ---

    async def integrity_check(self) -> bool:
        """Run integrity and foreign key checks on the database."""
        cursor = await self.conn.execute("PRAGMA integrity_check")
        row = await cursor.fetchone()
        if row is None or row[0] != "ok":
            return False
        cursor = await self.conn.execute("PRAGMA foreign_key_check")
        return await cursor.fetchone() is None

    async def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        stats: Dict[str, Any] = {}

        cursor = await self.conn.execute("SELECT COUNT(*) FROM feed")
        row = await cursor.fetchone()
        stats["total_feeds"] = row[0] if row else 0

        stats["total_items"] = await self.count_items()
        stats["unread_items"] = await self.count_items(unread_only=True)

        cursor = await self.conn.execute(
            """SELECT feed_url, COUNT(*) AS cnt FROM item
               WHERE is_read = 0 GROUP BY feed_url"""
        )
        stats["unread_by_feed"] = {r["feed_url"]: r["cnt"] for r in await cursor.fetchall()}

        cursor = await self.conn.execute(
            "SELECT page_count * page_size AS size FROM pragma_page_count(), pragma_page_size()"
        )
        row = await cursor.fetchone()
        stats["db_size_bytes"] = row[0] if row else 0

        return stats
