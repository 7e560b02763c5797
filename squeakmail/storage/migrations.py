"""Version-controlled schema migrations for the squeakmail database."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import List, Tuple

import aiosqlite

from squeakmail.errors import StorageError

logger = logging.getLogger(__name__)

# Each migration is (version, description, list_of_sql_statements)
MigrationStep = Tuple[int, str, List[str]]

SCHEMA_SQL_PATH = Path(__file__).parent / "schema.sql"


def _get_migrations() -> List[MigrationStep]:
    """Return ordered list of migrations."""
    return [
        (
            1,
            "Initial schema: feed, item, unread index, read-state trigger",
            [SCHEMA_SQL_PATH.read_text(encoding="utf-8")],
        ),
    ]


def latest_version() -> int:
    return _get_migrations()[-1][0]


async def get_current_version(conn: aiosqlite.Connection) -> int:
    """Get the current schema version, or 0 if no schema exists."""
    try:
        cursor = await conn.execute("SELECT MAX(version) FROM schema_version")
        row = await cursor.fetchone()
        return row[0] if row and row[0] is not None else 0
    except sqlite3.OperationalError:
        return 0


async def apply_migrations(conn: aiosqlite.Connection) -> int:
    """Apply all pending migrations on an open connection.

    Returns the final schema version. Raises StorageError when the database
    was written by a newer release.
    """
    current = await get_current_version(conn)
    if current > latest_version():
        raise StorageError(f"unknown database version: {current}")

    applied = 0
    for version, description, statements in _get_migrations():
        if version <= current:
            continue

        logger.info("Applying migration v%d: %s", version, description)
        try:
            for sql in statements:
                await conn.executescript(sql)
            await conn.execute(
                "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                (version, description),
            )
            await conn.commit()
            applied += 1
        except Exception:
            await conn.rollback()
            logger.exception("Migration v%d failed", version)
            raise

    final = await get_current_version(conn)
    if applied:
        logger.info("Applied %d migration(s). Schema at v%d", applied, final)
    else:
        logger.debug("Schema up to date at v%d", final)
    return final
