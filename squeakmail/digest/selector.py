"""Digest selector: unread items -> mailer -> mark read."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from squeakmail.mail.base import Mailer
from squeakmail.storage.db import DatabaseManager
from squeakmail.storage.models import Item, ItemKey

logger = logging.getLogger(__name__)


@dataclass
class DigestResult:
    """Outcome of one mail run."""

    items: List[Item] = field(default_factory=list)
    sent: bool = False
    marked: int = 0

    @property
    def keys(self) -> List[ItemKey]:
        return [item.key for item in self.items]


class DigestSelector:
    """Selects unread items for the digest and marks them read once delivered.

    Delivery is at-least-once: a crash after the mailer returns but before
    the mark-read commit sends the same items again on the next run.
    """

    def __init__(self, db: DatabaseManager, mailer: Mailer) -> None:
        self.db = db
        self.mailer = mailer

    async def select(self) -> List[Item]:
        """The items the next digest would contain, oldest first."""
        return await self.db.list_unread_items()

    async def run(self) -> DigestResult:
        """Send one digest of every unread item.

        Raises:
            MailDeliveryError: From the mailer. Nothing is marked read.
        """
        items = await self.select()
        result = DigestResult(items=items)
        if not items:
            logger.info("No unread items, not sending a digest")
            return result

        logger.info("Sending digest with %d item(s)", len(items))
        await self.mailer.send(items)
        result.sent = True

        async with self.db.transaction() as tx:
            result.marked = await tx.mark_items_read(result.keys)
        logger.info("Marked %d item(s) read", result.marked)
        return result
