"""Storage layer - SQLite feed and item tables with atomic per-operation writes."""

from squeakmail.storage.db import DatabaseManager, Transaction
from squeakmail.storage.models import Feed, FeedState, Item, ItemKey, ReadState

__all__ = ["DatabaseManager", "Transaction", "Feed", "FeedState", "Item", "ItemKey", "ReadState"]
