"""Exception hierarchy shared by storage, connectors, mail and the CLI."""

from __future__ import annotations


class SqueakMailError(Exception):
    """Base class for all errors raised by squeakmail."""


class ConfigurationError(SqueakMailError):
    """The configuration file is missing, unreadable or invalid."""


# --- Feed client ---

class FeedClientError(SqueakMailError):
    """A single feed could not be fetched. Never fatal for a fetch run."""


class NetworkError(FeedClientError):
    """Transport failure, timeout or unexpected HTTP status."""


class MalformedFeedError(FeedClientError):
    """The response body is not a usable RSS or Atom document."""


# --- Storage ---

class StorageError(SqueakMailError):
    """Base class for storage layer failures."""


class FeedNotFoundError(StorageError):
    """The requested feed has no row in the database."""

    def __init__(self, url: str) -> None:
        super().__init__(f"unknown feed: {url}")
        self.url = url


class StorageIntegrityError(StorageError):
    """A constraint was violated. Indicates a logic bug; fatal for the operation."""


class ForeignKeyViolation(StorageIntegrityError):
    """An item referenced a feed that does not exist."""


# --- Mail ---

class MailDeliveryError(SqueakMailError):
    """The digest could not be handed off for delivery. Nothing was marked read."""
