"""SqueakMail: fetch RSS/Atom feeds and mail a digest of unread items."""

__version__ = "0.3.0"
