"""Digest selection (unread items, mark read) and rendering."""

from squeakmail.digest.renderer import DigestRenderer
from squeakmail.digest.selector import DigestResult, DigestSelector

__all__ = ["DigestRenderer", "DigestResult", "DigestSelector"]
