"""Digest mailer: render the items, build the message, hand it to a transport."""

from __future__ import annotations

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from typing import TYPE_CHECKING, List, Optional

from squeakmail.digest.renderer import DigestRenderer, RenderedDigest
from squeakmail.mail.base import Mailer
from squeakmail.mail.transports import (
    ConsoleTransport,
    SendmailTransport,
    SMTPTransport,
    Transport,
)
from squeakmail.storage.models import Item

if TYPE_CHECKING:
    from squeakmail.config import Settings
    from squeakmail.storage.db import DatabaseManager

logger = logging.getLogger(__name__)


def build_message(rendered: RenderedDigest, from_email: str, to_email: str) -> MIMEMultipart:
    """multipart/alternative with the plain-text part first."""
    msg = MIMEMultipart("alternative")
    msg["Subject"] = rendered.subject
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid(domain=from_email.rpartition("@")[2] or None)
    msg.attach(MIMEText(rendered.text, "plain", "utf-8"))
    msg.attach(MIMEText(rendered.html, "html", "utf-8"))
    return msg


class DigestMailer(Mailer):
    """Mailer that renders a digest and delivers it through a Transport.

    When a database is given, feed titles and links are looked up there for
    the per-feed headings.
    """

    def __init__(
        self,
        transport: Transport,
        from_email: str,
        to_email: str,
        renderer: Optional[DigestRenderer] = None,
        db: Optional["DatabaseManager"] = None,
    ) -> None:
        self.transport = transport
        self.from_email = from_email
        self.to_email = to_email
        self.renderer = renderer or DigestRenderer()
        self.db = db

    async def send(self, items: List[Item]) -> None:
        feeds = {}
        if self.db is not None:
            feeds = {feed.url: feed for feed in await self.db.get_feeds()}
        rendered = self.renderer.render(items, feeds)
        message = build_message(rendered, self.from_email, self.to_email)
        logger.debug("Delivering %r to %s", rendered.subject, self.to_email)
        await self.transport.deliver(message)


def build_transport(settings: "Settings", dry: bool = False) -> Transport:
    """Transport selected by configuration; ``dry`` prints instead."""
    if dry:
        return ConsoleTransport()
    mail = settings.mail
    if mail.transport == "smtp":
        return SMTPTransport(
            host=mail.smtp_host,
            port=mail.smtp_port,
            username=mail.smtp_username,
            password=settings.smtp_password,
            starttls=mail.smtp_starttls,
            timeout=mail.smtp_timeout_seconds,
        )
    return SendmailTransport(mail.sendmail_command)


def build_mailer(
    settings: "Settings",
    db: Optional["DatabaseManager"] = None,
    dry: bool = False,
) -> DigestMailer:
    return DigestMailer(
        transport=build_transport(settings, dry=dry),
        from_email=settings.from_email,
        to_email=settings.to_email,
        db=db,
    )
