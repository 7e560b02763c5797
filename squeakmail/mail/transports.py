"""Ways of handing a finished email message off for delivery."""

from __future__ import annotations

import asyncio
import logging
import shlex
import smtplib
from abc import ABC, abstractmethod
from email.message import Message
from typing import Optional

from rich.console import Console

from squeakmail.errors import MailDeliveryError

logger = logging.getLogger(__name__)


class Transport(ABC):
    @abstractmethod
    async def deliver(self, message: Message) -> None:
        """Hand the message off. Raises MailDeliveryError on failure."""
        ...


class SendmailTransport(Transport):
    """Pipe the message to a local ``sendmail -t -i``."""

    def __init__(self, command: str = "sendmail") -> None:
        self.argv = shlex.split(command) + ["-t", "-i"]

    async def deliver(self, message: Message) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await proc.communicate(message.as_bytes())
        except OSError as e:
            raise MailDeliveryError(f"sendmail error: {e}") from e
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise MailDeliveryError(
                f"sendmail error: exit status {proc.returncode}" + (f": {detail}" if detail else "")
            )
        logger.info("Handed digest to %s", self.argv[0])


class SMTPTransport(Transport):
    """Send through an SMTP server. smtplib runs in an executor."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 25,
        username: Optional[str] = None,
        password: Optional[str] = None,
        starttls: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def _send_sync(self, message: Message) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.starttls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password or "")
            server.send_message(message)

    async def deliver(self, message: Message) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_sync, message)
        except smtplib.SMTPAuthenticationError as e:
            raise MailDeliveryError(f"SMTP authentication failed for {self.username}: {e}") from e
        except (smtplib.SMTPException, OSError) as e:
            raise MailDeliveryError(f"SMTP error: {e}") from e
        logger.info("Sent digest via %s:%d", self.host, self.port)


class ConsoleTransport(Transport):
    """Print the message instead of sending it."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    async def deliver(self, message: Message) -> None:
        self.console.print(message.as_string(), markup=False, highlight=False)
