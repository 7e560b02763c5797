"""Mailer interface consumed by the digest selector."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from squeakmail.storage.models import Item


class Mailer(ABC):
    """Renders and delivers one digest message."""

    @abstractmethod
    async def send(self, items: List[Item]) -> None:
        """Deliver a single message containing all items, in order.

        Returns only once delivery is confirmed.

        Raises:
            MailDeliveryError: If the message could not be handed off.
        """
        ...
