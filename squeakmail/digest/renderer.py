"""Render the digest email body from the selected items (Jinja2)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from squeakmail.storage.models import Feed, Item

TEMPLATE_DIR = Path(__file__).parent / "templates"
HTML_TEMPLATE = "mail.html.jinja"
TEXT_TEMPLATE = "mail.txt.jinja"


@dataclass
class FeedGroup:
    """Items of one feed, in digest order."""

    url: str
    title: str
    link: str
    items: List[Item] = field(default_factory=list)


@dataclass
class RenderedDigest:
    subject: str
    html: str
    text: str


def group_by_feed(items: Iterable[Item], feeds: Mapping[str, Feed]) -> List[FeedGroup]:
    """Group items under their feed.

    Feeds appear in order of their first item; items keep their order.
    Feeds missing from ``feeds`` are titled by URL.
    """
    groups: Dict[str, FeedGroup] = {}
    for item in items:
        group = groups.get(item.feed_url)
        if group is None:
            feed = feeds.get(item.feed_url)
            group = FeedGroup(
                url=item.feed_url,
                title=feed.title if feed else item.feed_url,
                link=feed.link if feed else item.feed_url,
            )
            groups[item.feed_url] = group
        group.items.append(item)
    return list(groups.values())


class DigestRenderer:
    """Renders subject, HTML and plain-text bodies of a digest."""

    def __init__(self, template_dir: Path = TEMPLATE_DIR) -> None:
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(enabled_extensions=("html.jinja",)),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def subject(self, now: Optional[datetime] = None) -> str:
        now = now or datetime.now().astimezone()
        return f"SqueakMail for {now.strftime('%c')}"

    def render(
        self,
        items: List[Item],
        feeds: Mapping[str, Feed],
        now: Optional[datetime] = None,
    ) -> RenderedDigest:
        subject = self.subject(now)
        tmpl_vars = {"subject": subject, "groups": group_by_feed(items, feeds)}
        return RenderedDigest(
            subject=subject,
            html=self.env.get_template(HTML_TEMPLATE).render(tmpl_vars),
            text=self.env.get_template(TEXT_TEMPLATE).render(tmpl_vars),
        )
