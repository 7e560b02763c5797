"""CLI interface for squeakmail.

Usage:
    squeakmail fetch
    squeakmail mail [--dry]
    squeakmail status
    squeakmail --config ~/squeakmail.yaml --database /tmp/squeakmail.db fetch
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from squeakmail import __version__
from squeakmail.config import Settings, default_config_path, default_database_path, get_settings
from squeakmail.connectors.base import FeedClient
from squeakmail.connectors.rss import RSSFeedClient
from squeakmail.digest.selector import DigestSelector
from squeakmail.errors import MailDeliveryError, SqueakMailError
from squeakmail.mail.mailer import build_mailer
from squeakmail.pipeline.orchestrator import FetchCoordinator
from squeakmail.storage.db import DatabaseManager
from squeakmail.storage.models import FetchStatus

logger = logging.getLogger(__name__)

console = Console()

STATUS_STYLES = {
    FetchStatus.FETCHED: "[green]fetched",
    FetchStatus.NOT_MODIFIED: "[dim]not modified",
    FetchStatus.FAILED: "[red]failed",
    FetchStatus.PENDING: "pending",
}


def run_async(coro):
    """Run an async function to completion."""
    return asyncio.run(coro)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="%H:%M:%S",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    # Quiet noisy loggers
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def build_feed_client(settings: Settings) -> FeedClient:
    return RSSFeedClient(
        user_agent=settings.user_agent,
        timeout=settings.fetch_timeout_seconds,
    )


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {escape(message)}", markup=True, highlight=False)
    sys.exit(1)


def _unexpected(command: str, exc: Exception) -> NoReturn:
    logger.debug("%s aborted", command, exc_info=exc)
    _fail(f"unexpected error: {exc.__class__.__name__}: {exc}")


def _load(ctx: click.Context) -> Settings:
    try:
        return get_settings(ctx.obj["config_path"])
    except SqueakMailError as e:
        _fail(str(e))


@click.group()
@click.version_option(__version__, prog_name="squeakmail")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Config file path [default: {default_config_path()}]",
)
@click.option(
    "--database",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Database path [default: {default_database_path()}]",
)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_path: Optional[Path], db_path: Optional[Path], verbose: bool):
    """SqueakMail: fetch feeds and mail a digest of unread items."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path or default_config_path()
    ctx.obj["db_path"] = str(db_path or default_database_path())


@cli.command()
@click.pass_context
def fetch(ctx):
    """Fetch all configured feeds and store new items."""
    settings = _load(ctx)

    async def _run():
        db = DatabaseManager(ctx.obj["db_path"])
        await db.initialize()
        client = build_feed_client(settings)
        try:
            coordinator = FetchCoordinator(
                db,
                client,
                settings.feeds,
                concurrency=settings.concurrency,
                timeout=settings.fetch_timeout_seconds,
            )
            return await coordinator.run()
        finally:
            await client.close()
            await db.close()

    try:
        summary = run_async(_run())
    except SqueakMailError as e:
        _fail(str(e))
    except Exception as e:
        _unexpected("fetch", e)

    table = Table(title="Fetch Results")
    table.add_column("Feed", style="cyan", overflow="fold")
    table.add_column("Status")
    table.add_column("Received", justify="right")
    table.add_column("Inserted", justify="right", style="green")
    table.add_column("Duplicates", justify="right", style="yellow")
    table.add_column("Time", justify="right")
    table.add_column("Error", style="red", overflow="fold")

    for r in summary.results:
        table.add_row(
            r.feed_url,
            STATUS_STYLES[r.status],
            str(r.received),
            str(r.inserted),
            str(r.duplicates),
            f"{r.duration_seconds:.1f}s",
            r.error_message or "",
        )
    table.add_section()
    table.add_row(
        "[bold]Total",
        f"[bold red]{summary.total_errors} failed" if summary.total_errors else "",
        f"[bold]{summary.total_received}",
        f"[bold green]{summary.total_inserted}",
        f"[bold yellow]{summary.total_duplicates}",
        f"[bold]{summary.duration_seconds:.1f}s",
        "",
    )
    console.print(table)


@cli.command()
@click.option("--dry", is_flag=True, help="Print email instead of sending it; marks nothing read")
@click.pass_context
def mail(ctx, dry: bool):
    """Mail a digest of all unread items, then mark them read."""
    settings = _load(ctx)

    async def _run():
        db = DatabaseManager(ctx.obj["db_path"])
        await db.initialize()
        try:
            mailer = build_mailer(settings, db=db, dry=dry)
            selector = DigestSelector(db, mailer)
            if dry:
                items = await selector.select()
                if items:
                    await mailer.send(items)
                return len(items), False
            result = await selector.run()
            return len(result.items), result.sent
        finally:
            await db.close()

    try:
        count, sent = run_async(_run())
    except MailDeliveryError as e:
        _fail(f"{e}. No items were marked read.")
    except SqueakMailError as e:
        _fail(str(e))
    except Exception as e:
        _unexpected("mail", e)

    if count == 0:
        console.print("[yellow]No unread items; no digest sent.[/yellow]")
    elif sent:
        console.print(f"[green]Sent digest with {count} item(s) to {settings.to_email}.[/green]")
    else:
        console.print(f"[yellow]Dry run: {count} item(s) would be sent; none marked read.[/yellow]")


@cli.command()
@click.pass_context
def status(ctx):
    """Show database and feed status."""
    settings = _load(ctx)

    async def _run():
        db = DatabaseManager(ctx.obj["db_path"])
        await db.initialize()
        try:
            stats = await db.get_stats()
            feeds = {f.url: f for f in await db.get_feeds()}
            return stats, feeds
        finally:
            await db.close()

    try:
        stats, feeds = run_async(_run())
    except SqueakMailError as e:
        _fail(str(e))
    except Exception as e:
        _unexpected("status", e)

    console.print("\n[bold]Database Status[/bold]")
    console.print(f"  Path: {ctx.obj['db_path']}")
    console.print(f"  Size: {stats['db_size_bytes'] / 1024:.1f} KB")
    console.print(f"  Feeds: {stats['total_feeds']}")
    console.print(f"  Items: {stats['total_items']}")
    console.print(f"  Unread: {stats['unread_items']}")

    table = Table(title="Feed Status")
    table.add_column("URL", style="cyan", overflow="fold")
    table.add_column("Title")
    table.add_column("Unread", justify="right")
    table.add_column("ETag")
    table.add_column("Last-Modified")

    for url in settings.unique_feeds:
        feed = feeds.get(url)
        if feed is None:
            table.add_row(url, "[dim]never fetched", "0", "", "")
            continue
        table.add_row(
            url,
            feed.title[:50],
            str(stats["unread_by_feed"].get(url, 0)),
            feed.etag or "",
            feed.last_modified or "",
        )
    console.print(table)


def main():
    cli()


if __name__ == "__main__":
    main()
