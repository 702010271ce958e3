"""Command line interface for Mailboard."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .cache.policy import Namespace, ttl_for
from .cache.store import CacheStore
from .config import config_manager
from .errors import create_user_friendly_error
from .session import SyncSession
from .sync.merge import BoardFilters, SortField


def _format_time(epoch: Optional[float]) -> str:
    if epoch is None:
        return "-"
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _report_error(ctx: click.Context, action: str, error: Exception) -> None:
    click.echo(f"Error {action}: {create_user_friendly_error(error)}", err=True)
    if ctx.obj["verbose"]:
        click.echo(f"Details: {str(error)}", err=True)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool):
    """Mailboard - cached Gmail inbox and kanban board from the terminal."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = Console()

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if config:
            config_manager.config_path = config
            config_manager.reload()
        ctx.obj["config"] = config_manager.config
    except Exception as e:
        click.echo(f"Error initializing Mailboard: {create_user_friendly_error(e)}", err=True)
        if verbose:
            click.echo(f"Details: {str(e)}", err=True)
        ctx.exit(1)


# === Cache management commands ===


@cli.group()
def cache():
    """Cache management commands.

    Inspect and clear the local DuckDB cache.
    """
    pass


@cache.command("status")
@click.pass_context
def cache_status(ctx: click.Context):
    """Show cache status and statistics."""
    console = ctx.obj["console"]
    config = ctx.obj["config"]

    async def collect():
        async with CacheStore(config.cache.db_path, enabled=config.cache.enabled) as store:
            return store.get_stats()

    try:
        stats = asyncio.run(collect())

        console.print("[bold cyan]Cache Status[/bold cyan]")
        console.print()
        console.print(f"[dim]Database:[/dim] {stats['db_path']}")
        console.print(f"[dim]Enabled:[/dim] {config.cache.enabled}")

        if not stats["available"]:
            console.print(f"[yellow]Unavailable:[/yellow] {stats.get('reason') or 'unknown'}")
            return

        if stats["db_size_bytes"] > 0:
            size_mb = stats["db_size_bytes"] / (1024 * 1024)
            console.print(f"[dim]Size:[/dim] {size_mb:.2f} MB")
        else:
            console.print("[dim]Size:[/dim] Empty (not initialized)")

        console.print()

        table = Table(show_header=True, header_style="bold blue")
        table.add_column("Namespace", style="cyan")
        table.add_column("Entries", justify="right")
        table.add_column("TTL", justify="right")

        for namespace in Namespace:
            ttl_minutes = ttl_for(namespace, config.cache).total_seconds() / 60
            table.add_row(
                namespace.value,
                f"{stats['namespaces'].get(namespace.value, 0):,}",
                f"{ttl_minutes:g} min",
            )

        console.print(table)

        if stats["oldest"] is not None:
            console.print()
            console.print(
                f"[dim]Time range:[/dim] {_format_time(stats['oldest'])} to {_format_time(stats['newest'])}"
            )

    except Exception as e:
        _report_error(ctx, "getting cache status", e)


@cache.command("clear")
@click.option(
    "--namespace",
    "-n",
    type=click.Choice([ns.value for ns in Namespace]),
    default=None,
    help="Only clear one namespace",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def cache_clear(ctx: click.Context, namespace: Optional[str], yes: bool):
    """Clear cached data."""
    config = ctx.obj["config"]

    if not yes:
        target = f"the {namespace} namespace" if namespace else "all cached data"
        if not click.confirm(f"This will delete {target}. Continue?"):
            click.echo("Cancelled.")
            return

    async def clear():
        async with CacheStore(config.cache.db_path, enabled=config.cache.enabled) as store:
            if namespace:
                await store.clear(Namespace(namespace))
            else:
                await store.clear_all()

    try:
        asyncio.run(clear())
        click.echo("Cache cleared successfully.")
    except Exception as e:
        _report_error(ctx, "clearing cache", e)


@cache.command("prune")
@click.pass_context
def cache_prune(ctx: click.Context):
    """Remove entries older than their namespace TTL."""
    config = ctx.obj["config"]

    async def prune():
        removed = 0
        async with CacheStore(config.cache.db_path, enabled=config.cache.enabled) as store:
            for namespace in Namespace:
                ttl = ttl_for(namespace, config.cache).total_seconds()
                removed += await store.prune(namespace, ttl)
        return removed

    try:
        removed = asyncio.run(prune())
        click.echo(f"Removed {removed} expired entr{'y' if removed == 1 else 'ies'}.")
    except Exception as e:
        _report_error(ctx, "pruning cache", e)


# === Views ===


def _filters(unread: bool, attachments: bool, sender: str, oldest: bool, by_sender: bool) -> BoardFilters:
    return BoardFilters(
        unread_only=unread,
        has_attachments=attachments,
        sender=sender,
        sort_by=SortField.SENDER if by_sender else SortField.DATE,
        descending=not oldest and not by_sender,
    )


_view_options = [
    click.option("--unread", is_flag=True, help="Only unread emails"),
    click.option("--attachments", is_flag=True, help="Only emails with attachments"),
    click.option("--sender", default="", help="Filter by sender name or address"),
    click.option("--oldest", is_flag=True, help="Oldest first"),
    click.option("--by-sender", is_flag=True, help="Sort by sender"),
]


def view_options(func):
    for option in reversed(_view_options):
        func = option(func)
    return func


@cli.command()
@click.argument("mailbox", default="INBOX")
@click.option("--pages", "-p", type=int, default=1, help="Number of pages to load")
@view_options
@click.pass_context
def inbox(
    ctx: click.Context,
    mailbox: str,
    pages: int,
    unread: bool,
    attachments: bool,
    sender: str,
    oldest: bool,
    by_sender: bool,
):
    """List emails of a mailbox."""
    console = ctx.obj["console"]
    config = ctx.obj["config"]
    filters = _filters(unread, attachments, sender, oldest, by_sender)

    async def load():
        async with SyncSession(config, on_notice=console.print) as session:
            mailboxes = await session.inbox.get_mailboxes()
            await session.inbox.get_emails(mailbox)
            for _ in range(pages - 1):
                if not session.inbox.has_more(mailbox):
                    break
                await session.inbox.load_more(mailbox)
            emails = session.inbox.emails(mailbox, filters)
            await session.orchestrator.wait_idle()
            return mailboxes, emails

    try:
        mailboxes, emails = asyncio.run(load())
    except Exception as e:
        _report_error(ctx, "loading inbox", e)
        return

    current = next((m for m in mailboxes if m.id == mailbox), None)
    title = f"{current.name if current else mailbox} ({current.unread if current else '?'} unread)"

    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("", width=2)
    table.add_column("From", style="cyan")
    table.add_column("Subject")
    table.add_column("Date", justify="right", style="dim")

    for email in emails:
        flags = ("*" if email.starred else "") + ("+" if email.unread else "")
        table.add_row(
            flags,
            email.sender_name or email.sender_email,
            email.subject,
            email.timestamp.strftime("%Y-%m-%d %H:%M") if email.timestamp else "",
        )

    console.print(table)


@cli.command()
@click.option("--label", "-l", default=None, help="Restrict the board to a label")
@view_options
@click.pass_context
def board(
    ctx: click.Context,
    label: Optional[str],
    unread: bool,
    attachments: bool,
    sender: str,
    oldest: bool,
    by_sender: bool,
):
    """Show the kanban board."""
    console = ctx.obj["console"]
    config = ctx.obj["config"]
    filters = _filters(unread, attachments, sender, oldest, by_sender)

    async def load():
        async with SyncSession(config, on_notice=console.print) as session:
            await session.kanban.get_columns()
            await session.kanban.get_board(label)
            view = session.kanban.board_view(filters, label)
            await session.orchestrator.wait_idle()
            return session.kanban.columns, view

    try:
        columns, view = asyncio.run(load())
    except Exception as e:
        _report_error(ctx, "loading board", e)
        return

    table = Table(show_header=True, header_style="bold blue")
    for column in columns:
        table.add_column(f"{column.name} ({len(view.get(column.id, []))})", style="cyan")

    depth = max((len(view.get(c.id, [])) for c in columns), default=0)
    for row in range(depth):
        cells = []
        for column in columns:
            items = view.get(column.id, [])
            if row < len(items):
                item = items[row]
                cells.append(f"{item.subject or '(no subject)'}\n[dim]{item.sender_name or item.sender_email or ''}[/dim]")
            else:
                cells.append("")
        table.add_row(*cells)

    console.print(table)


def main():
    """Entry point for the CLI application."""
    cli()
