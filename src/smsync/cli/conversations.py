"""Conversation list and thread commands: sync, ls, show, read, rm, pin, receive, watch."""

import sys
import threading

import click
from click import argument, echo, option, style
from rich.console import Console
from rich.table import Table

from ..paging import Invalid, LoadError
from ..rows import Direction

from .utils import err, format_time, open_client, require_init, truncate


@click.command()
@require_init
def sync():
    """Rebuild the conversation list from the message store."""
    with open_client() as client:
        result = client.sync()
    if result.complete_failure:
        err("Message store unavailable; conversation list left unchanged.")
        sys.exit(1)
    if result.failed_tables:
        err(f"Partial sync (unavailable: {', '.join(result.failed_tables)})")
    echo(f"Synced {len(result.conversations)} conversations")


@click.command()
@option('-n', '--limit', type=int, help="Show at most this many conversations")
@option('-q', '--query', help="Filter by name, address or snippet")
@option('-s', '--sync', 'do_sync', is_flag=True, help="Sync before listing")
@require_init
def ls(limit: int | None, query: str | None, do_sync: bool):
    """List conversations, pinned first, most recent first.

    \b
    Examples:
      smsync ls
      smsync ls -q alice
      smsync ls -s -n 10
    """
    with open_client() as client:
        if do_sync or client.cache.generation() == 0:
            client.sync()
        conversations = client.conversations(query)

    if limit:
        conversations = conversations[:limit]
    if not conversations:
        echo("No conversations.")
        return

    table = Table()
    table.add_column("Thread", justify="right", style="cyan")
    table.add_column("")
    table.add_column("Name")
    table.add_column("Last", style="dim")
    table.add_column("Snippet")
    for c in conversations:
        flags = ("📌" if c.is_pinned else "") + ("" if c.is_read else "●")
        name = c.display_name if c.is_read else f"[bold]{c.display_name}[/]"
        table.add_row(str(c.thread_id), flags, name, format_time(c.last_activity_at), truncate(c.snippet))
    Console().print(table)


@click.command(no_args_is_help=True)
@option('-n', '--limit', type=int, help="Page size (default: page_size from config)")
@option('-o', '--offset', type=int, default=0, help="Skip this many newest messages")
@argument('thread_id', type=int)
@require_init
def show(limit: int | None, offset: int, thread_id: int):
    """Show one page of a thread, newest first.

    \b
    Examples:
      smsync show 3
      smsync show 3 -o 30          # next page
    """
    with open_client() as client:
        result = client.messages(thread_id, offset, limit)

    if isinstance(result, LoadError):
        err(f"Could not load thread {thread_id}: {result.error}")
        sys.exit(1)
    if isinstance(result, Invalid):
        err("Thread changed while loading; try again.")
        sys.exit(1)

    if not result.items:
        echo(f"No messages in thread {thread_id} at offset {offset}.")
        return
    for m in result.items:
        arrow = style("→", fg="blue") if m.direction is Direction.OUTBOUND else style("←", fg="green")
        kind = "mms" if m.is_multimedia else "sms"
        state = m.delivery_state.value
        if state == "failed":
            state = style(state, fg="red")
        echo(f"{arrow} {kind}:{m.id} {format_time(m.timestamp_ms)} {m.address} [{state}]")
        if m.body:
            echo(f"    {m.body}")
        if m.image_ref:
            echo(f"    [image: {m.image_ref}]")
    if result.next_key is not None:
        echo(style(f"(more: smsync show {thread_id} -o {result.next_key})", dim=True))


@click.command(no_args_is_help=True)
@option('-u', '--unread', is_flag=True, help="Mark unread instead")
@argument('thread_id', type=int)
@require_init
def read(unread: bool, thread_id: int):
    """Mark a thread read (or unread)."""
    with open_client() as client:
        count = client.mark_unread(thread_id) if unread else client.mark_read(thread_id)
    echo(f"Marked {count} messages {'unread' if unread else 'read'} in thread {thread_id}")


@click.command(no_args_is_help=True)
@option('-y', '--yes', is_flag=True, help="Don't ask for confirmation")
@argument('thread_id', type=int)
@require_init
def rm(yes: bool, thread_id: int):
    """Delete a thread and all its messages."""
    if not yes:
        click.confirm(f"Delete thread {thread_id}?", abort=True)
    with open_client() as client:
        count = client.delete_thread(thread_id)
    echo(f"Deleted {count} messages from thread {thread_id}")


@click.command(no_args_is_help=True)
@option('-u', '--unpin', is_flag=True, help="Unpin instead")
@argument('thread_id', type=int)
@require_init
def pin(unpin: bool, thread_id: int):
    """Pin a thread to the top of the list (or unpin it)."""
    with open_client() as client:
        client.set_pinned(thread_id, not unpin)
    echo(f"{'Unpinned' if unpin else 'Pinned'} thread {thread_id}")


@click.command(no_args_is_help=True)
@option('-t', '--thread', 'thread_id', type=int, help="Thread id (default: by address)")
@argument('address')
@argument('body')
@require_init
def receive(thread_id: int | None, address: str, body: str):
    """Record an inbound text message (for testing and imports).

    \b
    Examples:
      smsync receive +15551234 'see you at 8'
    """
    with open_client() as client:
        try:
            row_id = client.receive(address, body, thread_id)
        except ValueError as e:
            err(str(e))
            sys.exit(1)
    echo(f"Received sms:{row_id}")


@click.command()
@require_init
def watch():
    """Keep the conversation list in sync with the store until interrupted."""
    console = Console()

    def on_publish(conversations):
        unread = sum(1 for c in conversations if not c.is_read)
        console.print(f"[green]✓[/] {len(conversations)} conversations, {unread} unread")

    stop = threading.Event()
    with open_client() as client:
        with client.cache.subscribe(on_publish):
            client.start()
            console.print(f"Watching {client.provider.path} (Ctrl-C to stop)")
            try:
                while not stop.wait(1.0):
                    pass
            except KeyboardInterrupt:
                console.print("Stopping")
