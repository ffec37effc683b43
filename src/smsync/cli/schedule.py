"""Scheduled-message commands."""

import sys
from datetime import datetime

import click
from click import argument, echo, option
from rich.console import Console
from rich.table import Table

from ..scheduled import ScheduledStatus

from .utils import AliasGroup, err, open_client, parse_when, require_init, truncate

STATUS_STYLES = {
    ScheduledStatus.PENDING: "yellow",
    ScheduledStatus.SENT: "green",
    ScheduledStatus.FAILED: "red",
    ScheduledStatus.CANCELLED: "dim",
}


@click.group(cls=AliasGroup, aliases={
    'a': 'add',
    'c': 'cancel',
    'l': 'ls',
    'r': 'run',
})
def schedule():
    """Schedule messages for later."""
    pass


@schedule.command("add", no_args_is_help=True)
@option('-t', '--thread', 'thread_id', type=int, help="Thread id (default: by address)")
@argument('when')
@argument('address')
@argument('body')
@require_init
def schedule_add(thread_id: int | None, when: str, address: str, body: str):
    """Schedule a message.

    WHEN is an ISO datetime or an offset from now (90s, 10m, 2h, 1d).

    \b
    Examples:
      smsync schedule add 2h +15551234 'call me'
      smsync schedule add 2030-01-01T09:00 +15551234 'happy new year'
    """
    at_ms = parse_when(when)
    with open_client() as client:
        try:
            message = client.schedule(address, body, at_ms, thread_id)
        except ValueError as e:
            err(str(e))
            sys.exit(1)
    at = datetime.fromtimestamp(at_ms / 1000).strftime("%Y-%m-%d %H:%M")
    echo(f"Scheduled #{message.id} for {at} (thread {message.thread_id})")


@schedule.command("ls")
@option('-a', '--all', 'show_all', is_flag=True, help="Include sent, failed and cancelled")
@option('-t', '--thread', 'thread_id', type=int, help="Only this thread")
@require_init
def schedule_ls(show_all: bool, thread_id: int | None):
    """List scheduled messages."""
    with open_client() as client:
        messages = client.scheduled_messages(thread_id)
    if not show_all:
        messages = [m for m in messages if m.status is ScheduledStatus.PENDING]
    if not messages:
        echo("No scheduled messages.")
        return

    table = Table()
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("When")
    table.add_column("To")
    table.add_column("Status")
    table.add_column("Body")
    for m in messages:
        when = datetime.fromtimestamp(m.scheduled_at / 1000).strftime("%Y-%m-%d %H:%M")
        color = STATUS_STYLES[m.status]
        table.add_row(str(m.id), when, m.address, f"[{color}]{m.status.value}[/]", truncate(m.body, 40))
    Console().print(table)


@schedule.command("cancel", no_args_is_help=True)
@argument('scheduled_id', type=int)
@require_init
def schedule_cancel(scheduled_id: int):
    """Cancel a pending scheduled message."""
    with open_client() as client:
        if not client.cancel_scheduled(scheduled_id):
            err(f"#{scheduled_id} is not pending")
            sys.exit(1)
    echo(f"Cancelled #{scheduled_id}")


@schedule.command("run")
@require_init
def schedule_run():
    """Send every pending message that is due now."""
    with open_client() as client:
        count = client.run_due()
    echo(f"Sent {count} due message{'' if count == 1 else 's'}")
