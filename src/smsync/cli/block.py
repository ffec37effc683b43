"""Blocked-number commands."""

import sys

import click
from click import argument, echo, option

from .utils import AliasGroup, err, open_client, require_init


@click.group(cls=AliasGroup, aliases={
    'a': 'add',
    'i': 'import',
    'l': 'ls',
    'r': 'rm',
})
def block():
    """Manage blocked numbers."""
    pass


@block.command("add", no_args_is_help=True)
@option('-t', '--thread', 'thread_id', type=int, help="Block every participant of a thread")
@argument('numbers', nargs=-1)
@require_init
def block_add(thread_id: int | None, numbers: tuple[str, ...]):
    """Block one or more numbers.

    \b
    Examples:
      smsync block add +15551234
      smsync block add '+1 (555) 999-0000' +15557777
      smsync block add -t 3              # everyone in thread 3
    """
    if not numbers and thread_id is None:
        raise click.UsageError("Give numbers to block, or -t THREAD")
    with open_client() as client:
        added = 0
        if thread_id is not None:
            try:
                added += client.block_conversation(thread_id)
            except KeyError:
                err(f"No conversation {thread_id} (try 'smsync sync')")
                sys.exit(1)
        for number in numbers:
            try:
                added += client.block(number)
            except ValueError as e:
                err(str(e))
    echo(f"Blocked {added} new number{'' if added == 1 else 's'}")


@block.command("rm", no_args_is_help=True)
@argument('numbers', nargs=-1, required=True)
@require_init
def block_rm(numbers: tuple[str, ...]):
    """Unblock numbers."""
    with open_client() as client:
        for number in numbers:
            if client.unblock(number):
                echo(f"Unblocked {number}")
            else:
                err(f"Not blocked: {number}")


@block.command("ls")
@require_init
def block_ls():
    """List blocked numbers."""
    with open_client() as client:
        numbers = client.blocked()
    if not numbers:
        echo("No blocked numbers.")
        return
    for number in numbers:
        echo(number)


@block.command("import", no_args_is_help=True)
@argument('path', type=click.Path(exists=True, dir_okay=False))
@require_init
def block_import(path: str):
    """Import an external block list (one number per line, '#' comments)."""
    with open_client() as client:
        added = client.import_blocked(path)
    echo(f"Imported {added} new number{'' if added == 1 else 's'}")
