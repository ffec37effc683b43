"""CLI package for smsync - SMS/MMS conversation sync.

This package organizes CLI commands into modules:
- conversations.py: sync, ls, show, read, rm, pin, receive, watch
- outbound.py: send, resend
- block.py: Blocked numbers (add, rm, ls, import)
- schedule.py: Scheduled messages (add, ls, cancel, run)
- misc.py: init
- utils.py: Shared utilities and helpers
"""

import click
from dotenv import load_dotenv

from ..logutil import set_level
from .utils import AliasGroup

from .block import block
from .conversations import ls, pin, read, receive, rm, show, sync, watch
from .misc import init
from .outbound import resend, send
from .schedule import schedule


@click.group(cls=AliasGroup, aliases={
    'b': 'block',
    'i': 'init',
    'r': 'read',
    'rs': 'resend',
    's': 'send',
    'sc': 'schedule',
    'sh': 'show',
    'y': 'sync',
    'w': 'watch',
})
@click.option('-v', '--verbose', count=True, help="Log more (-v info, -vv debug)")
def main(verbose: int):
    """SMS/MMS conversation sync tools."""
    load_dotenv()
    if verbose:
        set_level("DEBUG" if verbose > 1 else "INFO")


main.add_command(block)
main.add_command(schedule)

main.add_command(init)
main.add_command(ls)
main.add_command(pin)
main.add_command(read)
main.add_command(receive)
main.add_command(resend)
main.add_command(rm)
main.add_command(send)
main.add_command(show)
main.add_command(sync)
main.add_command(watch)


__all__ = [
    'main',
    'block',
    'init',
    'ls',
    'pin',
    'read',
    'receive',
    'resend',
    'rm',
    'schedule',
    'send',
    'show',
    'sync',
    'watch',
]
