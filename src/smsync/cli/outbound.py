"""Outbound commands: send, resend."""

import sys

import click
from click import argument, echo, option, style

from ..provider import MMS, SMS
from ..rows import DeliveryState
from ..send import parse_addresses

from .utils import err, open_client, require_init


def _report(client, table: str, row_id: int) -> None:
    """Wait for delivery confirmation, then print the final state."""
    client.wait_idle(timeout=60)
    rows = client.provider.query(table, {"_id": row_id})
    state = DeliveryState.parse(rows[0].get("status")) if rows else DeliveryState.QUEUED
    color = {"sent": "green", "failed": "red"}.get(state.value, "yellow")
    echo(f"{table}:{row_id} {style(state.value, fg=color)}")


@click.command(no_args_is_help=True)
@option('-a', '--attachment', help="Attach an image/video (path or URI); sends as mms")
@argument('address')
@argument('body', required=False, default="")
@require_init
def send(attachment: str | None, address: str, body: str):
    """Send a message.

    Several addresses separated by ';' send a group (mms) message.

    \b
    Examples:
      smsync send +15551234 'on my way'
      smsync send '+15551234;+15555678' 'dinner?'
      smsync send +15551234 -a photo.jpg 'look'
    """
    with open_client() as client:
        try:
            row_id = client.send(address, body, attachment)
        except ValueError as e:
            err(str(e))
            sys.exit(1)
        table = MMS if attachment or len(parse_addresses(address)) > 1 else SMS
        _report(client, table, row_id)


@click.command(no_args_is_help=True)
@option('-a', '--address', help="Send to this address instead")
@option('-b', '--body', help="Send this body instead")
@option('-m', '--mms', 'is_multimedia', is_flag=True, help="ID is an mms id")
@argument('message_id', type=int)
@require_init
def resend(address: str | None, body: str | None, is_multimedia: bool, message_id: int):
    """Resend a failed message (the failed copy is removed).

    \b
    Examples:
      smsync resend 42
      smsync resend -m 7
    """
    with open_client() as client:
        try:
            row_id = client.resend(message_id, is_multimedia, address, body)
        except ValueError as e:
            err(str(e))
            sys.exit(1)
        table = MMS if is_multimedia else SMS
        _report(client, table, row_id)
