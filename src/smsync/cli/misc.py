"""Project setup: init."""

from pathlib import Path

import click
from click import echo, option

from ..config import (
    SMSYNC_DIR,
    SmsyncConfig,
    TransportConfig,
    get_provider_path,
    get_state_db_path,
    save_config,
)
from ..metadata import MetadataStore
from ..provider import SqliteProvider


@click.command()
@option('-p', '--provider', help="Message store path (default: .smsync/provider.db)")
@option('-t', '--transport', 'transport_type', type=click.Choice(["loopback", "http"]), default="loopback",
        help="Outbound transport")
@option('-u', '--url', help="Gateway URL (http transport)")
def init(provider: str | None, transport_type: str, url: str | None):
    """Initialize smsync project directory.

    \b
    Examples:
      smsync init                                  # Local store, loopback transport
      smsync init -p ~/phone-backup/mmssms.db      # Existing store
      smsync init -t http -u https://gw.example.com/send
    """
    if transport_type == "http" and not url:
        raise click.UsageError("--url is required with the http transport")

    root = Path.cwd()
    smsync_dir = root / SMSYNC_DIR
    config_path = smsync_dir / "config.yaml"

    if config_path.exists():
        echo(f"Already initialized: {smsync_dir}")
        return

    smsync_dir.mkdir(parents=True, exist_ok=True)
    config = SmsyncConfig(transport=TransportConfig(type=transport_type, url=url))
    if provider:
        config.provider = provider
    save_config(config, root)

    # create schemas
    with SqliteProvider(get_provider_path(root, config)):
        pass
    with MetadataStore(get_state_db_path(root)):
        pass

    echo(f"Initialized: {smsync_dir}")
    echo(f"  config.yaml   - store path, transport, contacts")
    echo(f"  state.db      - pins, cached conversation list, scheduled messages")
    echo(f"  blocked.txt   - blocked numbers")
    echo(f"  Store: {config.provider}")
    echo()
    echo("Next steps:")
    echo("  smsync receive +15551234 'hello'")
    echo("  smsync sync && smsync ls")
