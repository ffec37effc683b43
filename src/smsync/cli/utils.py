"""Shared CLI utilities and helpers."""

import sys
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Iterator

import click
import humanize

from ..client import MessagingClient
from ..config import find_root, get_root


def err(*args, **kwargs):
    """Print to stderr."""
    print(*args, file=sys.stderr, **kwargs)


def require_init(f):
    """Decorator that requires .smsync directory to exist."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not find_root():
            err("Not in an smsync project. Run 'smsync init' first.")
            sys.exit(1)
        return f(*args, **kwargs)
    return wrapper


@contextmanager
def open_client() -> Iterator[MessagingClient]:
    """Open the current project's client; exits with an error on bad config."""
    try:
        client = MessagingClient(get_root())
    except ValueError as e:
        err(str(e))
        sys.exit(1)
    with client:
        yield client


def format_time(ms: int, now: datetime | None = None) -> str:
    """Relative time for recent messages, date otherwise."""
    if not ms:
        return "?"
    dt = datetime.fromtimestamp(ms / 1000)
    now = now or datetime.now()
    if (now - dt).days < 7:
        return humanize.naturaltime(now - dt)
    return dt.strftime("%Y-%m-%d")


def truncate(text: str, width: int = 50) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= width else text[:width - 1] + "…"


def parse_when(value: str) -> int:
    """Parse an ISO datetime, or a relative offset like '90s', '10m', '2h', '1d', into epoch ms."""
    units = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    value = value.strip()
    if value and value[-1] in units and value[:-1].isdigit():
        seconds = int(value[:-1]) * units[value[-1]]
        return int((datetime.now().timestamp() + seconds) * 1000)
    try:
        return int(datetime.fromisoformat(value).timestamp() * 1000)
    except ValueError:
        raise click.BadParameter(f"Expected ISO datetime or offset like 10m/2h/1d: {value!r}") from None


class AliasGroup(click.Group):
    """Click Group that supports command aliases."""

    def __init__(self, *args, aliases: dict[str, str] | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.aliases = aliases or {}
        # command -> list of aliases
        self._cmd_aliases: dict[str, list[str]] = {}
        for alias, cmd in self.aliases.items():
            self._cmd_aliases.setdefault(cmd, []).append(alias)

    def get_command(self, ctx, cmd_name):
        cmd_name = self.aliases.get(cmd_name, cmd_name)
        return super().get_command(ctx, cmd_name)

    def resolve_command(self, ctx, args):
        _, cmd_name, args = super().resolve_command(ctx, args)
        cmd_name = self.aliases.get(cmd_name, cmd_name)
        return _, cmd_name, args

    def format_commands(self, ctx, formatter):
        """Write all commands with their aliases to the formatter."""
        commands = []
        for subcommand in self.list_commands(ctx):
            cmd = self.get_command(ctx, subcommand)
            if cmd is None or cmd.hidden:
                continue
            aliases = self._cmd_aliases.get(subcommand, [])
            if aliases:
                name = f"{subcommand} ({', '.join(sorted(aliases))})"
            else:
                name = subcommand
            help_text = cmd.get_short_help_str(limit=formatter.width)
            commands.append((name, help_text))

        if commands:
            with formatter.section("Commands"):
                formatter.write_dl(commands)
