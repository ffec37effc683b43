"""Project configuration via YAML files."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

SMSYNC_DIR = ".smsync"
CONFIG_FILE = "config.yaml"
PROVIDER_DB = "provider.db"
STATE_DB = "state.db"
BLOCKED_FILE = "blocked.txt"

TRANSPORT_TYPES = ("loopback", "http")


@dataclass
class TransportConfig:
    """Outbound transport settings."""
    type: str = "loopback"  # "loopback" or "http"
    url: str | None = None
    token: str | None = None
    timeout: float = 10.0
    fail: bool = False  # loopback only: report every delivery as failed


@dataclass
class Contact:
    """A contact-book entry keyed by phone number or email."""
    address: str
    name: str
    photo: str | None = None


@dataclass
class SmsyncConfig:
    """Top-level smsync project configuration."""
    provider: str = f"{SMSYNC_DIR}/{PROVIDER_DB}"  # relative to project root
    recency_window: int = 100
    page_size: int = 30
    poll_interval: float = 2.0
    transport: TransportConfig = field(default_factory=TransportConfig)
    contacts: dict[str, Contact] = field(default_factory=dict)


def find_root(start: Path | None = None) -> Path | None:
    """Find project root (directory containing .smsync/).

    First checks SMSYNC_ROOT environment variable, then walks up from start/cwd.
    """
    env_root = os.environ.get("SMSYNC_ROOT")
    if env_root:
        env_path = Path(env_root).resolve()
        if (env_path / SMSYNC_DIR).is_dir():
            return env_path

    path = (start or Path.cwd()).resolve()
    while path != path.parent:
        if (path / SMSYNC_DIR).is_dir():
            return path
        path = path.parent
    return None


def get_root(require: bool = True) -> Path:
    """Get project root, raising if not found and require=True."""
    root = find_root()
    if not root and require:
        raise FileNotFoundError(
            "Not in an smsync project. Run 'smsync init' first."
        )
    return root or Path.cwd()


def get_config_path(root: Path | None = None) -> Path:
    root = root or get_root()
    return root / SMSYNC_DIR / CONFIG_FILE


def get_state_db_path(root: Path) -> Path:
    return root / SMSYNC_DIR / STATE_DB


def get_blocked_path(root: Path) -> Path:
    return root / SMSYNC_DIR / BLOCKED_FILE


def get_provider_path(root: Path, config: SmsyncConfig) -> Path:
    """Resolve the message store path; relative paths are against the root."""
    path = Path(config.provider).expanduser()
    return path if path.is_absolute() else root / path


def load_config(root: Path | None = None) -> SmsyncConfig:
    """Load config from config.yaml."""
    config_path = get_config_path(root)
    if not config_path.exists():
        return SmsyncConfig()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    transport_data = data.get("transport") or {}
    transport = TransportConfig(
        type=transport_data.get("type", "loopback"),
        url=transport_data.get("url"),
        token=transport_data.get("token"),
        timeout=float(transport_data.get("timeout", 10.0)),
        fail=bool(transport_data.get("fail", False)),
    )
    if transport.type not in TRANSPORT_TYPES:
        raise ValueError(
            f"Invalid transport type {transport.type!r} in {config_path} "
            f"(expected one of: {', '.join(TRANSPORT_TYPES)})"
        )

    contacts = {}
    for address, entry in (data.get("contacts") or {}).items():
        if isinstance(entry, dict):
            contacts[str(address)] = Contact(
                address=str(address),
                name=entry.get("name") or str(address),
                photo=entry.get("photo"),
            )
        else:
            contacts[str(address)] = Contact(address=str(address), name=str(entry))

    return SmsyncConfig(
        provider=data.get("provider", f"{SMSYNC_DIR}/{PROVIDER_DB}"),
        recency_window=int(data.get("recency_window", 100)),
        page_size=int(data.get("page_size", 30)),
        poll_interval=float(data.get("poll_interval", 2.0)),
        transport=transport,
        contacts=contacts,
    )


def save_config(config: SmsyncConfig, root: Path | None = None) -> None:
    """Save config to config.yaml."""
    config_path = get_config_path(root)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data: dict = {
        "provider": config.provider,
        "recency_window": config.recency_window,
        "page_size": config.page_size,
        "poll_interval": config.poll_interval,
    }
    transport = {"type": config.transport.type}
    if config.transport.url:
        transport["url"] = config.transport.url
    if config.transport.token:
        transport["token"] = config.transport.token
    if config.transport.timeout != 10.0:
        transport["timeout"] = config.transport.timeout
    if config.transport.fail:
        transport["fail"] = True
    data["transport"] = transport

    if config.contacts:
        data["contacts"] = {}
        for address, contact in config.contacts.items():
            entry = {"name": contact.name}
            if contact.photo:
                entry["photo"] = contact.photo
            data["contacts"][address] = entry

    with open(config_path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
