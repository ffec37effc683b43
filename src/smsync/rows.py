"""Normalized message rows.

Both store tables (text and multimedia) are mapped into one ``MessageRow``
shape here, so the merge engine and paging source never deal with
per-table column quirks such as second-resolution multimedia dates.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from .errors import MalformedRecord
from .logutil import get_logger

log = get_logger(__name__)

# Multimedia dates below this are in seconds, not milliseconds.
SECONDS_THRESHOLD = 10_000_000_000

PLACEHOLDER_ADDRESS = "MMS Group"
PLACEHOLDER_NAME = "MMS Conversation"
UNKNOWN_NAME = "Unknown"
CONTENT_UNAVAILABLE = "Multimedia Message (content unavailable)"

# Placeholder left in multimedia address lists for the local sender.
ADDRESS_TOKEN = "insert-address-token"


class SourceKind(str, Enum):
    TEXT = "sms"
    MULTIMEDIA = "mms"


class DeliveryState(str, Enum):
    RECEIVED = "received"
    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"

    @property
    def is_outbound(self) -> bool:
        return self is not DeliveryState.RECEIVED

    @classmethod
    def parse(cls, value: Any) -> "DeliveryState":
        """Parse a stored status, defaulting unknown values to RECEIVED."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.RECEIVED


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


def _to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def normalize_timestamp(value: Any) -> int:
    """Return a multimedia store date in milliseconds.

    Text dates are always milliseconds and are used as-is.
    """
    ts = _to_int(value)
    if ts < SECONDS_THRESHOLD:
        ts *= 1000
    return ts


@dataclass(frozen=True)
class MessageRow:
    """One store row from either table, in normalized form."""
    source_kind: SourceKind
    id: int
    thread_id: int
    timestamp_ms: int
    address: str = ""
    body: str = ""
    subject: str = ""
    is_read: bool = False
    delivery_state: DeliveryState = DeliveryState.RECEIVED
    image_ref: str | None = None

    @property
    def is_multimedia(self) -> bool:
        return self.source_kind is SourceKind.MULTIMEDIA

    @property
    def key(self) -> tuple[int, bool]:
        """Identity across both tables (ids are not disjoint)."""
        return (self.id, self.is_multimedia)


@dataclass(frozen=True)
class Message:
    """A message as shown in a thread."""
    id: int
    is_multimedia: bool
    thread_id: int
    address: str
    body: str
    timestamp_ms: int
    delivery_state: DeliveryState
    image_ref: str | None = None

    @property
    def key(self) -> tuple[int, bool]:
        return (self.id, self.is_multimedia)

    @property
    def direction(self) -> Direction:
        if self.delivery_state.is_outbound:
            return Direction.OUTBOUND
        return Direction.INBOUND


@dataclass(frozen=True)
class Part:
    """One multimedia part (text, image, smil, ...)."""
    id: int
    content_type: str
    text: str | None = None
    ref: str | None = None


def _require_int(raw: Mapping[str, Any], key: str, table: str) -> int:
    value = raw.get(key)
    if value is None:
        raise MalformedRecord(table, key, dict(raw))
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedRecord(table, key, dict(raw)) from None


def text_row(raw: Mapping[str, Any]) -> MessageRow:
    """Map a text-table row. Raises MalformedRecord if it has no id."""
    msg_id = _require_int(raw, "_id", "sms")
    try:
        thread_id = int(raw.get("thread_id") or 0)
    except (TypeError, ValueError):
        thread_id = 0
    return MessageRow(
        source_kind=SourceKind.TEXT,
        id=msg_id,
        thread_id=thread_id,
        timestamp_ms=_to_int(raw.get("date")),
        address=raw.get("address") or "",
        body=raw.get("body") or "",
        is_read=bool(raw.get("read") or 0),
        delivery_state=DeliveryState.parse(raw.get("status") or "received"),
    )


def mms_row(
    raw: Mapping[str, Any],
    address: str = "",
    body: str = "",
    image_ref: str | None = None,
) -> MessageRow:
    """Map a multimedia-table row.

    Participants and part content live in other tables; callers resolve them
    and pass them in.
    """
    msg_id = _require_int(raw, "_id", "mms")
    try:
        thread_id = int(raw.get("thread_id") or 0)
    except (TypeError, ValueError):
        thread_id = 0
    return MessageRow(
        source_kind=SourceKind.MULTIMEDIA,
        id=msg_id,
        thread_id=thread_id,
        timestamp_ms=normalize_timestamp(raw.get("date")),
        address=address,
        body=body,
        subject=raw.get("subject") or "",
        is_read=bool(raw.get("read") or 0),
        delivery_state=DeliveryState.parse(raw.get("status") or "received"),
        image_ref=image_ref,
    )


def to_part(raw: Mapping[str, Any]) -> Part:
    return Part(
        id=_require_int(raw, "_id", "mms_part"),
        content_type=(raw.get("ct") or "").lower(),
        text=raw.get("text"),
        ref=raw.get("ref"),
    )


def extract_content(parts: Iterable[Mapping[str, Any]]) -> tuple[str, str | None]:
    """Pick the text body and first image/video reference from parts.

    Unknown and malformed parts are skipped. If nothing usable is found the
    body is CONTENT_UNAVAILABLE.
    """
    body = ""
    image_ref = None
    for raw in parts:
        try:
            part = to_part(raw)
        except MalformedRecord as e:
            log.debug("Skipping part: %s", e)
            continue
        ct = part.content_type
        if (ct.startswith("text/") or not ct) and not body:
            if part.text and part.text.strip():
                body = part.text
        elif ct.startswith(("image/", "video/")) and image_ref is None:
            image_ref = part.ref or f"part:{part.id}"

    if not body and image_ref is None:
        body = CONTENT_UNAVAILABLE
    return body, image_ref


def split_participants(raw_address: str) -> list[str]:
    """Split a ';'-joined participant list."""
    return [p.strip() for p in (raw_address or "").split(";") if p.strip()]


def to_message(row: MessageRow) -> Message:
    return Message(
        id=row.id,
        is_multimedia=row.is_multimedia,
        thread_id=row.thread_id,
        address=row.address,
        body=row.body or row.subject,
        timestamp_ms=row.timestamp_ms,
        delivery_state=row.delivery_state,
        image_ref=row.image_ref,
    )
