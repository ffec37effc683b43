"""Outbound send state machine: queued -> sent | failed."""

import mimetypes
import threading
import time
from typing import Callable, Iterable

from .blocks import normalize
from .errors import DeliveryFailed, SourceUnavailable
from .logutil import get_logger
from .provider import ADDR_TO, MMS, SMS, MessageProvider
from .rows import CONTENT_UNAVAILABLE, DeliveryState, extract_content
from .transport import ConfirmationSlot, Transport, split_segments

log = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_address(address: str) -> str:
    """Digits and '+' for phone numbers; email-style addresses pass through."""
    address = (address or "").strip()
    if "@" in address:
        return address
    return normalize(address)


def parse_addresses(addresses: str | Iterable[str]) -> list[str]:
    if isinstance(addresses, str):
        addresses = addresses.split(";")
    result = []
    for address in addresses:
        normalized = normalize_address(address)
        if normalized and normalized not in result:
            result.append(normalized)
    return result


class Sender:
    """Writes outbound messages to the store and tracks their delivery.

    Every send inserts a ``queued`` row and hands the transport a
    confirmation slot keyed by that row ("sms:<id>" or "mms:<id>"). The
    slot's single outcome moves the row to ``sent`` or ``failed``; a row
    that already left ``queued`` is never touched again.
    """

    def __init__(
        self,
        provider: MessageProvider,
        transport: Transport,
        on_change: Callable[[], None] | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.provider = provider
        self.transport = transport
        self.on_change = on_change
        self.clock = clock
        self._lock = threading.Lock()
        self._slots: dict[str, ConfirmationSlot] = {}

    @property
    def in_flight(self) -> list[str]:
        """Tokens of sends still waiting for confirmation."""
        with self._lock:
            return sorted(self._slots)

    def _slot(self, table: str, row_id: int, segments: int) -> ConfirmationSlot:
        slot = ConfirmationSlot(f"{table}:{row_id}", segments, self._confirm)
        with self._lock:
            self._slots[slot.token] = slot
        return slot

    def send(self, address: str, body: str) -> int:
        """Queue a text message. Returns the new row id.

        An address list (';'-separated) is sent as a group multimedia
        message instead; the returned id is then an mms id.
        """
        if not body or not body.strip():
            raise ValueError("Message body is empty")
        recipients = parse_addresses(address)
        if not recipients:
            raise ValueError(f"Not a valid address: {address!r}")
        if len(recipients) > 1:
            return self.send_with_attachment(recipients, body, None)

        to = recipients[0]
        thread_id = self.provider.thread_id_for([to])
        segments = split_segments(body)
        row_id = self.provider.insert(SMS, {
            "thread_id": thread_id,
            "address": to,
            "body": body,
            "date": self.clock(),
            "read": 1,
            "status": DeliveryState.QUEUED.value,
        })
        slot = self._slot(SMS, row_id, len(segments))
        log.info("Queued %s to %s (%d segment%s)", slot.token, to, len(segments),
                 "" if len(segments) == 1 else "s")
        try:
            self.transport.deliver(to, segments, slot)
        except DeliveryFailed as e:
            log.warning("%s", e)
            slot.confirm(False)
        return row_id

    def send_with_attachment(
        self,
        addresses: str | Iterable[str],
        body: str,
        attachment_ref: str | None,
    ) -> int:
        """Queue a multimedia message. Returns the new mms id."""
        body = body or ""
        recipients = parse_addresses(addresses)
        if not recipients:
            raise ValueError(f"Not a valid address: {addresses!r}")
        if not body.strip() and not attachment_ref:
            raise ValueError("Message has neither body nor attachment")

        parts = []
        if body.strip():
            parts.append({"ct": "text/plain", "text": body})
        if attachment_ref:
            ct = mimetypes.guess_type(attachment_ref)[0] or "image/jpeg"
            parts.append({"ct": ct, "ref": attachment_ref})

        thread_id = self.provider.thread_id_for(recipients)
        row_id = self.provider.insert_mms(
            thread_id,
            self.clock() // 1000,  # mms dates are seconds
            [(a, ADDR_TO) for a in recipients],
            parts,
            status=DeliveryState.QUEUED.value,
            read=True,
        )
        slot = self._slot(MMS, row_id, 1)
        log.info("Queued %s to %s", slot.token, ";".join(recipients))
        try:
            self.transport.deliver_multimedia(recipients, body, attachment_ref, slot)
        except DeliveryFailed as e:
            log.warning("%s", e)
            slot.confirm(False)
        return row_id

    def resend(
        self,
        message_id: int,
        address: str | None = None,
        body: str | None = None,
        is_multimedia: bool = False,
    ) -> int:
        """Replace a failed message with a fresh send. Returns the new id.

        The failed row is deleted; address and body default to its own.
        """
        table = MMS if is_multimedia else SMS
        rows = self.provider.query(table, {"_id": message_id})
        if not rows:
            raise ValueError(f"No {table} message {message_id}")
        row = rows[0]
        state = DeliveryState.parse(row.get("status"))
        if state is not DeliveryState.FAILED:
            raise ValueError(f"{table} message {message_id} is {state.value}, not failed")

        if not is_multimedia:
            address = address or row.get("address") or ""
            body = body if body is not None else (row.get("body") or "")
            if not body.strip() or not normalize_address(address):
                raise ValueError("Nothing to resend")
            self.provider.delete(SMS, message_id)
            log.info("Resending failed sms:%s", message_id)
            return self.send(address, body)

        recipients = parse_addresses(address) if address else self.provider.recipients(message_id)
        old_body, attachment_ref = extract_content(self.provider.parts(message_id))
        if old_body == CONTENT_UNAVAILABLE:
            old_body = ""
        body = body if body is not None else old_body
        if not recipients or (not body.strip() and not attachment_ref):
            raise ValueError("Nothing to resend")
        self.provider.delete(MMS, message_id)
        log.info("Resending failed mms:%s", message_id)
        return self.send_with_attachment(recipients, body, attachment_ref)

    def _confirm(self, token: str, ok: bool) -> None:
        with self._lock:
            self._slots.pop(token, None)
        table, _, row_id = token.partition(":")
        state = DeliveryState.SENT if ok else DeliveryState.FAILED
        try:
            count = self.provider.update(
                table,
                {"_id": int(row_id), "status": DeliveryState.QUEUED.value},
                {"status": state.value},
            )
        except SourceUnavailable as e:
            log.error("Could not record %s as %s: %s", token, state.value, e)
            return
        if not count:
            log.info("%s no longer queued; ignoring %s", token, state.value)
            return
        log.info("%s %s", token, state.value)
        if self.on_change:
            self.on_change()
