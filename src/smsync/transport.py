"""Outbound transports and delivery confirmation."""

import itertools
import json
import threading
import urllib.error
import urllib.request
from typing import Callable, Protocol

from .errors import DeliveryFailed
from .jobs import JobRunner
from .logutil import get_logger

log = get_logger(__name__)

SEGMENT_SIZE = 160
SPLIT_SEGMENT_SIZE = 153  # room for the concatenation header


def split_segments(body: str) -> list[str]:
    """Split a body into transport segments."""
    if len(body) <= SEGMENT_SIZE:
        return [body]
    return [body[i:i + SPLIT_SEGMENT_SIZE] for i in range(0, len(body), SPLIT_SEGMENT_SIZE)]


class ConfirmationSlot:
    """One-shot delivery confirmation for one logical send.

    A multi-segment send completes when every segment succeeded, or as soon
    as one fails. Only the first outcome reaches ``callback``; anything
    reported after that is ignored.
    """

    def __init__(self, token: str, segments: int, callback: Callable[[str, bool], None]):
        self.token = token
        self.segments = max(1, segments)
        self._callback = callback
        self._lock = threading.Lock()
        self._succeeded = 0
        self._fired = False

    @property
    def fired(self) -> bool:
        with self._lock:
            return self._fired

    def segment_done(self, ok: bool) -> None:
        with self._lock:
            if self._fired:
                return
            if ok:
                self._succeeded += 1
                if self._succeeded < self.segments:
                    return
            self._fired = True
        self._callback(self.token, ok)

    def confirm(self, ok: bool) -> None:
        """Report the outcome of the whole send at once."""
        with self._lock:
            if self._fired:
                return
            self._fired = True
        self._callback(self.token, ok)


class Transport(Protocol):
    def deliver(self, address: str, segments: list[str], slot: ConfirmationSlot) -> None:
        ...

    def deliver_multimedia(
        self,
        addresses: list[str],
        body: str,
        attachment_ref: str | None,
        slot: ConfirmationSlot,
    ) -> None:
        ...


class LoopbackTransport:
    """Confirms every delivery from the job runner without sending anything.

    With ``fail`` set every delivery is reported as failed. Useful for
    local projects and demos.
    """

    def __init__(self, jobs: JobRunner, fail: bool = False, delay: float = 0.0):
        self.jobs = jobs
        self.fail = fail
        self.delay = delay
        self.sent: list[tuple[str, str]] = []
        self._ids = itertools.count(1)

    def _schedule(self, fn: Callable[[], None]) -> None:
        self.jobs.schedule_once(f"loopback-{next(self._ids)}", fn, delay=self.delay)

    def deliver(self, address: str, segments: list[str], slot: ConfirmationSlot) -> None:
        ok = not self.fail
        for segment in segments:
            def done(segment=segment):
                if ok:
                    self.sent.append((address, segment))
                slot.segment_done(ok)
            self._schedule(done)

    def deliver_multimedia(self, addresses, body, attachment_ref, slot) -> None:
        ok = not self.fail

        def done():
            if ok:
                self.sent.append((";".join(addresses), body))
            slot.confirm(ok)
        self._schedule(done)


def http_post_json(url: str, data: dict, bearer: str | None, idem_key: str | None, timeout: float) -> tuple[int | None, bytes]:
    body = json.dumps(data).encode("utf-8")
    req = urllib.request.Request(url=url, data=body, method="POST")
    req.add_header("Content-Type", "application/json")
    if bearer:
        req.add_header("Authorization", f"Bearer {bearer}")
    if idem_key:
        req.add_header("Idempotency-Key", idem_key)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return resp.getcode(), resp.read()
    except urllib.error.HTTPError as e:
        return e.code, e.read() or b""
    except (urllib.error.URLError, OSError) as e:
        return None, str(e).encode("utf-8", errors="ignore")


class HttpGatewayTransport:
    """Posts outbound messages to an SMS gateway as JSON.

    Each logical send is one POST carrying all segments, keyed by the
    confirmation token as the idempotency key; a 2xx response confirms it.

    Posts run one at a time on ``jobs``, so a slow gateway delays later
    sends by up to ``timeout`` each. Give it a runner of its own (see
    ``JobRunner.worker``) so syncs and scheduled sends don't wait behind it.
    """

    def __init__(self, jobs: JobRunner, url: str, token: str | None = None, timeout: float = 10.0):
        if not url:
            raise ValueError("HTTP transport needs a url")
        self.jobs = jobs
        self.url = url
        self.token = token
        self.timeout = timeout

    def _post(self, payload: dict, slot: ConfirmationSlot) -> None:
        def run():
            status, body = http_post_json(self.url, payload, self.token, slot.token, self.timeout)
            ok = status is not None and 200 <= status < 300
            if not ok:
                log.warning("Gateway rejected %s: %s %s", slot.token, status,
                            body[:200].decode("utf-8", errors="replace"))
            slot.confirm(ok)
        self.jobs.schedule_once(f"gateway-{slot.token}", run)

    def deliver(self, address: str, segments: list[str], slot: ConfirmationSlot) -> None:
        if not address:
            raise DeliveryFailed(slot.token, "no address")
        self._post({"to": [address], "segments": segments}, slot)

    def deliver_multimedia(self, addresses, body, attachment_ref, slot) -> None:
        if not addresses:
            raise DeliveryFailed(slot.token, "no address")
        self._post({"to": list(addresses), "body": body, "attachment": attachment_ref}, slot)
