"""Callback registries with explicit subscription handles."""

import threading
from typing import Callable, Generic, TypeVar

from .logutil import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class Subscription:
    """Handle returned by subscribe(); close() stops delivery."""

    def __init__(self, listeners: "Listeners", callback: Callable):
        self._listeners = listeners
        self._callback = callback
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._listeners._remove(self._callback)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class Listeners(Generic[T]):
    """Thread-safe set of callbacks.

    Callbacks run in the emitting thread. A failing callback is logged and
    does not stop delivery to the others.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        with self._lock:
            self._callbacks.append(callback)
        return Subscription(self, callback)

    def _remove(self, callback: Callable) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def emit(self, value: T) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(value)
            except Exception:
                log.exception("%s listener %r failed", self.name, callback)
