"""Blocked-number registry, persisted as a sorted text manifest."""

import threading
from pathlib import Path
from typing import Iterable


def normalize(number: str) -> str:
    """Keep only digits and '+'. Idempotent; the sole key for membership."""
    return "".join(c for c in (number or "") if c.isdigit() or c == "+")


def read_block_list(path: str | Path) -> list[str]:
    """Read an external block list: one number per line, '#' comments."""
    numbers = []
    with open(path) as f:
        for line in f:
            line = line.split("#", 1)[0].strip()
            if line:
                numbers.append(line)
    return numbers


class BlockRegistry:
    """Set of normalized numbers stored one per line (sorted for stable diffs)."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._numbers = self._load()

    def _load(self) -> set[str]:
        if not self.path.exists():
            return set()
        numbers = set()
        with open(self.path) as f:
            for line in f:
                number = normalize(line.strip())
                if number:
                    numbers.add(number)
        return numbers

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w") as f:
            for number in sorted(self._numbers):
                f.write(f"{number}\n")
        tmp.replace(self.path)

    def reload(self) -> None:
        with self._lock:
            self._numbers = self._load()

    def block(self, number: str) -> bool:
        """Block a number. Returns True if it was newly added."""
        key = normalize(number)
        if not key:
            raise ValueError(f"Not a phone number: {number!r}")
        with self._lock:
            if key in self._numbers:
                return False
            self._numbers.add(key)
            self._save()
        return True

    def unblock(self, number: str) -> bool:
        """Unblock a number. Returns True if it was blocked."""
        key = normalize(number)
        with self._lock:
            if key not in self._numbers:
                return False
            self._numbers.discard(key)
            self._save()
        return True

    def is_blocked(self, number: str) -> bool:
        key = normalize(number)
        with self._lock:
            return bool(key) and key in self._numbers

    def list(self) -> list[str]:
        with self._lock:
            return sorted(self._numbers)

    def snapshot(self) -> frozenset[str]:
        """Point-in-time copy for one merge cycle."""
        with self._lock:
            return frozenset(self._numbers)

    def import_external(self, numbers: Iterable[str]) -> int:
        """Add numbers from an external block list. Returns how many were new."""
        added = 0
        with self._lock:
            for number in numbers:
                key = normalize(number)
                if key and key not in self._numbers:
                    self._numbers.add(key)
                    added += 1
            if added:
                self._save()
        return added

    def block_conversation(self, raw_address: str) -> int:
        """Block every participant of a ';'-joined address. Returns how many were new."""
        return self.import_external(raw_address.split(";"))
