"""Contact resolution: address -> display name and photo."""

from dataclasses import dataclass
from typing import Iterable, Protocol

from .blocks import normalize
from .config import Contact
from .rows import UNKNOWN_NAME, split_participants


@dataclass(frozen=True)
class RecipientInfo:
    raw_address: str
    display_name: str
    photo_ref: str | None = None


class ContactResolver(Protocol):
    def resolve(self, address: str) -> RecipientInfo:
        ...


def _key(address: str) -> str:
    address = address.strip()
    if "@" in address:
        return address.lower()
    return normalize(address)


class ContactBook:
    """Resolver backed by the ``contacts:`` mapping in config.yaml.

    Phone numbers are matched on their normalized form, so "+1 (555) 123"
    and "+1555123" find the same entry. Unknown addresses resolve to
    themselves.
    """

    def __init__(self, contacts: Iterable[Contact] = ()):
        self._by_key: dict[str, Contact] = {}
        for contact in contacts:
            key = _key(contact.address)
            if key:
                self._by_key[key] = contact

    def __len__(self) -> int:
        return len(self._by_key)

    def resolve(self, address: str) -> RecipientInfo:
        contact = self._by_key.get(_key(address))
        if contact:
            return RecipientInfo(address, contact.name, contact.photo)
        return RecipientInfo(address, address, None)


def resolve_recipients(resolver: ContactResolver, raw: str) -> RecipientInfo:
    """Resolve a ';'-separated participant list.

    Names are joined with ", " (duplicates dropped), the first photo found is
    kept, and the raw address is re-joined with ';'.
    """
    inputs = split_participants(raw)
    if not inputs:
        return RecipientInfo("", UNKNOWN_NAME, None)

    names: list[str] = []
    photo = None
    for address in inputs:
        info = resolver.resolve(address)
        if info.display_name not in names:
            names.append(info.display_name)
        if photo is None and info.photo_ref:
            photo = info.photo_ref
    return RecipientInfo(";".join(inputs), ", ".join(names), photo)
