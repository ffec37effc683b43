"""Shared fixtures: a throwaway message store and helpers to fill it."""

import pytest

from smsync.blocks import BlockRegistry
from smsync.jobs import JobRunner
from smsync.metadata import MetadataStore
from smsync.provider import ADDR_FROM, ADDR_TO, SMS, SqliteProvider


class Seeder:
    """Writes rows straight into a provider, as the platform would."""

    def __init__(self, provider: SqliteProvider):
        self.provider = provider

    def sms(self, thread_id, date, address="+15551234", body="hi", read=True, status="received"):
        return self.provider.insert(SMS, {
            "thread_id": thread_id,
            "address": address,
            "body": body,
            "date": date,
            "read": int(read),
            "status": status,
        })

    def mms(
        self,
        thread_id,
        date,
        addresses=("+15551234",),
        text=None,
        subject=None,
        image=None,
        read=True,
        status="received",
    ):
        parts = [{"ct": "application/smil", "text": "<smil/>"}]
        if text is not None:
            parts.append({"ct": "text/plain", "text": text})
        if image is not None:
            parts.append({"ct": "image/jpeg", "ref": image})
        addrs = [(a, ADDR_FROM if i == 0 else ADDR_TO) for i, a in enumerate(addresses)]
        return self.provider.insert_mms(
            thread_id, date, addrs, parts, subject=subject, status=status, read=read,
        )


@pytest.fixture
def provider(tmp_path):
    with SqliteProvider(tmp_path / "provider.db") as p:
        yield p


@pytest.fixture
def seed(provider):
    return Seeder(provider)


@pytest.fixture
def metadata(tmp_path):
    with MetadataStore(tmp_path / "state.db") as store:
        yield store


@pytest.fixture
def blocks(tmp_path):
    return BlockRegistry(tmp_path / "blocked.txt")


@pytest.fixture
def jobs():
    runner = JobRunner()
    yield runner
    runner.shutdown()
