"""Tests for the merge of text and multimedia rows into conversations."""

import pytest

from smsync.config import Contact
from smsync.contacts import ContactBook
from smsync.errors import SourceUnavailable
from smsync.merge import MergeEngine, is_blocked, latest_per_thread, merge
from smsync.provider import MMS, SMS
from smsync.rows import PLACEHOLDER_ADDRESS, PLACEHOLDER_NAME, mms_row, text_row


def sms(id, thread, date, address="+1555", body="text", read=True):
    return text_row({"_id": id, "thread_id": thread, "date": date, "address": address, "body": body, "read": int(read)})


def mms(id, thread, date, address="", body="picture", subject=None, read=True):
    return mms_row({"_id": id, "thread_id": thread, "date": date, "subject": subject, "read": int(read)},
                   address=address, body=body)


class TestMerge:
    def test_one_conversation_per_thread(self):
        result = merge(
            [sms(3, 1, 300), sms(2, 1, 200), sms(1, 2, 100)],
            [mms(1, 1, 150), mms(2, 3, 50)],
            set(), set(),
        )
        assert sorted(c.thread_id for c in result) == [1, 2, 3]

    def test_latest_row_wins(self):
        result = merge([sms(1, 1, 100, body="old text")], [mms(1, 1, 95000, body="new pic")], set(), set())
        [c] = result
        assert c.last_activity_at == 95_000_000
        assert c.snippet == "new pic"

    def test_text_ms_vs_mms_seconds(self):
        """Multimedia seconds are scaled before comparing with text milliseconds."""
        [c] = merge([sms(1, 1, 100, address="555")], [mms(9, 1, 95000)], set(), set())
        assert c.last_activity_at == 95_000_000
        assert c.raw_address == "555"

    def test_text_newer_than_mms(self):
        [c] = merge([sms(1, 1, 2_000_000_000_000, body="later")], [mms(1, 1, 1_000_000_000)], set(), set())
        assert c.snippet == "later"
        assert c.last_activity_at == 2_000_000_000_000

    def test_read_state_from_latest(self):
        [c] = merge([sms(1, 1, 100, read=True)], [mms(1, 1, 95000, read=False)], set(), set())
        assert not c.is_read

    def test_identity_prefers_real_address(self):
        [c] = merge(
            [sms(1, 1, 100, address="+1555")],
            [mms(1, 1, 95000, address=PLACEHOLDER_ADDRESS)],
            set(), set(),
        )
        assert c.raw_address == "+1555"
        assert c.snippet == "picture"

    def test_placeholder_identity(self):
        [c] = merge([], [mms(1, 7, 95000, address="")], set(), set())
        assert c.raw_address == PLACEHOLDER_ADDRESS
        assert c.display_name == PLACEHOLDER_NAME

    def test_subject_is_snippet(self):
        [c] = merge([], [mms(1, 7, 95000, address="+1", body="", subject="Trip")], set(), set())
        assert c.snippet == "Trip"

    def test_blocked_thread_dropped(self):
        rows = [sms(1, 1, 100, address="+1 (555) 000"), sms(2, 2, 50, address="+1666")]
        result = merge(rows, [], set(), {"+1555000"})
        assert [c.thread_id for c in result] == [2]

    def test_any_participant_blocks(self):
        result = merge([], [mms(1, 1, 100, address="+1111;+1222")], set(), {"+1222"})
        assert result == []

    def test_unblock_restores(self):
        rows = [sms(1, 1, 100, address="+1555")]
        assert merge(rows, [], set(), {"+1555"}) == []
        assert len(merge(rows, [], set(), set())) == 1

    def test_sort_pinned_then_recent(self):
        result = merge(
            [sms(1, 1, 300), sms(2, 2, 200), sms(3, 3, 100)],
            [], {3}, set(),
        )
        assert [c.thread_id for c in result] == [3, 1, 2]
        assert result[0].is_pinned
        assert not result[1].is_pinned

    def test_resolver(self):
        book = ContactBook([Contact("+1555", "Alice", "a.jpg")])
        [c] = merge([sms(1, 1, 100, address="+1555")], [], set(), set(), book)
        assert c.display_name == "Alice"
        assert c.photo_ref == "a.jpg"

    def test_resolver_keeps_formatted_number_whole(self):
        rows = [sms(1, 1, 100, address="+1 555 123 4567")]
        [c] = merge(rows, [], set(), set(), ContactBook())
        assert c.raw_address == "+1 555 123 4567"
        assert c.display_name == "+1 555 123 4567"

    def test_blocked_formatted_number_with_resolver(self):
        book = ContactBook([Contact("+15551234567", "Alice")])
        rows = [sms(1, 1, 100, address="+1 555 123 4567"), sms(2, 2, 50, address="+1666")]
        result = merge(rows, [], set(), {"+15551234567"}, book)
        assert [c.thread_id for c in result] == [2]

    def test_latest_per_thread(self):
        rows = [sms(3, 1, 300), sms(2, 2, 200), sms(1, 1, 100)]
        assert [r.id for r in latest_per_thread(rows)] == [3, 2]

    def test_is_blocked(self):
        assert is_blocked("+1;+2", frozenset({"+2"}))
        assert not is_blocked(PLACEHOLDER_ADDRESS, frozenset({""}))


class FailingProvider:
    """Delegates to a real provider but fails queries on some tables."""

    def __init__(self, provider, failing):
        self.provider = provider
        self.failing = set(failing)

    def query(self, table, *args, **kwargs):
        if table in self.failing:
            raise SourceUnavailable("query", table)
        return self.provider.query(table, *args, **kwargs)

    def __getattr__(self, name):
        return getattr(self.provider, name)


class TestMergeEngine:
    @pytest.fixture
    def engine(self, provider, blocks, metadata):
        return MergeEngine(provider, blocks, metadata)

    def test_run(self, engine, seed):
        seed.sms(1, 1_000, address="+1555", body="first")
        seed.sms(1, 2_000, address="+1555", body="second")
        seed.mms(2, 5, addresses=["+1666", "+1777"], text="pic caption")
        result = engine.run()
        assert not result.failed_tables
        by_thread = {c.thread_id: c for c in result.conversations}
        assert by_thread[1].snippet == "second"
        assert by_thread[2].snippet == "pic caption"
        assert by_thread[2].raw_address == "+1666;+1777"
        assert by_thread[2].last_activity_at == 5_000

    def test_mms_address_token_skipped(self, engine, seed):
        seed.mms(1, 5, addresses=["insert-address-token", "+1666"], text="x")
        [c] = engine.run().conversations
        assert c.raw_address == "+1666"

    def test_mms_without_participants(self, engine, seed):
        seed.mms(1, 5, addresses=[], text="x")
        [c] = engine.run().conversations
        assert c.raw_address == PLACEHOLDER_ADDRESS
        assert c.display_name == PLACEHOLDER_NAME

    def test_mms_without_content(self, engine, seed):
        seed.mms(1, 5)
        [c] = engine.run().conversations
        assert c.snippet == "Multimedia Message (content unavailable)"

    def test_pins_and_blocks(self, engine, seed, blocks, metadata):
        seed.sms(1, 3_000, address="+1555")
        seed.sms(2, 2_000, address="+1666")
        seed.sms(3, 1_000, address="+1777")
        metadata.set_pinned(3, True)
        blocks.block("+1 666")
        result = engine.run()
        assert [c.thread_id for c in result.conversations] == [3, 1]

    def test_recency_window(self, provider, blocks, metadata, seed):
        for i in range(5):
            seed.sms(i + 1, 1_000 + i, address=f"+{i}")
        engine = MergeEngine(provider, blocks, metadata, recency_window=3)
        assert sorted(c.thread_id for c in engine.run().conversations) == [3, 4, 5]

    def test_recency_window_mms_mixed_units(self, provider, blocks, metadata, seed):
        seed.mms(1, 1_700_000_000_000, text="older, ms")
        seed.mms(2, 1_800_000_000, text="newer, seconds", addresses=("+1666",))
        engine = MergeEngine(provider, blocks, metadata, recency_window=1)
        [c] = engine.run().conversations
        assert c.thread_id == 2
        assert c.snippet == "newer, seconds"

    def test_order_by_normalized_date(self, provider, seed):
        old = seed.mms(1, 1_700_000_000_000)
        new = seed.mms(1, 1_800_000_000)
        rows = provider.query(MMS, order="normalized_date DESC")
        assert [r["_id"] for r in rows] == [new, old]
        assert [r["date"] for r in rows] == [1_800_000_000, 1_700_000_000_000]

    def test_malformed_row_skipped(self, provider, blocks, metadata, seed):
        seed.sms(1, 1_000)

        class Wrapped(FailingProvider):
            def query(self, table, *args, **kwargs):
                rows = self.provider.query(table, *args, **kwargs)
                if table == SMS:
                    rows.append({"thread_id": 9, "date": 5})
                return rows

        engine = MergeEngine(Wrapped(provider, []), blocks, metadata)
        result = engine.run()
        assert [c.thread_id for c in result.conversations] == [1]

    def test_partial_failure(self, provider, blocks, metadata, seed):
        seed.sms(1, 1_000)
        seed.mms(2, 5, text="x")
        engine = MergeEngine(FailingProvider(provider, [MMS]), blocks, metadata)
        result = engine.run()
        assert result.failed_tables == [MMS]
        assert not result.complete_failure
        assert [c.thread_id for c in result.conversations] == [1]

    def test_complete_failure(self, provider, blocks, metadata):
        engine = MergeEngine(FailingProvider(provider, [SMS, MMS]), blocks, metadata)
        result = engine.run()
        assert result.complete_failure
        assert result.conversations == []
