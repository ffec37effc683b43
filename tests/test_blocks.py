"""Tests for the block registry and contact resolution."""

import pytest

from smsync.blocks import BlockRegistry, normalize, read_block_list
from smsync.config import Contact
from smsync.contacts import ContactBook, resolve_recipients


class TestNormalize:
    @pytest.mark.parametrize("raw, expected", [
        ("+1 (555) 123-4567", "+15551234567"),
        ("555.123.4567", "5551234567"),
        ("abc", ""),
        ("", ""),
        (None, ""),
    ])
    def test_normalize(self, raw, expected):
        assert normalize(raw) == expected

    @pytest.mark.parametrize("raw", ["+1 (555) 123-4567", "tel:555-0000", "++1--2"])
    def test_idempotent(self, raw):
        assert normalize(normalize(raw)) == normalize(raw)


class TestBlockRegistry:
    def test_block_normalizes(self, blocks):
        assert blocks.block("+1 (555) 123-4567")
        assert blocks.is_blocked("+15551234567")
        assert blocks.is_blocked("+1-555-123-4567")
        assert blocks.list() == ["+15551234567"]

    def test_block_twice(self, blocks):
        assert blocks.block("555")
        assert not blocks.block("5-5-5")

    def test_block_empty(self, blocks):
        with pytest.raises(ValueError):
            blocks.block("no digits")

    def test_unblock(self, blocks):
        blocks.block("555")
        assert blocks.unblock("(555)")
        assert not blocks.is_blocked("555")
        assert not blocks.unblock("555")

    def test_persisted_sorted(self, tmp_path):
        path = tmp_path / "blocked.txt"
        registry = BlockRegistry(path)
        registry.block("+3")
        registry.block("+1")
        registry.block("+2")
        assert path.read_text() == "+1\n+2\n+3\n"
        assert BlockRegistry(path).list() == ["+1", "+2", "+3"]

    def test_snapshot_is_frozen(self, blocks):
        blocks.block("1")
        snap = blocks.snapshot()
        blocks.block("2")
        assert snap == frozenset({"1"})

    def test_import_external(self, blocks):
        blocks.block("+1555")
        added = blocks.import_external(["+1 555", "+1 666", "(777)", "", "none"])
        assert added == 2
        assert blocks.list() == ["+1555", "+1666", "777"]

    def test_block_conversation(self, blocks):
        assert blocks.block_conversation("+1;+2; +3") == 3
        assert blocks.block_conversation("+1") == 0

    def test_read_block_list(self, tmp_path):
        path = tmp_path / "list.txt"
        path.write_text("# spam\n+1 555 0000\n\n+1 555 0001  # robocall\n")
        assert read_block_list(path) == ["+1 555 0000", "+1 555 0001"]


class TestContacts:
    @pytest.fixture
    def book(self):
        return ContactBook([
            Contact("+1 (555) 123-4567", "Alice", "photos/alice.jpg"),
            Contact("+15559999", "Bob"),
            Contact("Carol@Example.com", "Carol"),
        ])

    def test_resolve_normalized(self, book):
        info = book.resolve("+15551234567")
        assert info.display_name == "Alice"
        assert info.photo_ref == "photos/alice.jpg"

    def test_resolve_email_case(self, book):
        assert book.resolve("carol@example.com").display_name == "Carol"

    def test_unknown(self, book):
        info = book.resolve("+1000")
        assert info.display_name == "+1000"
        assert info.photo_ref is None

    def test_recipients(self, book):
        info = resolve_recipients(book, "+15559999;+15551234567;+15559999")
        assert info.raw_address == "+15559999;+15551234567;+15559999"
        assert info.display_name == "Bob, Alice"
        assert info.photo_ref == "photos/alice.jpg"

    def test_recipients_empty(self, book):
        info = resolve_recipients(book, " ; ")
        assert info.raw_address == ""
        assert info.display_name == "Unknown"

    def test_recipients_keep_spaced_numbers(self, book):
        info = resolve_recipients(book, "+1 555 123 4567; +1 555 9999")
        assert info.raw_address == "+1 555 123 4567;+1 555 9999"
        assert info.display_name == "Alice, Bob"
