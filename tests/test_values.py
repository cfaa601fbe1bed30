# tests/test_values.py
"""
Tests for semantic type tags and content hashing.
"""

from datetime import date, datetime

import pytest

from convocore.models import Message, Part
from convocore.utils import content_hash, semantic_type


class TestSemanticType:
    """semantic_type tags."""

    @pytest.mark.parametrize("value, expected", [
        (None, "null"),
        (True, "boolean"),
        (0, "number"),
        (1.5, "number"),
        ("x", "string"),
        (b"x", "bytes"),
        ([1], "array"),
        ((1,), "array"),
        ({"a": 1}, "object"),
        (Part(text="x"), "object"),
        ({1, 2}, "set"),
        (date(2024, 1, 1), "date"),
        (datetime(2024, 1, 1), "date"),
        (len, "function"),
    ])
    def test_tags(self, value, expected):
        """Values map to their coarse type tag."""
        assert semantic_type(value) == expected

    def test_bool_is_not_number(self):
        """Booleans are never numbers even though bool subclasses int."""
        assert semantic_type(False) != semantic_type(0)


class TestContentHash:
    """content_hash determinism and sensitivity."""

    def test_hex_digest(self):
        """Digests are 64-character SHA-256 hex strings."""
        digest = content_hash("hello")
        assert len(digest) == 64
        int(digest, 16)

    def test_key_order_does_not_matter(self):
        """Structurally equal mappings hash identically."""
        assert content_hash({"a": 1, "b": [1, 2]}) == content_hash({"b": [1, 2], "a": 1})

    def test_integral_float_equals_int(self):
        """1 and 1.0 are the same number."""
        assert content_hash(1) == content_hash(1.0)

    def test_type_is_part_of_digest(self):
        """A string and a number with the same rendering differ."""
        assert content_hash("1") != content_hash(1)
        assert content_hash(True) != content_hash(1)

    def test_message_matches_wire_dict(self):
        """A Message hashes like its wire-format dict."""
        message = Message(role="user", parts=[Part(text="hi")])
        assert content_hash(message) == content_hash({"role": "user", "parts": [{"text": "hi"}]})

    def test_content_change_changes_digest(self):
        """Any content change alters the digest."""
        first = Message(role="user", parts=[Part(text="hi")])
        second = Message(role="user", parts=[Part(text="hi!")])
        assert content_hash(first) != content_hash(second)

    def test_sets_are_order_independent(self):
        """Set iteration order does not affect the digest."""
        assert content_hash({"b", "a", "c"}) == content_hash({"c", "b", "a"})

    def test_non_string_keys_are_distinct(self):
        """A number key and its string rendering hash differently."""
        assert content_hash({1: "a"}) != content_hash({"1": "a"})
        assert content_hash({True: "a"}) != content_hash({"true": "a"})
        assert content_hash({1: "a"}) == content_hash({1.0: "a"})

    @pytest.mark.parametrize("value, lookalike", [
        ({"x"}, {"__set__": ["x"]}),
        (b"a", {"__bytes__": "YQ=="}),
        (date(2024, 1, 2), {"__date__": "2024-01-02"}),
    ])
    def test_wrapper_lookalikes_are_distinct(self, value, lookalike):
        """A mapping shaped like an internal wrapper does not collide with the wrapped value."""
        assert content_hash([value]) != content_hash([lookalike])
        assert content_hash({"v": value}) != content_hash({"v": lookalike})

    def test_escape_prefix_is_escaped(self):
        """String keys that start with the escape character stay distinct from tagged keys."""
        assert content_hash({"\x00number:1": "a"}) != content_hash({1: "a"})
        assert content_hash({"\x00__set__": 1}) != content_hash({"__set__": 1})
