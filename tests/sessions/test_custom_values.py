# tests/sessions/test_custom_values.py
"""
Tests for schema-guarded custom values.
"""

from unittest.mock import MagicMock

import pytest

from convocore.events import StoreEvent
from convocore.exceptions import (
    CustomValueNameConflict,
    CustomValueNotRegistered,
    CustomValueTypeConflict,
    InvalidArgumentType,
    InvalidSessionReference,
)
from convocore.models import CustomValueDescriptor
from convocore.sessions.custom_values import RESERVED_NAMES, CustomValueRegistry, validate_token_amount
from convocore.utils import content_hash


class TestSetCustomValue:
    """Setting values and the recorded schema."""

    def test_first_set_records_type(self, store):
        """The first value fixes the semantic type."""
        store.set_custom_value("mood", "calm")
        assert store.get_custom_value("mood") == "calm"
        assert store.get_custom_value_list() == [CustomValueDescriptor(name="mood", type="string")]

    def test_type_conflict(self, store):
        """A later value of a different type is refused and the old value kept."""
        store.set_custom_value("level", 3)
        store.set_custom_value("level", 4.5)
        with pytest.raises(CustomValueTypeConflict) as exc_info:
            store.set_custom_value("level", "high")
        assert exc_info.value.recorded_type == "number"
        assert exc_info.value.new_type == "string"
        assert store.get_custom_value("level") == 4.5

    def test_hash_and_tokens(self, store):
        """Custom values are tracked like the built-in fields."""
        store.set_custom_value("profile", {"name": "Ada"}, 12)
        assert store.get_hash("profile") == content_hash({"name": "Ada"})
        assert store.get_tokens("profile") == 12

    def test_token_amount_kept_when_omitted(self, store):
        """Setting without a token amount leaves the previous count."""
        store.set_custom_value("mood", "calm", 2)
        store.set_custom_value("mood", "tense")
        assert store.get_tokens("mood") == 2

    def test_publishes_named_event(self, store):
        """Each custom value has its own set<Name> event."""
        listener = MagicMock()
        store.notifier.on("setMood", listener)
        store.set_custom_value("mood", "calm")
        listener.assert_called_once_with("calm", "chat")

    def test_registration_order(self, store):
        """The descriptor list follows registration order."""
        store.set_custom_value("b", 1)
        store.set_custom_value("a", True)
        assert [d.name for d in store.get_custom_value_list()] == ["b", "a"]

    @pytest.mark.parametrize("name", ["temperature", "systemInstruction", "system_instruction", "prompt", "file"])
    def test_reserved_names(self, store, name):
        """Names of built-in fields are refused."""
        assert name in RESERVED_NAMES
        with pytest.raises(CustomValueNameConflict):
            store.set_custom_value(name, "x")

    @pytest.mark.parametrize("name", ["Prompt", "Model", "TopK", "FileData", "EnhancedCivicAnswers"])
    def test_names_shadowing_store_events(self, store, name):
        """Names whose set<Name> event is already published by the store are refused."""
        prompt_listener = MagicMock()
        store.notifier.on(StoreEvent.SET_PROMPT, prompt_listener)
        with pytest.raises(CustomValueNameConflict):
            store.set_custom_value(name, 42)
        prompt_listener.assert_not_called()
        assert store.get_custom_value_list() == []

    @pytest.mark.parametrize("name", ["", None, 5])
    def test_invalid_names(self, store, name):
        """Names must be non-empty strings."""
        with pytest.raises(InvalidArgumentType):
            store.set_custom_value(name, "x")

    def test_invalid_token_amount(self, store):
        """Token amounts must be finite numbers."""
        with pytest.raises(InvalidArgumentType):
            store.set_custom_value("mood", "calm", "many")
        assert store.get_custom_value_list() == []

    def test_missing_session(self, store):
        """Custom value mutations need an existing session."""
        with pytest.raises(InvalidSessionReference):
            store.set_custom_value("mood", "calm", session_id="ghost")
        assert store.get_custom_value("mood", session_id="ghost") is None
        assert store.get_custom_value_list(session_id="ghost") == []


class TestResetAndErase:
    """Clearing custom values."""

    def test_reset_keeps_descriptor(self, store):
        """reset clears value, hash and tokens but keeps the schema."""
        store.set_custom_value("mood", "calm", 3)
        listener = MagicMock()
        store.notifier.on("setMood", listener)

        store.reset_custom_value("mood")
        assert store.get_custom_value("mood") is None
        assert store.get_tokens("mood") is None
        assert store.get_hash("mood") is None
        assert [d.name for d in store.get_custom_value_list()] == ["mood"]
        listener.assert_called_once_with(None, "chat")

        with pytest.raises(CustomValueTypeConflict):
            store.set_custom_value("mood", 1)

    def test_set_none_resets(self, store):
        """Setting None behaves like reset."""
        store.set_custom_value("mood", "calm")
        store.set_custom_value("mood", None)
        assert store.get_custom_value("mood") is None
        assert len(store.get_custom_value_list()) == 1

    def test_erase_drops_descriptor(self, store):
        """erase removes the schema so another type can be used."""
        store.set_custom_value("mood", "calm")
        store.erase_custom_value("mood")
        assert store.get_custom_value_list() == []
        store.set_custom_value("mood", 7)
        assert store.get_custom_value("mood") == 7

    def test_unknown_name(self, store):
        """Resetting or erasing an unregistered name raises."""
        with pytest.raises(CustomValueNotRegistered):
            store.reset_custom_value("nope")
        with pytest.raises(CustomValueNotRegistered):
            store.erase_custom_value("nope")


class TestRegistryDirect:
    """CustomValueRegistry without a store."""

    def test_works_without_notifier(self, store):
        """The registry can operate on a bare session."""
        registry = CustomValueRegistry(store.get_session())
        registry.set("flag", False)
        assert registry.get("flag") is False
        assert registry.list() == [CustomValueDescriptor(name="flag", type="boolean")]

    def test_validate_token_amount(self):
        """None and finite numbers pass; everything else fails."""
        assert validate_token_amount(None) is None
        assert validate_token_amount(3) == 3
        for bad in (True, float("inf"), "3"):
            with pytest.raises(InvalidArgumentType):
                validate_token_amount(bad)
