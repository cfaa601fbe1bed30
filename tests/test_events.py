# tests/test_events.py
"""
Tests for EventChannel and ChangeNotifier.
"""

import logging
from unittest.mock import MagicMock

import pytest

from convocore.events import ChangeNotifier, EventChannel, StoreEvent, custom_value_event
from convocore.exceptions import InternalChannelUnavailable


class TestCustomValueEvent:
    """Event names of custom values."""

    def test_capitalizes_first_letter(self):
        """The name is prefixed with 'set' and capitalized."""
        assert custom_value_event("mood") == "setMood"
        assert custom_value_event("userLevel") == "setUserLevel"


class TestEventChannel:
    """The public emitter surface."""

    def test_on_and_emit(self):
        """Listeners receive the emitted arguments."""
        channel = EventChannel()
        listener = MagicMock()
        channel.on("ping", listener)
        assert channel.emit("ping", 1, "a") is True
        listener.assert_called_once_with(1, "a")

    def test_emit_without_listeners(self):
        """Emitting an event nobody listens to returns False."""
        assert EventChannel().emit("ping") is False

    def test_store_event_and_string_are_the_same_event(self):
        """Enum members and their string values address the same listeners."""
        channel = EventChannel()
        listener = MagicMock()
        channel.on(StoreEvent.ENTRY_ADDED, listener)
        channel.emit("entryAdded", 0)
        listener.assert_called_once_with(0)

    def test_registration_order(self):
        """Listeners run in order; prepend puts a listener first."""
        channel = EventChannel()
        order = []
        channel.on("e", lambda: order.append("second"))
        channel.prepend_listener("e", lambda: order.append("first"))
        channel.emit("e")
        assert order == ["first", "second"]

    def test_once(self):
        """once listeners run a single time."""
        channel = EventChannel()
        listener = MagicMock()
        channel.once("e", listener)
        channel.emit("e")
        channel.emit("e")
        listener.assert_called_once_with()
        assert channel.listener_count("e") == 0

    def test_prepend_once(self):
        """prepend_once_listener runs first and only once."""
        channel = EventChannel()
        order = []
        channel.on("e", lambda: order.append("b"))
        channel.prepend_once_listener("e", lambda: order.append("a"))
        channel.emit("e")
        channel.emit("e")
        assert order == ["a", "b", "b"]

    def test_off_removes_once_listener_by_original(self):
        """A once listener can be removed with the callable that was registered."""
        channel = EventChannel()
        listener = MagicMock()
        channel.once("e", listener)
        channel.off("e", listener)
        channel.emit("e")
        listener.assert_not_called()

    def test_off_removes_last_registration(self):
        """off removes one registration, the most recent."""
        channel = EventChannel()
        listener = MagicMock()
        channel.on("e", listener).on("e", listener)
        channel.remove_listener("e", listener)
        assert channel.listener_count("e", listener) == 1

    def test_remove_all_listeners(self):
        """remove_all_listeners clears one event or all of them."""
        channel = EventChannel()
        channel.on("a", MagicMock()).on("b", MagicMock())
        channel.remove_all_listeners("a")
        assert channel.event_names() == ["b"]
        channel.remove_all_listeners()
        assert channel.event_names() == []

    def test_listeners_unwraps_once(self):
        """listeners() returns the original callables, raw_listeners() the wrappers."""
        channel = EventChannel()
        listener = MagicMock()
        channel.once("e", listener)
        assert channel.listeners("e") == [listener]
        assert channel.raw_listeners("e")[0] is not listener

    def test_non_callable_listener_rejected(self):
        """Registering a non-callable raises TypeError."""
        with pytest.raises(TypeError):
            EventChannel().on("e", "not callable")

    def test_listener_exceptions_propagate(self):
        """A failing listener surfaces to the emitter."""
        channel = EventChannel()
        channel.on("e", MagicMock(side_effect=RuntimeError("boom")))
        with pytest.raises(RuntimeError):
            channel.emit("e")

    def test_max_listeners_warning(self, caplog):
        """Exceeding max listeners logs a warning but still registers."""
        channel = EventChannel(max_listeners=1)
        with caplog.at_level(logging.WARNING, logger="convocore.events"):
            channel.on("e", MagicMock()).on("e", MagicMock())
        assert channel.listener_count("e") == 2
        assert "Possible listener leak" in caplog.text

    def test_max_listeners_zero_disables_warning(self, caplog):
        """A limit of 0 never warns."""
        channel = EventChannel().set_max_listeners(0)
        with caplog.at_level(logging.WARNING, logger="convocore.events"):
            for _ in range(20):
                channel.on("e", MagicMock())
        assert "Possible listener leak" not in caplog.text
        assert channel.get_max_listeners() == 0

    def test_set_max_listeners_validation(self):
        """Negative or non-integer limits are rejected."""
        with pytest.raises(ValueError):
            EventChannel().set_max_listeners(-1)
        with pytest.raises(ValueError):
            EventChannel().set_max_listeners(True)


class TestChangeNotifier:
    """The two-surface notification bus."""

    def test_publish_reaches_public_listeners(self, notifier):
        """publish delivers to the public surface."""
        listener = MagicMock()
        notifier.on("setModel", listener)
        notifier.publish("setModel", "m", "chat")
        listener.assert_called_once_with("m", "chat")

    def test_internal_channel_only_after_acquire(self, notifier):
        """The internal channel receives published events once acquired."""
        internal = notifier.acquire_internal_channel()
        listener = MagicMock()
        internal.on("setModel", listener)
        notifier.publish("setModel", "m", "chat")
        listener.assert_called_once_with("m", "chat")
        assert notifier.internal_channel_acquired

    def test_internal_channel_single_acquisition(self, notifier):
        """A second acquisition is refused and logged."""
        notifier.acquire_internal_channel()
        with pytest.raises(InternalChannelUnavailable):
            notifier.acquire_internal_channel()

    def test_surfaces_are_isolated(self, notifier):
        """Public emit does not reach the internal channel and vice versa."""
        internal = notifier.acquire_internal_channel()
        internal_listener = MagicMock()
        public_listener = MagicMock()
        internal.on("e", internal_listener)
        notifier.on("e", public_listener)

        notifier.emit("e")
        internal_listener.assert_not_called()
        internal.emit("e")
        public_listener.assert_called_once_with()

    def test_close_clears_both_surfaces(self, notifier):
        """close drops every listener."""
        internal = notifier.acquire_internal_channel()
        notifier.on("e", MagicMock())
        internal.on("e", MagicMock())
        notifier.close()
        assert notifier.listener_count("e") == 0
        assert internal.listener_count("e") == 0
