# src/convocore/events.py
"""
Change notification for ConvoCore.

Every mutating operation on the session store, the custom value registry
and the model registry publishes a named event through a single
``ChangeNotifier``. The notifier has two surfaces:

- a public publish/subscribe surface (``on``, ``once``, ``off``, ``emit``...)
  for application code;
- an internal channel, handed out exactly once through
  ``acquire_internal_channel()``, for a component that composes or extends
  the core and needs to observe mutations without sharing (or being
  disturbed by) the public listeners. Every later request raises
  ``InternalChannelUnavailable``.

Listeners run synchronously, in registration order, on the thread that
performed the mutation. Exceptions raised by a listener propagate to the
caller of the mutating operation.

Usage:
    notifier = ChangeNotifier()
    notifier.on(StoreEvent.ENTRY_ADDED, lambda msg_id, message, tokens, digest, sid: ...)
    internal = notifier.acquire_internal_channel()
    internal.on("setTemperature", on_temperature)
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Union

from .exceptions import InternalChannelUnavailable

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]
EventName = Union[str, "StoreEvent"]

DEFAULT_MAX_LISTENERS = 10


class StoreEvent(str, Enum):
    """Names of the events published by the core."""

    # Session lifecycle
    SESSION_STARTED = "sessionStarted"
    SESSION_STOPPED = "sessionStopped"
    SESSION_SELECTED = "sessionSelected"

    # History entries
    ENTRY_ADDED = "entryAdded"
    ENTRY_REPLACED = "entryReplaced"
    ENTRY_DELETED = "entryDeleted"

    # Model catalog
    MODEL_INSERTED = "modelInserted"

    # Scalar setters
    SET_MODEL = "setModel"
    SET_SYSTEM_INSTRUCTION = "setSystemInstruction"
    SET_PROMPT = "setPrompt"
    SET_FIRST_DIALOGUE = "setFirstDialogue"
    SET_FILE_DATA = "setFileData"
    SET_MAX_OUTPUT_TOKENS = "setMaxOutputTokens"
    SET_TEMPERATURE = "setTemperature"
    SET_TOP_P = "setTopP"
    SET_TOP_K = "setTopK"
    SET_PRESENCE_PENALTY = "setPresencePenalty"
    SET_FREQUENCY_PENALTY = "setFrequencyPenalty"
    SET_ENHANCED_CIVIC_ANSWERS = "setEnhancedCivicAnswers"


def custom_value_event(name: str) -> str:
    """Event name published when the custom value ``name`` changes (``set<Name>``)."""
    if not name:
        return "set"
    return f"set{name[0].upper()}{name[1:]}"


def _event_key(event: EventName) -> str:
    return event.value if isinstance(event, StoreEvent) else str(event)


class _OnceWrapper:
    """Wraps a one-shot listener so ``off`` can still find it by the original callable."""

    def __init__(self, channel: "EventChannel", event: str, listener: Listener):
        self.channel = channel
        self.event = event
        self.listener = listener

    def __call__(self, *args: Any) -> Any:
        self.channel.off(self.event, self)
        return self.listener(*args)


class EventChannel:
    """
    A minimal synchronous event emitter.

    Mirrors the familiar emitter surface: ``on``/``once``/``off``, prepend
    variants, listener introspection and a soft ``max_listeners`` limit that
    only produces a warning when exceeded (0 disables the check).
    """

    def __init__(self, name: str = "public", max_listeners: int = DEFAULT_MAX_LISTENERS):
        self.name = name
        self._listeners: Dict[str, List[Listener]] = {}
        self._max_listeners = max_listeners

    def _add(self, event: EventName, listener: Listener, prepend: bool = False) -> "EventChannel":
        if not callable(listener):
            raise TypeError(f"Listener for '{_event_key(event)}' must be callable, got {type(listener).__name__}.")
        key = _event_key(event)
        bucket = self._listeners.setdefault(key, [])
        if prepend:
            bucket.insert(0, listener)
        else:
            bucket.append(listener)
        if self._max_listeners and len(bucket) > self._max_listeners:
            logger.warning(
                "Possible listener leak on %s channel: %d listeners registered for '%s' (max %d).",
                self.name, len(bucket), key, self._max_listeners,
            )
        return self

    def on(self, event: EventName, listener: Listener) -> "EventChannel":
        """Register ``listener`` for ``event``."""
        return self._add(event, listener)

    add_listener = on

    def once(self, event: EventName, listener: Listener) -> "EventChannel":
        """Register ``listener`` to run only on the next ``event``."""
        return self._add(event, _OnceWrapper(self, _event_key(event), listener))

    def prepend_listener(self, event: EventName, listener: Listener) -> "EventChannel":
        return self._add(event, listener, prepend=True)

    def prepend_once_listener(self, event: EventName, listener: Listener) -> "EventChannel":
        return self._add(event, _OnceWrapper(self, _event_key(event), listener), prepend=True)

    def off(self, event: EventName, listener: Listener) -> "EventChannel":
        """Remove the most recently added registration of ``listener`` for ``event``."""
        key = _event_key(event)
        bucket = self._listeners.get(key)
        if not bucket:
            return self
        for position in range(len(bucket) - 1, -1, -1):
            registered = bucket[position]
            if registered is listener or (isinstance(registered, _OnceWrapper) and registered.listener is listener):
                del bucket[position]
                break
        if not bucket:
            del self._listeners[key]
        return self

    remove_listener = off

    def remove_all_listeners(self, event: EventName | None = None) -> "EventChannel":
        """Remove every listener of ``event``, or of all events when omitted."""
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(_event_key(event), None)
        return self

    def emit(self, event: EventName, *args: Any) -> bool:
        """
        Call every listener of ``event`` with ``args``.

        Returns:
            True if the event had listeners, False otherwise.
        """
        bucket = self._listeners.get(_event_key(event))
        if not bucket:
            return False
        for listener in list(bucket):
            listener(*args)
        return True

    def listener_count(self, event: EventName, listener: Listener | None = None) -> int:
        bucket = self._listeners.get(_event_key(event), [])
        if listener is None:
            return len(bucket)
        return sum(
            1 for registered in bucket
            if registered is listener or (isinstance(registered, _OnceWrapper) and registered.listener is listener)
        )

    def listeners(self, event: EventName) -> List[Listener]:
        """Copy of the listeners of ``event``, with one-shot wrappers unwrapped."""
        return [
            registered.listener if isinstance(registered, _OnceWrapper) else registered
            for registered in self._listeners.get(_event_key(event), [])
        ]

    def raw_listeners(self, event: EventName) -> List[Listener]:
        return list(self._listeners.get(_event_key(event), []))

    def event_names(self) -> List[str]:
        return list(self._listeners.keys())

    def set_max_listeners(self, max_listeners: int) -> "EventChannel":
        if not isinstance(max_listeners, int) or isinstance(max_listeners, bool) or max_listeners < 0:
            raise ValueError(f"max_listeners must be a non-negative integer, got {max_listeners!r}.")
        self._max_listeners = max_listeners
        return self

    def get_max_listeners(self) -> int:
        return self._max_listeners


class ChangeNotifier(EventChannel):
    """
    The notification bus shared by the store, the custom value registry and
    the model registry.

    ``emit`` (inherited) reaches public listeners only. ``publish`` is what
    the core uses for mutations: it reaches public listeners and, once it has
    been acquired, the internal channel.
    """

    def __init__(self, max_listeners: int = DEFAULT_MAX_LISTENERS):
        super().__init__(name="public", max_listeners=max_listeners)
        self._internal = EventChannel(name="internal", max_listeners=max_listeners)
        self._internal_acquired = False

    def publish(self, event: EventName, *args: Any) -> None:
        """Deliver a mutation event to the public surface and the internal channel."""
        logger.debug("Publishing event '%s'.", _event_key(event))
        self.emit(event, *args)
        if self._internal_acquired:
            self._internal.emit(event, *args)

    def acquire_internal_channel(self) -> EventChannel:
        """
        Hand out the internal channel. Succeeds exactly once per notifier.

        Raises:
            InternalChannelUnavailable: On every call after the first.
        """
        if self._internal_acquired:
            logger.error("Second request for the internal notification channel was denied.")
            raise InternalChannelUnavailable()
        self._internal_acquired = True
        return self._internal

    @property
    def internal_channel_acquired(self) -> bool:
        return self._internal_acquired

    def close(self) -> None:
        """Drop every listener on both surfaces."""
        self.remove_all_listeners()
        self._internal.remove_all_listeners()
