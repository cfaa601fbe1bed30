# tests/conftest.py
"""
Shared fixtures for the ConvoCore test suite.
"""

from typing import Any, List, Tuple

import pytest

from convocore.events import ChangeNotifier
from convocore.sessions import MultiSessionStore, SingleSessionStore


class EventRecorder:
    """Collects (event, args) pairs published on a channel."""

    def __init__(self):
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []

    def listener(self, event: str):
        def _record(*args):
            self.calls.append((event, args))
        return _record

    def attach(self, channel, *events) -> "EventRecorder":
        for event in events:
            channel.on(event, self.listener(str(getattr(event, "value", event))))
        return self

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def args_for(self, event) -> List[Tuple[Any, ...]]:
        key = str(getattr(event, "value", event))
        return [args for name, args in self.calls if name == key]


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def store(notifier):
    """A multi-session store with session 'chat' started and selected."""
    store = MultiSessionStore(notifier)
    store.start_session("chat", selected=True)
    return store


@pytest.fixture
def single_store(notifier):
    return SingleSessionStore(notifier)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep CONVOCORE_* and GOOGLE_API_KEY variables from leaking into tests."""
    import os

    for key in list(os.environ):
        if key.startswith("CONVOCORE_") or key == "GOOGLE_API_KEY":
            monkeypatch.delenv(key, raising=False)
