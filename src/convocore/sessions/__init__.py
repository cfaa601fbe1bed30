# src/convocore/sessions/__init__.py
"""
Session management package for the ConvoCore library.

Contains the session state records, the per-session custom value registry
and the two session store variants.
"""

from .custom_values import CustomValueRegistry
from .state import CustomValueSlot, Session, TrackedField
from .store import MultiSessionStore, SessionStore, SingleSessionStore

__all__ = [
    "CustomValueRegistry",
    "CustomValueSlot",
    "MultiSessionStore",
    "Session",
    "SessionStore",
    "SingleSessionStore",
    "TrackedField",
]
