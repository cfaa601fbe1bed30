# src/convocore/providers/__init__.py
"""
Provider adapters for ConvoCore.

``BaseProvider`` is the interface the facade talks to; ``GeminiProvider`` is
the bundled implementation for the Google Generative Language API.
"""

from .base import BaseProvider, ContextPayload
from .gemini_provider import GeminiProvider

PROVIDER_MAP = {
    "gemini": GeminiProvider,
}

__all__ = ["BaseProvider", "ContextPayload", "GeminiProvider", "PROVIDER_MAP"]
