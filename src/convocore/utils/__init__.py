# src/convocore/utils/__init__.py
"""
Utility modules for the ConvoCore library.

Helpers shared by the session store, the model catalog and the stream
aggregator: content-addressed hashing and semantic type tags.
"""

from .values import content_hash, semantic_type

__all__ = ["content_hash", "semantic_type"]
