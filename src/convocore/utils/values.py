# src/convocore/utils/values.py
"""
Value helpers: semantic type tags and content-addressed hashing.

``semantic_type`` gives the coarse, language-neutral type name used by the
custom value schema (``"string"``, ``"number"``, ``"object"``...), so that an
``int`` and a ``float`` count as the same type while a ``bool`` does not.

``content_hash`` hashes a canonical JSON rendering of a value. Two calls with
structurally equal values always produce the same digest, which lets callers
detect changes to history entries and scalar fields without access to the
store's internals.
"""

import base64
import hashlib
import json
import math
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel


def semantic_type(value: Any) -> str:
    """Return the semantic type tag of ``value``."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (bytes, bytearray)):
        return "bytes"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, (Mapping, BaseModel)):
        return "object"
    if isinstance(value, (set, frozenset)):
        return "set"
    if isinstance(value, (datetime, date)):
        return "date"
    if callable(value):
        return "function"
    return type(value).__name__.lower()


# wrapper keys produced by _canonical for values JSON has no type for
_WRAPPER_KEYS = frozenset({"__set__", "__bytes__", "__date__", "__repr__"})
_KEY_ESCAPE = "\x00"


def _canonical_key(key: Any) -> str:
    """
    Render a mapping key as a string without collisions.

    Non-string keys are tagged with their semantic type (``{1: ...}`` and
    ``{"1": ...}`` differ). String keys that could be mistaken for a tag or
    for one of the wrapper keys get an extra escape prefix.
    """
    if isinstance(key, str):
        if key in _WRAPPER_KEYS or key.startswith(_KEY_ESCAPE):
            return _KEY_ESCAPE + key
        return key
    rendered = json.dumps(_canonical(key), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return f"{_KEY_ESCAPE}{semantic_type(key)}:{rendered}"


def _canonical(value: Any) -> Any:
    """Reduce ``value`` to plain JSON-compatible data with a stable layout."""
    if isinstance(value, BaseModel):
        return _canonical(value.model_dump(mode="json", by_alias=True, exclude_none=True))
    if isinstance(value, Mapping):
        return {_canonical_key(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    if isinstance(value, (set, frozenset)):
        items = [_canonical(v) for v in value]
        return {"__set__": sorted(items, key=lambda v: json.dumps(v, sort_keys=True))}
    if isinstance(value, (bytes, bytearray)):
        return {"__bytes__": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, (datetime, date)):
        return {"__date__": value.isoformat()}
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        # 1 and 1.0 are the same number
        return int(value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return {"__repr__": repr(value)}


def content_hash(value: Any) -> str:
    """
    Compute a deterministic SHA-256 digest for ``value``.

    Mapping keys are sorted and pydantic models are dumped by alias, so a
    ``Message`` and the equivalent wire dict produce the same hash.
    """
    payload = json.dumps(
        [semantic_type(value), _canonical(value)],
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
