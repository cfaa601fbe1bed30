# src/convocore/content.py
"""
ContentBuilder: normalizes heterogeneous message parts into the canonical
``Message`` shape.

Input coming from callers and from provider responses is loosely shaped.
The builder keeps only the two recognized part kinds:

- ``text``: must be a ``str``;
- ``inlineData`` (or ``inline_data``): must carry a ``str`` ``mime_type``
  and a ``str`` ``data``.

Unknown keys are dropped. A recognized key whose payload fails its check is
kept with a ``None`` value, so a part is never silently removed and the
positional (content index, part index) addressing used by the stream
aggregator stays aligned with the source.
"""

import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Union

from .models import InlineData, Message, Part

logger = logging.getLogger(__name__)


def _check_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _check_inline_data(value: Any) -> Optional[InlineData]:
    if isinstance(value, InlineData):
        return value
    if isinstance(value, Mapping):
        mime_type = value.get("mime_type", value.get("mimeType"))
        data = value.get("data")
        if isinstance(mime_type, str) and isinstance(data, str):
            return InlineData(mime_type=mime_type, data=data)
    return None


# Recognized part kinds: source key -> (Part field, validator)
PART_KINDS: Dict[str, tuple[str, Callable[[Any], Any]]] = {
    "text": ("text", _check_text),
    "inlineData": ("inline_data", _check_inline_data),
    "inline_data": ("inline_data", _check_inline_data),
}


class ContentBuilder:
    """Builds canonical ``Message`` records from parts or legacy content objects."""

    @staticmethod
    def build_part(source: Any) -> Part:
        """Filter one raw part down to its recognized kinds."""
        if isinstance(source, Part):
            source = source.model_dump(by_alias=True, exclude_none=True)
        if not isinstance(source, Mapping):
            logger.debug("Ignoring non-mapping part of type %s.", type(source).__name__)
            return Part()

        fields: Dict[str, Any] = {}
        for key, value in source.items():
            kind = PART_KINDS.get(key)
            if kind is None:
                continue
            field_name, check = kind
            fields[field_name] = check(value)
        return Part(**fields)

    def build(
        self,
        source: Union[Message, Mapping, List[Any], None] = None,
        role: Optional[str] = None,
        keep_finish_reason: bool = True,
        contents: Optional[List[Message]] = None,
    ) -> Union[Message, int]:
        """
        Build a canonical message.

        Args:
            source: A list of parts, a mapping holding a ``parts`` list, a
                legacy mapping holding a single ``content`` part, or a
                ``Message``.
            role: Role to attach. When omitted the role of a ``Message``
                source is kept; mapping and list sources get no role.
            keep_finish_reason: Copy the source's finish reason when it is a
                ``str`` or ``int``.
            contents: If a list is given, the built message is appended to it
                and the new list length is returned instead of the message.

        Returns:
            The built ``Message``, or the new length of ``contents``.
        """
        message = self.build_message(source, role=role, keep_finish_reason=keep_finish_reason)
        if isinstance(contents, list):
            contents.append(message)
            return len(contents)
        return message

    def build_message(
        self,
        source: Union[Message, Mapping, List[Any], None] = None,
        role: Optional[str] = None,
        keep_finish_reason: bool = True,
    ) -> Message:
        """Same as ``build`` without the ``contents`` mode; always returns the ``Message``."""
        raw_parts: List[Any] = []
        finish_reason: Any = None

        if isinstance(source, Message):
            raw_parts = list(source.parts)
            finish_reason = source.finish_reason
            if role is None:
                role = source.role
        elif isinstance(source, (list, tuple)):
            raw_parts = list(source)
        elif isinstance(source, Mapping):
            if isinstance(source.get("parts"), (list, tuple)):
                raw_parts = list(source["parts"])
            elif source.get("content"):
                raw_parts = [source["content"]]
            finish_reason = source.get("finishReason", source.get("finish_reason"))
        elif source is not None:
            logger.debug("Unsupported content source of type %s; building an empty message.", type(source).__name__)

        message = Message(
            role=role if isinstance(role, str) else None,
            parts=[self.build_part(raw) for raw in raw_parts],
        )
        if keep_finish_reason and isinstance(finish_reason, (str, int)) and not isinstance(finish_reason, bool):
            message.finish_reason = finish_reason
        return message


default_builder = ContentBuilder()
