# src/convocore/sessions/state.py
"""
Session state records.

A ``Session`` holds one conversation: the history as four parallel lists
(messages, message ids, token records, content hashes), explicit records for
the tracked text fields, the generation parameters, and the open-ended table
of caller-defined custom values.

These are plain data holders. All validation, hashing and change
notification happens in ``SessionStore`` and ``CustomValueRegistry``; code
outside the store should treat a ``Session`` as read-only.
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from ..models import CustomValueDescriptor, FileAttachment, GenerationSettings, Message, TokenCount

Number = Union[int, float]


class TrackedField(BaseModel):
    """A scalar session field with its own token count and content hash."""
    value: Any = None
    tokens: Optional[Number] = None
    hash: Optional[str] = None

    def clear(self) -> None:
        self.value = None
        self.tokens = None
        self.hash = None


class CustomValueSlot(TrackedField):
    """A registered custom value: descriptor plus its tracked value."""
    name: str
    type: str

    @property
    def descriptor(self) -> CustomValueDescriptor:
        return CustomValueDescriptor(name=self.name, type=self.type)


class Session(BaseModel):
    """State of one logical conversation."""

    session_id: str

    # History: four parallel lists, always the same length
    entries: List[Message] = Field(default_factory=list)
    ids: List[int] = Field(default_factory=list)
    tokens: List[TokenCount] = Field(default_factory=list)
    hashes: List[str] = Field(default_factory=list)
    next_id: int = 0

    model: Optional[str] = None
    system_instruction: TrackedField = Field(default_factory=TrackedField)
    prompt: TrackedField = Field(default_factory=TrackedField)
    first_dialogue: TrackedField = Field(default_factory=TrackedField)
    file: TrackedField = Field(default_factory=TrackedField)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)

    # Insertion order is registration order
    custom_values: Dict[str, CustomValueSlot] = Field(default_factory=dict)

    @property
    def custom_list(self) -> List[CustomValueDescriptor]:
        """Descriptors of every registered custom value, in registration order."""
        return [slot.descriptor for slot in self.custom_values.values()]

    @property
    def file_attachment(self) -> Optional[FileAttachment]:
        value = self.file.value
        return value if isinstance(value, FileAttachment) else None

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    def scalar_fields(self) -> Iterator[Tuple[str, TrackedField]]:
        """Yield (name, record) for every built-in tracked field."""
        yield "system_instruction", self.system_instruction
        yield "prompt", self.prompt
        yield "first_dialogue", self.first_dialogue
        yield "file", self.file

    def tracked_field(self, name: str) -> Optional[TrackedField]:
        """
        Resolve a tracked field by name. Built-in fields accept snake_case or
        camelCase (``system_instruction`` / ``systemInstruction``); anything
        else is looked up in the custom value table.
        """
        builtin = SCALAR_FIELD_ALIASES.get(name)
        if builtin is not None:
            return getattr(self, builtin)
        return self.custom_values.get(name)

    def total_tokens(self) -> Number:
        """Per-entry token counts plus every scalar and custom token entry."""
        total: Number = 0
        for record in self.tokens:
            if record.count is not None:
                total += record.count
        for _, field in self.scalar_fields():
            if field.tokens is not None:
                total += field.tokens
        for slot in self.custom_values.values():
            if slot.tokens is not None:
                total += slot.tokens
        return total


SCALAR_FIELD_ALIASES: Dict[str, str] = {
    "system_instruction": "system_instruction",
    "systemInstruction": "system_instruction",
    "prompt": "prompt",
    "first_dialogue": "first_dialogue",
    "firstDialogue": "first_dialogue",
    "file": "file",
}
