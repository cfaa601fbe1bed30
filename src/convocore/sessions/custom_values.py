# src/convocore/sessions/custom_values.py
"""
CustomValueRegistry: schema-guarded extension fields of one session.

The first non-null value set under a name fixes that name's semantic type
(see ``convocore.utils.semantic_type``); every later set must use the same
type. Names that collide with a built-in session field are refused, which
keeps the custom token entries and the built-in ones in disjoint namespaces.
"""

import logging
import math
from typing import Any, List, Optional, Union

from ..events import ChangeNotifier, StoreEvent, custom_value_event
from ..exceptions import (
    CustomValueNameConflict,
    CustomValueNotRegistered,
    CustomValueTypeConflict,
    InvalidArgumentType,
)
from ..models import CustomValueDescriptor
from ..utils.values import content_hash, semantic_type
from .state import CustomValueSlot, Session

logger = logging.getLogger(__name__)

RESERVED_NAMES = frozenset({
    "session_id", "sessionId",
    "entries", "data", "ids", "tokens", "hashes", "hash",
    "next_id", "nextId",
    "model",
    "system_instruction", "systemInstruction",
    "prompt",
    "first_dialogue", "firstDialogue",
    "file",
    "generation",
    "max_output_tokens", "maxOutputTokens",
    "temperature",
    "top_p", "topP",
    "top_k", "topK",
    "presence_penalty", "presencePenalty",
    "frequency_penalty", "frequencyPenalty",
    "enable_enhanced_civic_answers", "enableEnhancedCivicAnswers",
    "custom_values", "customValues",
    "custom_list", "customList",
})

# event names a custom value must not publish under
RESERVED_EVENTS = frozenset(event.value for event in StoreEvent)


def validate_token_amount(token_amount: Any, field: str = "token_amount") -> Optional[Union[int, float]]:
    """Accept None or a finite number; anything else is an InvalidArgumentType."""
    if token_amount is None:
        return None
    if isinstance(token_amount, bool) or not isinstance(token_amount, (int, float)) or not math.isfinite(token_amount):
        raise InvalidArgumentType(field, "finite number", semantic_type(token_amount))
    return token_amount


class CustomValueRegistry:
    """Custom value operations bound to one session."""

    def __init__(self, session: Session, notifier: Optional[ChangeNotifier] = None):
        self.session = session
        self._notifier = notifier

    @staticmethod
    def validate_name(name: Any) -> str:
        if not isinstance(name, str) or not name:
            raise InvalidArgumentType("name", "non-empty string", semantic_type(name))
        if name in RESERVED_NAMES or custom_value_event(name) in RESERVED_EVENTS:
            raise CustomValueNameConflict(name)
        return name

    def _publish(self, name: str, value: Any) -> None:
        if self._notifier is not None:
            self._notifier.publish(custom_value_event(name), value, self.session.session_id)

    def set(self, name: str, value: Any, token_amount: Optional[Union[int, float]] = None) -> None:
        """
        Set a custom value.

        Args:
            name: Custom value name.
            value: New value. None behaves like ``reset``.
            token_amount: Optional token count for the value.

        Raises:
            InvalidArgumentType: Empty or non-string name, or bad token amount.
            CustomValueNameConflict: The name belongs to a built-in field.
            CustomValueTypeConflict: The value's type differs from the recorded one.
            CustomValueNotRegistered: ``value`` is None and the name is unknown.
        """
        self.validate_name(name)
        tokens = validate_token_amount(token_amount)
        if value is None:
            self.reset(name)
            return

        value_type = semantic_type(value)
        slot = self.session.custom_values.get(name)
        if slot is None:
            slot = CustomValueSlot(name=name, type=value_type)
            self.session.custom_values[name] = slot
            logger.debug("Registered custom value '%s' (%s) in session '%s'.", name, value_type, self.session.session_id)
        elif slot.type != value_type:
            raise CustomValueTypeConflict(name, slot.type, value_type)

        slot.value = value
        slot.hash = content_hash(value)
        if tokens is not None:
            slot.tokens = tokens
        self._publish(name, value)

    def reset(self, name: str) -> None:
        """Clear a registered custom value, keeping its descriptor."""
        self.validate_name(name)
        slot = self.session.custom_values.get(name)
        if slot is None:
            raise CustomValueNotRegistered(name)
        slot.clear()
        self._publish(name, None)

    def erase(self, name: str) -> None:
        """Reset a custom value and drop its descriptor."""
        self.reset(name)
        del self.session.custom_values[name]
        logger.debug("Erased custom value '%s' from session '%s'.", name, self.session.session_id)

    def get(self, name: str) -> Any:
        slot = self.session.custom_values.get(name)
        return slot.value if slot is not None else None

    def list(self) -> List[CustomValueDescriptor]:
        return self.session.custom_list
