# src/convocore/sessions/store.py
"""
Session stores for ConvoCore.

``SessionStore`` implements the history mutation API, the scalar field
setters and getters, custom values and the query helpers. Two concrete
variants decide how sessions come and go:

- ``MultiSessionStore``: sessions are created, selected and stopped by the
  caller through ``start_session``, ``select_session`` and ``stop_session``.
- ``SingleSessionStore``: exactly one session, ``"main"``, created and
  selected at construction. It has no lifecycle methods and ignores any
  explicit ``session_id`` argument.

Every operation takes an optional ``session_id``; when omitted the currently
selected session is used. Mutations on a missing session raise
``InvalidSessionReference``; read helpers return None (or -1 / False for
index helpers) instead.

The stores are synchronous and do no locking: callers must serialize writes
to the same session.
"""

import base64
import logging
import math
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..content import ContentBuilder
from ..events import ChangeNotifier, StoreEvent
from ..exceptions import InvalidArgumentType, InvalidSessionReference
from ..models import CustomValueDescriptor, FileAttachment, GenerationSettings, Message, TokenCount
from ..utils.values import content_hash, semantic_type
from .custom_values import CustomValueRegistry, validate_token_amount
from .state import Session, TrackedField

logger = logging.getLogger(__name__)

Number = Union[int, float]
TokenInput = Union[TokenCount, Mapping, int, float, None]

# Generation parameter -> event published by its setter
_NUMERIC_SETTINGS: Dict[str, StoreEvent] = {
    "max_output_tokens": StoreEvent.SET_MAX_OUTPUT_TOKENS,
    "temperature": StoreEvent.SET_TEMPERATURE,
    "top_p": StoreEvent.SET_TOP_P,
    "top_k": StoreEvent.SET_TOP_K,
    "presence_penalty": StoreEvent.SET_PRESENCE_PENALTY,
    "frequency_penalty": StoreEvent.SET_FREQUENCY_PENALTY,
}


def _is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class SessionStore:
    """
    Base store: owns the session table and the active selection.

    Not meant to be instantiated directly; use ``MultiSessionStore`` or
    ``SingleSessionStore``.
    """

    def __init__(self, notifier: Optional[ChangeNotifier] = None, content_builder: Optional[ContentBuilder] = None):
        self.notifier = notifier if notifier is not None else ChangeNotifier()
        self.content_builder = content_builder or ContentBuilder()
        self._sessions: Dict[str, Session] = {}
        self._selected: Optional[str] = None

    # --- Session resolution ---

    def get_session_id(self, session_id: Optional[str] = None) -> Optional[str]:
        """The session id an operation would target: ``session_id`` or the active selection."""
        result = session_id if session_id else self._selected
        return result if isinstance(result, str) else None

    def get_session(self, session_id: Optional[str] = None) -> Optional[Session]:
        resolved = self.get_session_id(session_id)
        if resolved is None:
            return None
        return self._sessions.get(resolved)

    def _require_session(self, session_id: Optional[str] = None) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise InvalidSessionReference(self.get_session_id(session_id))
        return session

    def session_ids(self) -> List[str]:
        return list(self._sessions.keys())

    @property
    def selected_session_id(self) -> Optional[str]:
        return self._selected

    def _create_session(self, session_id: str, selected: bool = False) -> Session:
        if not isinstance(session_id, str) or not session_id:
            raise InvalidArgumentType("session_id", "non-empty string", semantic_type(session_id))
        session = Session(session_id=session_id)
        # recreation overwrites
        self._sessions[session_id] = session
        if selected:
            self._selected = session_id
        logger.debug("Session '%s' started (selected=%s).", session_id, selected)
        self.notifier.publish(StoreEvent.SESSION_STARTED, session, session_id, bool(selected))
        if selected:
            self.notifier.publish(StoreEvent.SESSION_SELECTED, session_id)
        return session

    # --- History ---

    def _normalize_message(self, message: Any) -> Message:
        if isinstance(message, Message):
            return message
        if isinstance(message, Mapping):
            return self.content_builder.build_message(message, role=message.get("role"))
        raise InvalidArgumentType("message", "Message or mapping", semantic_type(message))

    @staticmethod
    def _normalize_token_count(token_count: TokenInput) -> TokenCount:
        if token_count is None:
            return TokenCount(count=None)
        if isinstance(token_count, TokenCount):
            return token_count
        if isinstance(token_count, Mapping):
            try:
                return TokenCount.model_validate(dict(token_count))
            except ValidationError as e:
                raise InvalidArgumentType("token_count", "token count record", str(e)) from e
        if _is_finite_number(token_count):
            return TokenCount(count=token_count)
        raise InvalidArgumentType("token_count", "TokenCount, mapping or number", semantic_type(token_count))

    def append_entry(self, message: Union[Message, Mapping], token_count: TokenInput = None,
                     session_id: Optional[str] = None) -> int:
        """
        Append a message to the history.

        Args:
            message: A ``Message`` or a mapping normalized through ``ContentBuilder``.
            token_count: ``TokenCount``, a mapping, a bare number or None.
            session_id: Target session; defaults to the selected one.

        Returns:
            The identifier assigned to the new entry.

        Raises:
            InvalidSessionReference: If the session does not exist.
        """
        session = self._require_session(session_id)
        entry = self._normalize_message(message)
        tokens = self._normalize_token_count(token_count)
        digest = content_hash(entry)

        new_id = session.next_id
        session.next_id += 1
        session.entries.append(entry)
        session.ids.append(new_id)
        session.tokens.append(tokens)
        session.hashes.append(digest)

        self.notifier.publish(StoreEvent.ENTRY_ADDED, new_id, entry, tokens, digest, session.session_id)
        return new_id

    def replace_entry(self, index: int, message: Union[Message, Mapping, None] = None,
                      token_count: TokenInput = None, session_id: Optional[str] = None) -> bool:
        """
        Overwrite the message and/or the token record at ``index``.

        The hash is recomputed only when the message is replaced. Returns False
        when the index does not exist or neither argument is given.
        """
        session = self._require_session(session_id)
        if not self._index_in_range(session, index) or (message is None and token_count is None):
            return False

        entry = None
        digest = None
        if message is not None:
            entry = self._normalize_message(message)
            digest = content_hash(entry)
        tokens = self._normalize_token_count(token_count) if token_count is not None else None

        if entry is not None:
            session.entries[index] = entry
            session.hashes[index] = digest
        if tokens is not None:
            session.tokens[index] = tokens

        self.notifier.publish(StoreEvent.ENTRY_REPLACED, index, entry, tokens, digest, session.session_id)
        return True

    def delete_entry(self, index: int, session_id: Optional[str] = None) -> bool:
        """Remove the entry at ``index`` from all four history lists. Later entries keep their ids."""
        session = self._require_session(session_id)
        if not self._index_in_range(session, index):
            return False

        message_id = session.ids[index]
        del session.entries[index]
        del session.ids[index]
        del session.tokens[index]
        del session.hashes[index]

        self.notifier.publish(StoreEvent.ENTRY_DELETED, index, message_id, session.session_id)
        return True

    # --- Scalar fields ---

    def set_model(self, model: Optional[str], session_id: Optional[str] = None) -> None:
        if model is not None and not isinstance(model, str):
            raise InvalidArgumentType("model", "string", semantic_type(model))
        session = self._require_session(session_id)
        session.model = model
        self.notifier.publish(StoreEvent.SET_MODEL, model, session.session_id)

    def get_model(self, session_id: Optional[str] = None) -> Optional[str]:
        session = self.get_session(session_id)
        return session.model if session is not None else None

    def _set_text_field(self, field_name: str, event: StoreEvent, text: Optional[str],
                        token_amount: Optional[Number], session_id: Optional[str]) -> None:
        if text is not None and not isinstance(text, str):
            raise InvalidArgumentType(field_name, "string", semantic_type(text))
        tokens = validate_token_amount(token_amount)
        session = self._require_session(session_id)
        field: TrackedField = getattr(session, field_name)
        if text is not None:
            field.value = text
            field.hash = content_hash(text)
        if tokens is not None:
            field.tokens = tokens
        self.notifier.publish(event, text, session.session_id)

    def _get_text_field(self, field_name: str, session_id: Optional[str], allow_empty: bool = False) -> Optional[str]:
        session = self.get_session(session_id)
        if session is None:
            return None
        value = getattr(session, field_name).value
        if not isinstance(value, str) or (not value and not allow_empty):
            return None
        return value

    def set_system_instruction(self, text: Optional[str], token_amount: Optional[Number] = None,
                               session_id: Optional[str] = None) -> None:
        """Set the system instruction. ``text=None`` only updates the token count."""
        self._set_text_field("system_instruction", StoreEvent.SET_SYSTEM_INSTRUCTION, text, token_amount, session_id)

    def get_system_instruction(self, session_id: Optional[str] = None) -> Optional[str]:
        return self._get_text_field("system_instruction", session_id, allow_empty=True)

    def set_prompt(self, text: Optional[str], token_amount: Optional[Number] = None,
                   session_id: Optional[str] = None) -> None:
        self._set_text_field("prompt", StoreEvent.SET_PROMPT, text, token_amount, session_id)

    def get_prompt(self, session_id: Optional[str] = None) -> Optional[str]:
        """The prompt, or None when unset or empty."""
        return self._get_text_field("prompt", session_id)

    def set_first_dialogue(self, text: Optional[str], token_amount: Optional[Number] = None,
                           session_id: Optional[str] = None) -> None:
        self._set_text_field("first_dialogue", StoreEvent.SET_FIRST_DIALOGUE, text, token_amount, session_id)

    def get_first_dialogue(self, session_id: Optional[str] = None) -> Optional[str]:
        return self._get_text_field("first_dialogue", session_id)

    def set_file_data(self, mime: Optional[str], data: Optional[str], is_base64: bool = False,
                      token_amount: Optional[Number] = None, session_id: Optional[str] = None) -> None:
        """
        Attach a file to the session.

        Args:
            mime: MIME type of the file.
            data: File content. Encoded to base64 unless ``is_base64`` is set.
            is_base64: ``data`` is already base64-encoded.
            token_amount: Optional token count for the file.
            session_id: Target session.

        Passing None for both ``mime`` and ``data`` only updates the token count.
        """
        if (mime, data) != (None, None):
            if not isinstance(mime, str):
                raise InvalidArgumentType("mime", "string", semantic_type(mime))
            if not isinstance(data, str):
                raise InvalidArgumentType("data", "string", semantic_type(data))
        tokens = validate_token_amount(token_amount)
        session = self._require_session(session_id)

        digest = None
        if mime is not None and data is not None:
            encoded = data if is_base64 else base64.b64encode(data.encode("utf-8")).decode("ascii")
            attachment = FileAttachment(mime=mime, data=data, base64=encoded)
            digest = content_hash(attachment)
            session.file.value = attachment
            session.file.hash = digest
        if tokens is not None:
            session.file.tokens = tokens
        self.notifier.publish(StoreEvent.SET_FILE_DATA, session.file_attachment, digest, session.session_id)

    def remove_file_data(self, session_id: Optional[str] = None) -> None:
        session = self._require_session(session_id)
        session.file.clear()
        self.notifier.publish(StoreEvent.SET_FILE_DATA, None, None, session.session_id)

    def get_file_data(self, session_id: Optional[str] = None) -> Optional[FileAttachment]:
        session = self.get_session(session_id)
        return session.file_attachment if session is not None else None

    def _set_numeric(self, field_name: str, value: Number, session_id: Optional[str]) -> None:
        if not _is_finite_number(value):
            raise InvalidArgumentType(field_name, "finite number", semantic_type(value))
        session = self._require_session(session_id)
        setattr(session.generation, field_name, value)
        self.notifier.publish(_NUMERIC_SETTINGS[field_name], value, session.session_id)

    def _get_numeric(self, field_name: str, session_id: Optional[str]) -> Optional[Number]:
        session = self.get_session(session_id)
        if session is None:
            return None
        return getattr(session.generation, field_name)

    def set_max_output_tokens(self, value: Number, session_id: Optional[str] = None) -> None:
        self._set_numeric("max_output_tokens", value, session_id)

    def get_max_output_tokens(self, session_id: Optional[str] = None) -> Optional[Number]:
        return self._get_numeric("max_output_tokens", session_id)

    def set_temperature(self, value: Number, session_id: Optional[str] = None) -> None:
        self._set_numeric("temperature", value, session_id)

    def get_temperature(self, session_id: Optional[str] = None) -> Optional[Number]:
        return self._get_numeric("temperature", session_id)

    def set_top_p(self, value: Number, session_id: Optional[str] = None) -> None:
        self._set_numeric("top_p", value, session_id)

    def get_top_p(self, session_id: Optional[str] = None) -> Optional[Number]:
        return self._get_numeric("top_p", session_id)

    def set_top_k(self, value: Number, session_id: Optional[str] = None) -> None:
        self._set_numeric("top_k", value, session_id)

    def get_top_k(self, session_id: Optional[str] = None) -> Optional[Number]:
        return self._get_numeric("top_k", session_id)

    def set_presence_penalty(self, value: Number, session_id: Optional[str] = None) -> None:
        self._set_numeric("presence_penalty", value, session_id)

    def get_presence_penalty(self, session_id: Optional[str] = None) -> Optional[Number]:
        return self._get_numeric("presence_penalty", session_id)

    def set_frequency_penalty(self, value: Number, session_id: Optional[str] = None) -> None:
        self._set_numeric("frequency_penalty", value, session_id)

    def get_frequency_penalty(self, session_id: Optional[str] = None) -> Optional[Number]:
        return self._get_numeric("frequency_penalty", session_id)

    def set_enhanced_civic_answers(self, enabled: bool, session_id: Optional[str] = None) -> None:
        if not isinstance(enabled, bool):
            raise InvalidArgumentType("enable_enhanced_civic_answers", "boolean", semantic_type(enabled))
        session = self._require_session(session_id)
        session.generation.enable_enhanced_civic_answers = enabled
        self.notifier.publish(StoreEvent.SET_ENHANCED_CIVIC_ANSWERS, enabled, session.session_id)

    def is_enhanced_civic_answers_enabled(self, session_id: Optional[str] = None) -> Optional[bool]:
        session = self.get_session(session_id)
        return session.generation.enable_enhanced_civic_answers if session is not None else None

    def generation_settings(self, session_id: Optional[str] = None) -> GenerationSettings:
        """Copy of the session's generation parameters (all None when the session is missing)."""
        session = self.get_session(session_id)
        if session is None:
            return GenerationSettings()
        return session.generation.model_copy()

    # --- Custom values ---

    def _custom_values(self, session_id: Optional[str]) -> CustomValueRegistry:
        return CustomValueRegistry(self._require_session(session_id), self.notifier)

    def set_custom_value(self, name: str, value: Any, token_amount: Optional[Number] = None,
                         session_id: Optional[str] = None) -> None:
        self._custom_values(session_id).set(name, value, token_amount)

    def reset_custom_value(self, name: str, session_id: Optional[str] = None) -> None:
        self._custom_values(session_id).reset(name)

    def erase_custom_value(self, name: str, session_id: Optional[str] = None) -> None:
        self._custom_values(session_id).erase(name)

    def get_custom_value(self, name: str, session_id: Optional[str] = None) -> Any:
        session = self.get_session(session_id)
        if session is None:
            return None
        return CustomValueRegistry(session).get(name)

    def get_custom_value_list(self, session_id: Optional[str] = None) -> List[CustomValueDescriptor]:
        session = self.get_session(session_id)
        return session.custom_list if session is not None else []

    # --- Queries ---

    @staticmethod
    def _index_in_range(session: Session, index: Any) -> bool:
        return isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(session.entries)

    def get_total_tokens(self, session_id: Optional[str] = None) -> Optional[Number]:
        """Sum of every entry's token count plus every scalar and custom token entry."""
        session = self.get_session(session_id)
        return session.total_tokens() if session is not None else None

    def get_tokens(self, field: str, session_id: Optional[str] = None) -> Optional[Number]:
        """Token count of a tracked scalar field or custom value."""
        session = self.get_session(session_id)
        record = session.tracked_field(field) if session is not None else None
        return record.tokens if record is not None else None

    def get_hash(self, field: str, session_id: Optional[str] = None) -> Optional[str]:
        """Content hash of a tracked scalar field or custom value."""
        session = self.get_session(session_id)
        record = session.tracked_field(field) if session is not None else None
        return record.hash if record is not None else None

    def index_exists(self, index: int, session_id: Optional[str] = None) -> bool:
        session = self.get_session(session_id)
        return session is not None and self._index_in_range(session, index)

    def get_entry_by_index(self, index: int, session_id: Optional[str] = None) -> Optional[Message]:
        session = self.get_session(session_id)
        if session is None or not self._index_in_range(session, index):
            return None
        return session.entries[index]

    def get_index_of_id(self, message_id: int, session_id: Optional[str] = None) -> int:
        session = self.get_session(session_id)
        if session is None or message_id not in session.ids:
            return -1
        return session.ids.index(message_id)

    def get_id_by_index(self, index: int, session_id: Optional[str] = None) -> int:
        session = self.get_session(session_id)
        if session is None or not self._index_in_range(session, index):
            return -1
        return session.ids[index]

    def get_entry_by_id(self, message_id: int, session_id: Optional[str] = None) -> Optional[Message]:
        return self.get_entry_by_index(self.get_index_of_id(message_id, session_id), session_id)

    def get_entry_tokens_by_index(self, index: int, session_id: Optional[str] = None) -> Optional[TokenCount]:
        session = self.get_session(session_id)
        if session is None or not self._index_in_range(session, index):
            return None
        return session.tokens[index]

    def get_entry_tokens_by_id(self, message_id: int, session_id: Optional[str] = None) -> Optional[TokenCount]:
        return self.get_entry_tokens_by_index(self.get_index_of_id(message_id, session_id), session_id)

    def get_entry_hash_by_index(self, index: int, session_id: Optional[str] = None) -> Optional[str]:
        session = self.get_session(session_id)
        if session is None or not self._index_in_range(session, index):
            return None
        return session.hashes[index]

    def get_entry_hash_by_id(self, message_id: int, session_id: Optional[str] = None) -> Optional[str]:
        return self.get_entry_hash_by_index(self.get_index_of_id(message_id, session_id), session_id)

    def get_last_index(self, session_id: Optional[str] = None) -> int:
        session = self.get_session(session_id)
        if session is None or not session.entries:
            return -1
        return len(session.entries) - 1

    def get_last_entry(self, session_id: Optional[str] = None) -> Optional[Message]:
        session = self.get_session(session_id)
        if session is None or not session.entries:
            return None
        return session.entries[-1]

    def exists_first_entry(self, session_id: Optional[str] = None) -> bool:
        session = self.get_session(session_id)
        return session is not None and bool(session.entries)

    def get_first_entry(self, session_id: Optional[str] = None) -> Optional[Message]:
        session = self.get_session(session_id)
        if session is None or not session.entries:
            return None
        return session.entries[0]

    # --- Teardown ---

    def destroy(self) -> None:
        """Drop every session and every listener."""
        logger.debug("Destroying store with %d session(s).", len(self._sessions))
        self._sessions.clear()
        self._selected = None
        self.notifier.close()


class MultiSessionStore(SessionStore):
    """Store whose sessions are managed by the caller."""

    def start_session(self, session_id: str, selected: bool = False) -> Session:
        """Create (or recreate, discarding the old state) an empty session."""
        return self._create_session(session_id, selected=selected)

    def stop_session(self, session_id: str) -> bool:
        """Remove a session, clearing the selection if it pointed at it."""
        if session_id not in self._sessions:
            return False
        del self._sessions[session_id]
        if self._selected == session_id:
            self.select_session(None)
        logger.debug("Session '%s' stopped.", session_id)
        self.notifier.publish(StoreEvent.SESSION_STOPPED, session_id)
        return True

    def select_session(self, session_id: Optional[str]) -> bool:
        """Select a session, or clear the selection with None. False for unknown ids."""
        if session_id is not None:
            if session_id not in self._sessions:
                return False
            self._selected = session_id
        else:
            self._selected = None
        self.notifier.publish(StoreEvent.SESSION_SELECTED, self._selected)
        return True


class SingleSessionStore(SessionStore):
    """Store with one fixed session, ``"main"``, created at construction."""

    SESSION_ID = "main"

    def __init__(self, notifier: Optional[ChangeNotifier] = None, content_builder: Optional[ContentBuilder] = None):
        super().__init__(notifier=notifier, content_builder=content_builder)
        self._create_session(self.SESSION_ID, selected=True)

    def get_session_id(self, session_id: Optional[str] = None) -> Optional[str]:
        # explicit ids are ignored in single-session mode
        return self._selected
