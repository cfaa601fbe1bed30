# src/convocore/__init__.py
"""
ConvoCore - client-side state management for multi-turn generative-AI conversations.

Tracks, per session, the message history with token counts and content
hashes, the generation parameters and caller-defined custom values, notifies
observers of every change, and rebuilds complete responses from streamed
provider output.
"""

from importlib.metadata import PackageNotFoundError, version

from .api import ConvoCore
from .config import ConvoCoreConfig, load_config
from .content import ContentBuilder
from .events import ChangeNotifier, EventChannel, StoreEvent, custom_value_event
from .exceptions import (
    ConfigError,
    ConvoCoreError,
    CustomValueError,
    CustomValueNameConflict,
    CustomValueNotRegistered,
    CustomValueTypeConflict,
    InternalChannelUnavailable,
    InvalidArgumentType,
    InvalidSessionReference,
    MalformedModelDescriptor,
    ProviderError,
    ProviderNotConfigured,
    StreamDecodeFailure,
    TransportFailure,
)
from .model_registry import ModelRegistry
from .models import (
    CustomValueDescriptor,
    ErrorCode,
    FileAttachment,
    GenerationResult,
    GenerationSettings,
    InlineData,
    Message,
    ModelCategory,
    ModelCategoryEntry,
    ModelDescriptor,
    ModelPage,
    Part,
    StreamUpdate,
    TokenCount,
    TokenCountResult,
    TokenUsage,
)
from .providers import BaseProvider, GeminiProvider
from .sessions import MultiSessionStore, Session, SessionStore, SingleSessionStore
from .streaming import StreamAggregator, StreamState
from .utils import content_hash, semantic_type

try:
    __version__ = version("convocore")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

__all__ = [
    "ConvoCore",
    "ConvoCoreConfig",
    "load_config",
    "ContentBuilder",
    "ChangeNotifier",
    "EventChannel",
    "StoreEvent",
    "custom_value_event",
    "ModelRegistry",
    "StreamAggregator",
    "StreamState",
    "BaseProvider",
    "GeminiProvider",
    "MultiSessionStore",
    "SingleSessionStore",
    "SessionStore",
    "Session",
    "content_hash",
    "semantic_type",
    # Models
    "CustomValueDescriptor",
    "ErrorCode",
    "FileAttachment",
    "GenerationResult",
    "GenerationSettings",
    "InlineData",
    "Message",
    "ModelCategory",
    "ModelCategoryEntry",
    "ModelDescriptor",
    "ModelPage",
    "Part",
    "StreamUpdate",
    "TokenCount",
    "TokenCountResult",
    "TokenUsage",
    # Exceptions
    "ConvoCoreError",
    "ConfigError",
    "CustomValueError",
    "CustomValueNameConflict",
    "CustomValueNotRegistered",
    "CustomValueTypeConflict",
    "InternalChannelUnavailable",
    "InvalidArgumentType",
    "InvalidSessionReference",
    "MalformedModelDescriptor",
    "ProviderError",
    "ProviderNotConfigured",
    "StreamDecodeFailure",
    "TransportFailure",
    "__version__",
]
