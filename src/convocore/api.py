# src/convocore/api.py
"""
Core API Facade for the ConvoCore library.
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Union

from .config import ConvoCoreConfig, load_config
from .events import ChangeNotifier
from .exceptions import ConfigError, InvalidArgumentType, ProviderNotConfigured
from .model_registry import ModelRegistry
from .models import ErrorCode, GenerationResult, Message, ModelDescriptor, ModelPage, Part, TokenCountResult
from .providers import PROVIDER_MAP
from .providers.base import BaseProvider, ContextPayload
from .sessions.store import MultiSessionStore, SessionStore, SingleSessionStore
from .streaming import StreamCallback

logger = logging.getLogger(__name__)


class ConvoCore:
    """
    Entry point tying the pieces together.

    Owns one ``ChangeNotifier`` shared by the session store and the model
    catalog, and routes network operations (model listing, token counting,
    generation) to the registered provider. Results of network operations
    are never written to the store; callers append them with
    ``store.append_entry``.

    Attributes:
        config: The resolved configuration.
        notifier: Change notification bus.
        store: ``MultiSessionStore`` or ``SingleSessionStore``.
        models: The model catalog.
    """
    config: ConvoCoreConfig
    notifier: ChangeNotifier
    store: SessionStore
    models: ModelRegistry
    _provider: Optional[BaseProvider]

    def __init__(
        self,
        config: Union[ConvoCoreConfig, Dict[str, Any], None] = None,
        provider: Optional[BaseProvider] = None,
        single_session: Optional[bool] = None,
    ):
        """
        Args:
            config: A ``ConvoCoreConfig``, a config dict, or None for defaults.
            provider: Provider adapter to use. When omitted and
                ``providers.default`` is configured, that provider is created.
            single_session: Overrides ``sessions.single_session``.
        """
        if config is None:
            config = load_config()
        elif isinstance(config, Mapping):
            config = load_config(config_dict=dict(config))
        self.config = config

        self.notifier = ChangeNotifier(max_listeners=config.sessions.max_listeners)
        use_single = config.sessions.single_session if single_session is None else single_session
        self.store = SingleSessionStore(self.notifier) if use_single else MultiSessionStore(self.notifier)
        self.models = ModelRegistry(self.notifier)

        self._provider = provider
        if self._provider is None and config.providers.default:
            self._provider = self._create_provider(config.providers.default)
        logger.info(
            "ConvoCore initialized (%s store, provider=%s).",
            "single-session" if use_single else "multi-session",
            self._provider.get_name() if self._provider else None,
        )

    def _create_provider(self, name: str) -> BaseProvider:
        provider_cls = PROVIDER_MAP.get(name)
        if provider_cls is None:
            raise ConfigError(f"Unknown provider '{name}'. Available: {sorted(PROVIDER_MAP)}")
        provider_config = getattr(self.config.providers, name).model_dump()
        provider_config["decode_errors"] = self.config.stream.decode_errors
        return provider_cls(provider_config, log_raw_payloads=self.config.log_raw_payloads)

    async def __aenter__(self) -> "ConvoCore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --- Provider wiring ---

    @property
    def provider(self) -> Optional[BaseProvider]:
        return self._provider

    def set_provider(self, provider: Optional[BaseProvider]) -> None:
        """Register (or clear, with None) the provider used by network operations."""
        self._provider = provider
        logger.info("Provider set to %s.", provider.get_name() if provider else None)

    def _require_provider(self, operation: str) -> BaseProvider:
        if self._provider is None:
            raise ProviderNotConfigured(operation)
        return self._provider

    def _resolve_model(self, model: Optional[str], session_id: Optional[str]) -> str:
        resolved = model or self.store.get_model(session_id) or getattr(self._provider, "default_model", None)
        if not isinstance(resolved, str) or not resolved:
            raise InvalidArgumentType("model", "model id", "null")
        return resolved

    def build_payload(self, session_id: Optional[str] = None) -> List[Message]:
        """The session's system instruction (as a "system" message) followed by its history."""
        payload: List[Message] = []
        instruction = self.store.get_system_instruction(session_id)
        if instruction:
            payload.append(Message(role="system", parts=[Part(text=instruction)]))
        session = self.store.get_session(session_id)
        if session is not None:
            payload.extend(session.entries)
        return payload

    # --- Network operations ---

    async def get_models(self, page_size: Optional[int] = None, page_token: Optional[str] = None) -> ModelPage:
        """
        Fetch a page of models and insert them into the catalog.

        Args:
            page_size: Page size; defaults to ``providers.models_page_size``.
            page_token: Page to fetch; pass ``models.next_page_token`` to continue.

        Returns:
            The page, holding only the descriptors that were new to the catalog.

        Raises:
            ProviderNotConfigured: If no provider is registered.
        """
        provider = self._require_provider("get_models")
        page = await provider.list_models(page_size or self.config.providers.models_page_size, page_token)
        if page.error is not None:
            logger.warning("Model listing failed: %s", page.error.message)
            return page

        self.models.next_page_token = page.next_page_token
        inserted: List[ModelDescriptor] = []
        for descriptor in page.models:
            record = self.models.insert(descriptor)
            if record is not None:
                inserted.append(record)
        logger.debug("Inserted %d of %d listed model(s).", len(inserted), len(page.models))
        return ModelPage(models=inserted, next_page_token=page.next_page_token, raw_response=page.raw_response)

    async def count_tokens(
        self,
        payload: Optional[ContextPayload] = None,
        model: Optional[str] = None,
        session_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TokenCountResult:
        """
        Count tokens for ``payload`` (default: the session's payload, see
        ``build_payload``) with ``model`` (default: the session's model).
        """
        provider = self._require_provider("count_tokens")
        if payload is None:
            payload = self.build_payload(session_id)
        return await provider.count_tokens(
            payload,
            self._resolve_model(model, session_id),
            self.store.generation_settings(session_id),
            cancel_event,
        )

    async def generate_content(
        self,
        payload: Optional[ContextPayload] = None,
        model: Optional[str] = None,
        session_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        stream_callback: Optional[StreamCallback] = None,
    ) -> GenerationResult:
        """
        Generate content; streams when ``stream_callback`` is given.

        Raises:
            ProviderNotConfigured: If no provider is registered.
            TransportFailure: If the request or stream fails.
        """
        provider = self._require_provider("generate_content")
        if payload is None:
            payload = self.build_payload(session_id)
        return await provider.generate_content(
            payload,
            self._resolve_model(model, session_id),
            self.store.generation_settings(session_id),
            cancel_event,
            stream_callback,
        )

    def get_error_code(self, code: Union[str, int]) -> Optional[ErrorCode]:
        """Readable description of a provider code (finish reason, HTTP status...), or None."""
        if self._provider is None:
            return None
        entry = self._provider.error_codes.get(code)
        if entry is None and isinstance(code, str) and code.isdigit():
            entry = self._provider.error_codes.get(int(code))
        if isinstance(entry, ErrorCode):
            return entry
        if isinstance(entry, str):
            return ErrorCode(text=entry)
        if isinstance(entry, Mapping) and isinstance(entry.get("text"), str):
            hide = entry.get("hide")
            return ErrorCode(text=entry["text"], hide=hide if isinstance(hide, bool) else None)
        return None

    # --- Teardown ---

    async def close(self) -> None:
        """Release provider resources."""
        if self._provider is not None:
            await self._provider.close()

    def destroy(self) -> None:
        """Drop every session, every listener and the model catalog."""
        self.store.destroy()
        self.models.clear()
