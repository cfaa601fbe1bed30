# src/convocore/providers/base.py
"""
Abstract Base Class for generation providers.

This module defines the interface a provider adapter implements so the
ConvoCore facade can list models, count tokens and generate content without
knowing the provider's wire format. Adapters translate the canonical
``Message`` history into their request body and normalize responses back
through ``convocore.results`` (non-streaming) or ``StreamAggregator``
(streaming).
"""

import abc
import asyncio
from typing import Any, Dict, Optional, Sequence, Union
from collections.abc import Mapping

from ..models import ErrorCode, GenerationResult, GenerationSettings, Message, ModelPage, TokenCountResult
from ..streaming import StreamCallback

# A conversation as handed to a provider: canonical messages or raw
# mappings with a ``role``. A message with role "system" becomes the
# system instruction.
ContextPayload = Sequence[Union[Message, Mapping]]


class BaseProvider(abc.ABC):
    """
    Abstract Base Class for provider integrations.

    Ensures all providers offer a consistent set of core functionalities:
    - Paged discovery of available models.
    - Token counting for a prospective request.
    - Content generation, streaming or not, with a cancellation token.
    - A table of provider codes (finish reasons, statuses) to readable text.
    """
    log_raw_payloads_enabled: bool

    @abc.abstractmethod
    def __init__(self, config: Dict[str, Any], log_raw_payloads: bool = False):
        """
        Initialize the provider with its specific configuration.

        Args:
            config: Provider-specific settings (api_key, base_url, timeout...).
            log_raw_payloads: Whether raw request/response payloads are logged.
        """
        self.log_raw_payloads_enabled = log_raw_payloads

    @abc.abstractmethod
    def get_name(self) -> str:
        """Return the unique identifier name for this provider, e.g. "gemini"."""
        pass

    @abc.abstractmethod
    async def list_models(self, page_size: int = 50, page_token: Optional[str] = None) -> ModelPage:
        """
        Fetch one page of the provider's model listing.

        Args:
            page_size: Maximum number of models to return.
            page_token: Token of the page to fetch; None for the first page.

        Returns:
            A ``ModelPage`` with the descriptors and the next page token.
        """
        pass

    @abc.abstractmethod
    async def count_tokens(
        self,
        payload: ContextPayload,
        model: str,
        settings: Optional[GenerationSettings] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TokenCountResult:
        """
        Count the tokens a generation request for ``payload`` would use.

        Raises:
            TransportFailure: If the request cannot be completed.
        """
        pass

    @abc.abstractmethod
    async def generate_content(
        self,
        payload: ContextPayload,
        model: str,
        settings: Optional[GenerationSettings] = None,
        cancel_event: Optional[asyncio.Event] = None,
        stream_callback: Optional[StreamCallback] = None,
    ) -> GenerationResult:
        """
        Generate the next message(s) for ``payload``.

        When ``stream_callback`` is given the response is streamed: the
        callback receives every incremental ``StreamUpdate`` followed by a
        final ``done=True`` update, and the returned result carries the full
        accumulated text.

        Raises:
            TransportFailure: If the request or the stream fails. No partial
                result is returned.
        """
        pass

    @property
    def error_codes(self) -> Dict[Union[str, int], ErrorCode]:
        """Provider code to description table consulted by ``ConvoCore.get_error_code``."""
        return {}

    async def close(self) -> None:
        """
        Clean up any resources used by the provider, such as network sessions.
        Providers that do not need explicit cleanup can keep this default.
        """
        pass
