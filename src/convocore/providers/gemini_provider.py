# src/convocore/providers/gemini_provider.py
"""
Gemini provider for ConvoCore.

Talks to the Google Generative Language REST API (``v1beta``) over
``aiohttp``: paged model listing, ``countTokens``, ``generateContent`` and
``streamGenerateContent``. The streamed body is handed to
``StreamAggregator``, which repairs the partial JSON array fragments the
endpoint writes.

Model catalog ordering: only models supporting both ``generateContent`` and
``countTokens`` whose id starts with a known ``gemini-<version>-flash`` /
``-pro`` family are kept. Exact family ids are placed in the "main" (release)
or "exp" (experimental) category, newest version first; everything else
lands in "others" with the default index.
"""

import asyncio
import json
import logging
import os
from collections.abc import Mapping
from http import HTTPStatus
from typing import Any, Dict, List, Optional, Tuple, Union

import aiohttp

from ..content import ContentBuilder
from ..exceptions import ConfigError, TransportFailure
from ..model_registry import ModelRegistry
from ..models import (
    ErrorCode,
    GenerationResult,
    GenerationSettings,
    Message,
    ModelDescriptor,
    ModelPage,
    PromptTokensDetails,
    TokenCountResult,
)
from ..results import build_error, build_result
from ..streaming import StreamAggregator, StreamCallback
from .base import BaseProvider, ContextPayload

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_TIMEOUT = 120.0
OTHER_MODELS_INDEX = 999999

MODEL_CATEGORIES = {
    "main": {"display_name": "--> Main models", "index": 0},
    "exp": {"display_name": "--> Experimental models", "index": 1},
    "others": {"display_name": "--> Other models", "index": 2},
}

FINISH_REASONS: Dict[str, ErrorCode] = {
    "FINISH_REASON_UNSPECIFIED": ErrorCode(text="Default value. This value is unused."),
    "STOP": ErrorCode(text="Natural stop point of the model or provided stop sequence.", hide=True),
    "MAX_TOKENS": ErrorCode(text="The maximum number of tokens as specified in the request was reached."),
    "SAFETY": ErrorCode(text="The response candidate content was flagged for safety reasons."),
    "RECITATION": ErrorCode(text="The response candidate content was flagged for recitation reasons."),
    "LANGUAGE": ErrorCode(text="The response candidate content was flagged for using an unsupported language."),
    "OTHER": ErrorCode(text="Unknown reason."),
    "BLOCKLIST": ErrorCode(text="Token generation stopped because the content contains forbidden terms."),
    "PROHIBITED_CONTENT": ErrorCode(text="Token generation stopped for potentially containing prohibited content."),
    "SPII": ErrorCode(
        text="Token generation stopped because the content potentially contains "
             "Sensitive Personally Identifiable Information (SPII)."
    ),
    "MALFORMED_FUNCTION_CALL": ErrorCode(text="The function call generated by the model is invalid."),
    "IMAGE_SAFETY": ErrorCode(text="Token generation stopped because generated images contain safety violations."),
}

# generation setting -> generationConfig key
GENERATION_CONFIG_KEYS = {
    "max_output_tokens": "maxOutputTokens",
    "temperature": "temperature",
    "top_p": "topP",
    "top_k": "topK",
    "presence_penalty": "presencePenalty",
    "frequency_penalty": "frequencyPenalty",
    "enable_enhanced_civic_answers": "enableEnhancedCivicAnswers",
}


def build_model_order(newest_major: int = 99) -> Dict[str, Tuple[int, str]]:
    """Model family id -> (sort index, category id), newest versions first."""
    order: Dict[str, Tuple[int, str]] = {}
    counters = {"main": -1, "exp": -1}

    def add(version: str) -> None:
        for suffix, category in (("flash", "main"), ("pro", "main"), ("flash-exp", "exp"), ("pro-exp", "exp")):
            counters[category] += 1
            order[f"gemini-{version}-{suffix}"] = (counters[category], category)

    for major in range(newest_major, 1, -1):
        add(f"{major}.0")
        add(f"{major}.5")
    add("1.5")
    return order


MODEL_ORDER = build_model_order()


def status_text(status: int, reason: Optional[str] = None) -> str:
    """Readable text for an HTTP status, preferring the server's reason phrase."""
    if reason:
        return reason
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "???"


class GeminiProvider(BaseProvider):
    """
    ConvoCore provider for the Google Gemini REST API.
    """
    _session: Optional[aiohttp.ClientSession] = None

    def __init__(self, config: Dict[str, Any], log_raw_payloads: bool = False):
        """
        Initializes the GeminiProvider.

        Args:
            config: Configuration dictionary from `[providers.gemini]` containing:
                    'api_key' (optional): Google AI API key.
                    'api_key_env_var' (optional): Environment variable to read the API key from.
                    'base_url' (optional): API root (default: the public v1beta endpoint).
                    'default_model' (optional): Model used when none is given.
                    'timeout' (optional): Total request timeout in seconds.
                    'decode_errors' (optional): UTF-8 error mode for streamed bodies.
            log_raw_payloads: Whether to log raw request/response payloads.
        """
        super().__init__(config, log_raw_payloads)
        self._api_key_env_var = config.get("api_key_env_var")
        api_key = config.get("api_key")
        if not api_key and self._api_key_env_var:
            api_key = os.environ.get(self._api_key_env_var)
        if not api_key:
            api_key = os.environ.get("GOOGLE_API_KEY")
        self.api_key = api_key

        base_url = config.get("base_url") or DEFAULT_BASE_URL
        self._base_url = base_url[:-1] if base_url.endswith("/") else base_url
        self.default_model = config.get("default_model") or DEFAULT_MODEL
        try:
            self._timeout = float(config.get("timeout", DEFAULT_TIMEOUT))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid Gemini timeout: {config.get('timeout')!r}") from e
        self._decode_errors = config.get("decode_errors", "replace")
        self._content_builder = ContentBuilder()
        self._error_codes: Dict[Union[str, int], ErrorCode] = {
            **{status.value: ErrorCode(text=status.phrase) for status in HTTPStatus},
            **FINISH_REASONS,
        }

        if not self.api_key:
            logger.warning("Google API key not found. Requests to the Gemini API will be rejected.")
        logger.info(f"GeminiProvider configured for {self._base_url}")

    def get_name(self) -> str:
        """Returns the provider name: 'gemini'."""
        return "gemini"

    @property
    def error_codes(self) -> Dict[Union[str, int], ErrorCode]:
        return self._error_codes

    async def _get_session(self) -> aiohttp.ClientSession:
        """Gets or creates the aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
            logger.debug("Created new aiohttp.ClientSession for GeminiProvider.")
        return self._session

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-goog-api-key"] = self.api_key
        return headers

    def _check_cancelled(self, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise TransportFailure(self.get_name(), "Request cancelled")

    # --- Request building ---

    def build_request(self, payload: ContextPayload, settings: Optional[GenerationSettings] = None) -> Dict[str, Any]:
        """
        Build a ``generateContent`` request body.

        Messages with role "system" become the ``systemInstruction``; all other
        messages go to ``contents`` in order. Finish reasons are never sent.
        """
        body: Dict[str, Any] = {"safetySettings": []}
        for item in payload:
            if item is None:
                continue
            role = item.role if isinstance(item, Message) else item.get("role")
            if role != "system":
                message = self._content_builder.build_message(item, role=role, keep_finish_reason=False)
                body.setdefault("contents", []).append(message.to_wire())
            else:
                message = self._content_builder.build_message(item, keep_finish_reason=False)
                message.role = None
                body["systemInstruction"] = message.to_wire()

        generation_config: Dict[str, Any] = {}
        if settings is not None:
            for field_name, key in GENERATION_CONFIG_KEYS.items():
                value = getattr(settings, field_name)
                if value is not None:
                    generation_config[key] = value
        body["generationConfig"] = generation_config
        return body

    # --- HTTP helpers ---

    async def _request_json(self, method: str, url: str, cancel_event: Optional[asyncio.Event] = None,
                            **kwargs: Any) -> Any:
        """Perform a request and decode its JSON body (error bodies included)."""
        self._check_cancelled(cancel_event)
        session = await self._get_session()
        try:
            async with session.request(method, url, headers=self._headers(), **kwargs) as response:
                try:
                    result = await response.json(content_type=None)
                except (json.JSONDecodeError, aiohttp.ContentTypeError) as e:
                    text = status_text(response.status, response.reason)
                    logger.error(f"Gemini returned a non-JSON body (HTTP {response.status} {text}).")
                    raise TransportFailure(
                        self.get_name(), f"Error HTTP {response.status}: {text}", status=response.status
                    ) from e
                if self.log_raw_payloads_enabled:
                    logger.debug(f"RAW GEMINI RESPONSE ({url}): {json.dumps(result)[:2000]}")
                return result
        except TransportFailure:
            raise
        except asyncio.TimeoutError as e:
            logger.error(f"Request to Gemini at {url} timed out after {self._timeout} seconds.")
            raise TransportFailure(self.get_name(), f"Request timed out after {self._timeout}s.") from e
        except aiohttp.ClientError as e:
            logger.error(f"Gemini request to {url} failed: {e}", exc_info=True)
            raise TransportFailure(self.get_name(), f"Request failed: {e}") from e

    # --- BaseProvider operations ---

    async def list_models(self, page_size: int = 50, page_token: Optional[str] = None) -> ModelPage:
        """Fetch one page of models, already categorized and indexed for the catalog."""
        params: Dict[str, Any] = {"pageSize": page_size}
        if page_token:
            params["pageToken"] = page_token
        result = await self._request_json("GET", f"{self._base_url}/models", params=params)
        if not isinstance(result, Mapping):
            raise TransportFailure(self.get_name(), "Model listing returned an unexpected body.")
        if result.get("error"):
            return ModelPage(error=build_error(result), raw_response=result)

        next_token = result.get("nextPageToken")
        models = self.categorize_models(result.get("models") or [])
        logger.info(f"Discovered {len(models)} supported models from Google AI.")
        return ModelPage(
            models=models,
            next_page_token=next_token if isinstance(next_token, str) else None,
            raw_response=result,
        )

    def categorize_models(self, raw_models: List[Any]) -> List[ModelDescriptor]:
        """Filter raw model records and attach category and sort index."""
        buckets: Dict[str, List[Tuple[Mapping, int]]] = {name: [] for name in MODEL_CATEGORIES}
        for raw in raw_models:
            if not isinstance(raw, Mapping) or not isinstance(raw.get("name"), str):
                continue
            model_id = raw["name"][len("models/"):]
            methods = raw.get("supportedGenerationMethods")
            if not isinstance(methods, list) or "generateContent" not in methods or "countTokens" not in methods:
                continue
            if not any(model_id.startswith(family) for family in MODEL_ORDER):
                continue
            index, category = MODEL_ORDER.get(model_id, (OTHER_MODELS_INDEX, "others"))
            buckets[category].append((raw, index))

        descriptors: List[ModelDescriptor] = []
        for category_id, entries in buckets.items():
            category = MODEL_CATEGORIES[category_id]
            for raw, index in entries:
                descriptors.append(ModelRegistry.normalize({
                    **raw,
                    "id": raw["name"][len("models/"):],
                    "index": index,
                    "category": {"id": category_id, "displayName": category["display_name"], "index": category["index"]},
                    "raw_response": raw,
                }))
        return descriptors

    async def count_tokens(
        self,
        payload: ContextPayload,
        model: str,
        settings: Optional[GenerationSettings] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TokenCountResult:
        """Count tokens via ``models/{model}:countTokens``. An empty history counts as None."""
        model = model or self.default_model
        request = self.build_request(payload, settings)
        if not request.get("contents"):
            return TokenCountResult(raw_response={})
        request["model"] = f"models/{model}"

        result = await self._request_json(
            "POST", f"{self._base_url}/models/{model}:countTokens",
            cancel_event=cancel_event, json={"generateContentRequest": request},
        )
        if not isinstance(result, Mapping):
            raise TransportFailure(self.get_name(), "Token count returned an unexpected body.")
        if result.get("error"):
            return TokenCountResult(error=build_error(result), raw_response=result)

        details_raw = result.get("promptTokensDetails")
        if isinstance(details_raw, Mapping):
            details_raw = [details_raw]
        details = [
            PromptTokensDetails(
                token_count=item.get("tokenCount") if isinstance(item.get("tokenCount"), int) else None,
                modality=item.get("modality") if isinstance(item.get("modality"), str) else None,
            )
            for item in (details_raw or []) if isinstance(item, Mapping)
        ]
        total = result.get("totalTokens")
        cached = result.get("cachedContentTokenCount")
        return TokenCountResult(
            total_tokens=total if isinstance(total, int) else None,
            cached_content_token_count=cached if isinstance(cached, int) else None,
            prompt_tokens_details=details,
            raw_response=result,
        )

    async def generate_content(
        self,
        payload: ContextPayload,
        model: str,
        settings: Optional[GenerationSettings] = None,
        cancel_event: Optional[asyncio.Event] = None,
        stream_callback: Optional[StreamCallback] = None,
    ) -> GenerationResult:
        """Generate content, streaming through ``StreamAggregator`` when a callback is given."""
        model = model or self.default_model
        request = self.build_request(payload, settings)
        if self.log_raw_payloads_enabled:
            logger.debug(f"RAW GEMINI REQUEST ({model}): {json.dumps(request)[:2000]}")

        if stream_callback is None:
            result = await self._request_json(
                "POST", f"{self._base_url}/models/{model}:generateContent",
                cancel_event=cancel_event, json=request,
            )
            return build_result(result, self._content_builder)

        self._check_cancelled(cancel_event)
        url = f"{self._base_url}/models/{model}:streamGenerateContent"
        session = await self._get_session()
        aggregator = StreamAggregator(
            content_builder=self._content_builder,
            provider_name=self.get_name(),
            log_raw_payloads=self.log_raw_payloads_enabled,
            decode_errors=self._decode_errors,
        )
        try:
            async with session.post(url, headers=self._headers(), json=request) as response:
                if response.status >= 400:
                    text = status_text(response.status, response.reason)
                    logger.error(f"Gemini streaming request failed: HTTP {response.status} {text}")
                    raise TransportFailure(
                        self.get_name(), f"Error HTTP {response.status}: {text}", status=response.status
                    )
                logger.debug(f"Processing stream response from Gemini ({model})")
                return await aggregator.consume(response.content.iter_any(), stream_callback, cancel_event)
        except TransportFailure:
            raise
        except asyncio.TimeoutError as e:
            logger.error(f"Streaming request to Gemini timed out after {self._timeout} seconds.")
            raise TransportFailure(self.get_name(), f"Request timed out after {self._timeout}s.") from e
        except aiohttp.ClientError as e:
            logger.error(f"Gemini streaming request to {url} failed: {e}", exc_info=True)
            raise TransportFailure(self.get_name(), f"Request failed: {e}") from e

    async def close(self) -> None:
        """Closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("GeminiProvider aiohttp session closed.")
        self._session = None
