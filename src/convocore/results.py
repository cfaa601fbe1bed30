# src/convocore/results.py
"""
Normalization of raw generation responses into ``GenerationResult``.

Shared by the non-streaming path (one response object) and the stream
aggregator (one object per decoded fragment, plus the last-seen object for
the final result). The raw shape is the Generative Language REST response:
``candidates[*].content``, ``candidates[*].finishReason``, ``usageMetadata``,
``modelVersion`` and, on failure, ``error``.
"""

import logging
from collections.abc import Mapping
from typing import Any, List, Optional

from .content import ContentBuilder, default_builder
from .models import GenerationResult, Message, ProviderErrorDetail, TokenUsage

logger = logging.getLogger(__name__)


def _int_or_none(value: Any) -> Optional[int]:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def build_usage(result: Mapping) -> Optional[TokenUsage]:
    """Token usage of one response object, or None when it reports none."""
    metadata = result.get("usageMetadata")
    if not isinstance(metadata, Mapping):
        return None
    return TokenUsage(
        candidates=_int_or_none(metadata.get("candidatesTokenCount")),
        prompt=_int_or_none(metadata.get("promptTokenCount")),
        total=_int_or_none(metadata.get("totalTokenCount")),
    )


def build_contents(result: Mapping, builder: Optional[ContentBuilder] = None) -> List[Message]:
    """
    One ``Message`` per candidate that carries content. The finish reason is
    upper-cased, or None when the candidate has no string finish reason.
    """
    builder = builder or default_builder
    contents: List[Message] = []
    candidates = result.get("candidates")
    if not isinstance(candidates, list):
        return contents
    for candidate in candidates:
        if not isinstance(candidate, Mapping):
            continue
        content = candidate.get("content")
        if not content or not isinstance(content, Mapping):
            continue
        message = builder.build_message(content, role=content.get("role"))
        reason = candidate.get("finishReason")
        message.finish_reason = reason.upper() if isinstance(reason, str) else None
        contents.append(message)
    return contents


def build_error(result: Mapping) -> ProviderErrorDetail:
    """Error detail of a failed response."""
    error = result.get("error")
    if not isinstance(error, Mapping):
        error = {}
    code = error.get("code")
    message = error.get("message")
    status = error.get("status")
    return ProviderErrorDetail(
        code=_int_or_none(code),
        message=message if isinstance(message, str) else None,
        status=status if isinstance(status, str) else None,
        details=error.get("details") or None,
    )


def build_result(result: Any, builder: Optional[ContentBuilder] = None) -> GenerationResult:
    """Turn a raw response object into a ``GenerationResult``."""
    if not isinstance(result, Mapping):
        logger.warning("Generation response is not an object (%s); returning an empty result.", type(result).__name__)
        return GenerationResult(raw_response=result)

    if result.get("error"):
        return GenerationResult(error=build_error(result), raw_response=result)

    usage = build_usage(result)
    if usage is None:
        logger.warning("Usage metadata not found in the generation result.")
        usage = TokenUsage()
    model_version = result.get("modelVersion")
    return GenerationResult(
        contents=build_contents(result, builder),
        token_usage=usage,
        model_version=model_version if isinstance(model_version, str) else None,
        raw_response=result,
    )
