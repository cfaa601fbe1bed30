# src/convocore/models.py
"""
Core data models for the ConvoCore library.

This module defines the Pydantic models used to represent the canonical
content shape (messages and their parts), token bookkeeping, the model
catalog, and the structured results returned by provider adapters for
token counting and content generation (streaming and non-streaming).

Field names are snake_case; the provider wire format (camelCase such as
``inlineData`` or ``finishReason``) is accepted and produced through aliases.
"""

import math
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InlineData(BaseModel):
    """Binary payload carried inline in a message part."""
    mime_type: str = Field(description="MIME type of the payload, e.g. 'image/png'.")
    data: str = Field(description="Encoded payload (usually base64).")


class Part(BaseModel):
    """
    An atomic content unit within a message.

    Only two kinds are recognized: ``text`` and ``inline_data``. Anything
    else found in external input is dropped by the ContentBuilder.
    """
    model_config = ConfigDict(populate_by_name=True)

    text: Optional[str] = Field(default=None, description="Text content of the part.")
    inline_data: Optional[InlineData] = Field(default=None, alias="inlineData", description="Inline binary data.")


class Message(BaseModel):
    """
    Canonical content record: one turn in a conversation.

    Attributes:
        role: Free-form role string ("user", "model", ...). Optional.
        parts: Ordered list of parts.
        finish_reason: Terminal-state marker; absent for in-progress entries.
    """
    model_config = ConfigDict(populate_by_name=True)

    role: Optional[str] = Field(default=None, description="Role of the entity that produced the message.")
    parts: List[Part] = Field(default_factory=list, description="Ordered message parts.")
    finish_reason: Optional[Union[str, int]] = Field(default=None, alias="finishReason", description="Why generation stopped.")

    @property
    def text(self) -> str:
        """Concatenated text of every text part."""
        return "".join(part.text for part in self.parts if isinstance(part.text, str))

    def to_wire(self) -> Dict[str, Any]:
        """Dump using the provider wire aliases, omitting absent fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class TokenCount(BaseModel):
    """Token bookkeeping for one history entry."""
    count: Optional[Union[int, float]] = Field(default=None, description="Token count, if known.")
    hide: Optional[bool] = Field(default=None, description="Whether UIs should hide this count.")

    @field_validator("count", mode="before")
    @classmethod
    def ensure_finite_count(cls, v: Any) -> Any:
        """Reject booleans and non-finite numbers."""
        if v is None:
            return v
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
            raise ValueError(f"count must be a finite number, got {v!r}")
        return v


class CustomValueDescriptor(BaseModel):
    """Name and semantic type recorded the first time a custom value is set."""
    name: str
    type: str


class FileAttachment(BaseModel):
    """File attached to a session, kept both raw and base64-encoded."""
    mime: str
    data: str
    base64: str


class GenerationSettings(BaseModel):
    """Per-session generation parameters forwarded to provider adapters."""
    max_output_tokens: Optional[Union[int, float]] = None
    temperature: Optional[Union[int, float]] = None
    top_p: Optional[Union[int, float]] = None
    top_k: Optional[Union[int, float]] = None
    presence_penalty: Optional[Union[int, float]] = None
    frequency_penalty: Optional[Union[int, float]] = None
    enable_enhanced_civic_answers: Optional[bool] = None


class ModelCategory(BaseModel):
    """Category membership of a model descriptor."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    display_name: str = Field(alias="displayName")
    index: Union[int, float]


class ModelDescriptor(BaseModel):
    """
    Normalized catalog record for one available model.

    Fields whose source value had the wrong type are stored as None rather
    than rejected; see ModelRegistry.insert.
    """
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    id: Optional[str] = None
    name: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")
    version: Optional[str] = None
    description: Optional[str] = None
    input_token_limit: Optional[Union[int, float]] = Field(default=None, alias="inputTokenLimit")
    output_token_limit: Optional[Union[int, float]] = Field(default=None, alias="outputTokenLimit")
    temperature: Optional[Union[int, float]] = None
    max_temperature: Optional[Union[int, float]] = Field(default=None, alias="maxTemperature")
    top_p: Optional[Union[int, float]] = Field(default=None, alias="topP")
    top_k: Optional[Union[int, float]] = Field(default=None, alias="topK")
    supported_generation_methods: Optional[List[str]] = Field(default=None, alias="supportedGenerationMethods")
    index: Union[int, float] = 9999999
    category: Optional[ModelCategory] = None
    raw_response: Any = Field(default=None, exclude=True, description="Untouched provider record.")


class ModelCategoryEntry(BaseModel):
    """A category node of the catalog holding its member descriptors sorted by index."""
    category: str
    display_name: str
    index: Union[int, float]
    models: List[ModelDescriptor] = Field(default_factory=list)


class ErrorCode(BaseModel):
    """Human-readable description for a provider code (finish reason, status...)."""
    text: str
    hide: Optional[bool] = None


class ProviderErrorDetail(BaseModel):
    """Error object reported in a provider response body."""
    code: Optional[int] = None
    message: Optional[str] = None
    status: Optional[str] = None
    details: Any = None


class TokenUsage(BaseModel):
    """Token usage reported with a generation result or a single stream fragment."""
    candidates: Optional[int] = None
    prompt: Optional[int] = None
    total: Optional[int] = None


class GenerationResult(BaseModel):
    """Canonical result of a content-generation call."""
    contents: List[Message] = Field(default_factory=list)
    token_usage: Optional[TokenUsage] = None
    model_version: Optional[str] = None
    error: Optional[ProviderErrorDetail] = None
    raw_response: Any = Field(default=None, exclude=True)

    @property
    def ok(self) -> bool:
        return self.error is None


class StreamUpdate(BaseModel):
    """
    Incremental notification emitted while a response streams in.

    ``contents`` carries cumulative text for every text part of the fragment;
    ``token_usage`` is fragment-local. The last update has ``done=True`` and
    no content.
    """
    contents: List[Message] = Field(default_factory=list)
    token_usage: Optional[TokenUsage] = None
    done: bool = False


class PromptTokensDetails(BaseModel):
    token_count: Optional[int] = None
    modality: Optional[str] = None


class TokenCountResult(BaseModel):
    """Structured usage record returned by a provider's token counter."""
    total_tokens: Optional[int] = None
    cached_content_token_count: Optional[int] = None
    prompt_tokens_details: List[PromptTokensDetails] = Field(default_factory=list)
    error: Optional[ProviderErrorDetail] = None
    raw_response: Any = Field(default=None, exclude=True)


class ModelPage(BaseModel):
    """One page of a provider's model listing."""
    models: List[ModelDescriptor] = Field(default_factory=list)
    next_page_token: Optional[str] = None
    error: Optional[ProviderErrorDetail] = None
    raw_response: Any = Field(default=None, exclude=True)
