"""
StudyVault Backend — AI Domain Schemas
========================================

What:  Pydantic models for the values that flow through the AI gateway:
       provider configs, generate requests/results, enhancement results,
       capability descriptors, usage records, classified errors, and chat
       sessions/messages.
How:   Persisted shapes use `from_attributes` so the store can build them
       straight from ORM rows; transient shapes are plain models.
Who:   Shared by adapters, the registry, the AI service, the chat controller,
       and the HTTP layer.
"""

import uuid
from datetime import date as date_type, datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, Field, model_validator

from studyvault.config import settings
from studyvault.exceptions import ErrorCode

T = TypeVar("T")


# ══════════════════════════════════════════════════════════════════════════
# Enumerations
# ══════════════════════════════════════════════════════════════════════════


class ProviderName(str, Enum):
    """The closed set of upstream LLM vendors."""

    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class EnhancementType(str, Enum):
    """Structured enhancement kinds understood by the extraction pipeline."""

    SUMMARY = "summary"
    KEY_POINTS = "key_points"
    QUESTIONS = "questions"
    QUIZ = "quiz"


# ══════════════════════════════════════════════════════════════════════════
# Provider Configuration
# ══════════════════════════════════════════════════════════════════════════


class ProviderConfig(BaseModel):
    """
    One owner's credential + model choice for one provider.

    Invariant: at most one config per owner has is_active=True (enforced by
    AIServiceRegistry.set_active_service, not by this model).
    """

    id: Optional[uuid.UUID] = None
    owner_id: str
    provider: ProviderName
    api_key: str = ""
    model: str = ""
    is_active: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


class CapabilityDescriptor(BaseModel):
    """Static per-provider metadata used for UI gating and cost math."""

    models: Tuple[str, ...]
    max_context_tokens: int
    supports_vision: bool
    supports_streaming: bool
    cost_per_input_token: float
    cost_per_output_token: float

    model_config = {"frozen": True}


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# ══════════════════════════════════════════════════════════════════════════
# Generation
# ══════════════════════════════════════════════════════════════════════════


class GenerateRequest(BaseModel):
    """Vendor-neutral text generation request."""

    prompt: str = Field(min_length=1)
    system_prompt: Optional[str] = None
    max_tokens: int = Field(default_factory=lambda: settings.default_max_tokens, ge=1)
    temperature: float = Field(default_factory=lambda: settings.default_temperature, ge=0.0, le=2.0)


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    @model_validator(mode="after")
    def _fill_total(self) -> "TokenUsage":
        if not self.total_tokens:
            self.total_tokens = self.input_tokens + self.output_tokens
        return self

    @property
    def tokens(self) -> int:
        return self.total_tokens


class GenerateResult(BaseModel):
    """
    Vendor-neutral generation result.

    `content` is always present: adapters raise instead of returning an
    empty success. `questions` is only populated by generate_quiz.
    """

    content: str = Field(min_length=1)
    usage: Optional[TokenUsage] = None
    questions: Optional[List[Dict[str, Any]]] = None


class EnhancementResult(BaseModel, Generic[T]):
    """
    Tagged result of a derived operation run through the gateway.

    success=True  ⇒ data, provider, model, duration_ms are set; error is None
    success=False ⇒ error (and error_code), provider are set; data is None
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    duration_ms: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_union(self) -> "EnhancementResult[T]":
        if self.success:
            if self.data is None or self.error is not None:
                raise ValueError("successful EnhancementResult needs data and no error")
        elif self.error is None or self.data is not None:
            raise ValueError("failed EnhancementResult needs an error and no data")
        return self

    @classmethod
    def ok(
        cls,
        data: Any,
        provider: str,
        model: str,
        duration_ms: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "EnhancementResult[T]":
        return cls(
            success=True,
            data=data,
            provider=provider,
            model=model,
            duration_ms=duration_ms,
            metadata=metadata or {},
        )

    @classmethod
    def fail(
        cls,
        error: str,
        provider: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
    ) -> "EnhancementResult[T]":
        return cls(success=False, error=error, provider=provider, error_code=error_code)


# ══════════════════════════════════════════════════════════════════════════
# Errors & Usage
# ══════════════════════════════════════════════════════════════════════════


class ClassifiedError(BaseModel):
    code: ErrorCode
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class UsageRecord(BaseModel):
    """Append-only record of one billed (or probe) operation."""

    id: Optional[uuid.UUID] = None
    owner_id: str
    provider: str
    operation_type: str
    tokens_used: int = 0
    date: date_type
    cost_estimate: float = 0.0
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class UsageStats(BaseModel):
    total_tokens: int = 0
    total_cost: float = 0.0
    operation_counts: Dict[str, int] = Field(default_factory=dict)
    service_counts: Dict[str, int] = Field(default_factory=dict)
    daily_usage: Dict[str, int] = Field(default_factory=dict)


# ══════════════════════════════════════════════════════════════════════════
# Chat
# ══════════════════════════════════════════════════════════════════════════


class ChatSession(BaseModel):
    id: uuid.UUID
    owner_id: str
    provider: str
    model: str
    system_prompt: Optional[str] = None
    session_name: str = "New chat"
    total_messages: int = 0
    total_tokens_used: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ChatMessage(BaseModel):
    """
    One chat turn. Messages without an id exist only in local (optimistic)
    state and have not been confirmed by the store yet.
    """

    id: Optional[uuid.UUID] = None
    session_id: Optional[uuid.UUID] = None
    owner_id: str
    role: MessageRole
    content: str
    token_count: int = 0
    created_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_optimistic(self) -> bool:
        return self.id is None


class ContextFile(BaseModel):
    """A study file attached to a chat turn as extra context."""

    name: str
    content: Optional[str] = None
