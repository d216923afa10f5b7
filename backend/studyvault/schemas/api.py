"""
StudyVault Backend — HTTP Request/Response Schemas
====================================================

What:  Pydantic models for the bodies accepted and returned by the API.
How:   Thin wrappers around the domain schemas in schemas/ai.py; API keys
       are never echoed back in full (see mask_api_key).
Who:   routes/ai.py, routes/chat.py, routes/health.py.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from studyvault.schemas.ai import (
    ChatMessage,
    ContextFile,
    EnhancementType,
    ProviderConfig,
    ProviderName,
    TokenUsage,
)


def mask_api_key(api_key: str) -> str:
    """'sk-abcdef...wxyz' style mask; short keys are fully hidden."""
    if not api_key:
        return ""
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:4]}...{api_key[-4:]}"


# ── Provider configuration ────────────────────────────────────────────────


class ConfigResponse(BaseModel):
    id: Optional[uuid.UUID] = None
    provider: ProviderName
    model: str
    is_active: bool
    api_key_masked: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "ConfigResponse":
        return cls(
            id=config.id,
            provider=config.provider,
            model=config.model,
            is_active=config.is_active,
            api_key_masked=mask_api_key(config.api_key),
            created_at=config.created_at,
            updated_at=config.updated_at,
        )


class SaveConfigRequest(BaseModel):
    provider: str = Field(description="openai, gemini or anthropic")
    api_key: str = Field(min_length=1)
    model: Optional[str] = None
    is_active: bool = False


class SaveConfigResponse(BaseModel):
    config: ConfigResponse
    warnings: List[str] = Field(default_factory=list)


class ActivateConfigRequest(BaseModel):
    api_key: Optional[str] = None
    model: Optional[str] = None


class TestKeyRequest(BaseModel):
    provider: ProviderName
    api_key: str


class TestKeyResponse(BaseModel):
    provider: ProviderName
    valid: bool


# ── Generation ────────────────────────────────────────────────────────────


class GenerateBody(BaseModel):
    prompt: str = Field(min_length=1)
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = Field(default=None, ge=1)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)


class GenerateResponse(BaseModel):
    content: str
    usage: Optional[TokenUsage] = None


class ContentBody(BaseModel):
    content: str = Field(min_length=1, description="Study material to process")


class EnhanceNoteBody(ContentBody):
    enhancement_type: EnhancementType = EnhancementType.SUMMARY


class EnhancementResponse(BaseModel):
    """Wire form of EnhancementResult."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    duration_ms: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ── Chat ──────────────────────────────────────────────────────────────────


class ChatSendRequest(BaseModel):
    message: str = Field(min_length=1)
    session_id: Optional[uuid.UUID] = None
    context_files: List[ContextFile] = Field(default_factory=list)


class ChatSendResponse(BaseModel):
    session_id: Optional[uuid.UUID]
    state: str
    messages: List[ChatMessage]


class ChatCloseResponse(BaseModel):
    session_id: uuid.UUID
    deleted: bool


# ── Errors & health ───────────────────────────────────────────────────────


class ErrorResponse(BaseModel):
    """
    Shape of every error body produced by the global exception handlers.
    """

    error: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    request_id: str = ""
    requires_config: Optional[bool] = None


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str
    database: str = Field(description="connected, disconnected")
    providers: List[str] = Field(description="Supported provider identifiers")
    uptime_seconds: float
