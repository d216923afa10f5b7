"""
StudyVault Backend — AI Route Handlers
========================================

What:  Provider configuration, capability, usage and generation endpoints.
How:   Thin handlers: read the body, call the registry or AIService,
       shape the response. Provider failures raised by AIService.generate
       are mapped by the global exception handlers; derived operations
       return EnhancementResult bodies (success or classified failure).
Who:   The study frontend's settings page, note enhancer and quiz generator.

Route Inventory:
    GET  /api/ai/capabilities
    GET  /api/ai/configs
    PUT  /api/ai/configs
    POST /api/ai/configs/{provider}/activate
    POST /api/ai/configs/test
    GET  /api/ai/usage
    POST /api/ai/generate
    POST /api/ai/enhance
    POST /api/ai/quiz | /summary | /key-points | /questions | /enhance-text
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from studyvault.exceptions import ValidationError
from studyvault.schemas.ai import (
    CapabilityDescriptor,
    EnhancementResult,
    GenerateRequest,
    ProviderName,
    UsageStats,
)
from studyvault.schemas.api import (
    ActivateConfigRequest,
    ConfigResponse,
    ContentBody,
    EnhanceNoteBody,
    EnhancementResponse,
    ErrorResponse,
    GenerateBody,
    GenerateResponse,
    SaveConfigRequest,
    SaveConfigResponse,
    TestKeyRequest,
    TestKeyResponse,
)
from studyvault.routes.dependencies import get_ai_service, get_owner_id, get_registry
from studyvault.services.ai_service import AIService
from studyvault.services.provider_factory import validate_provider_config
from studyvault.services.registry import AIServiceRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["AI"])

_ERRORS = {
    400: {"description": "Invalid input or missing configuration", "model": ErrorResponse},
    429: {"description": "Provider rate limit or quota", "model": ErrorResponse},
    503: {"description": "Provider unavailable", "model": ErrorResponse},
}


def _to_response(result: EnhancementResult) -> EnhancementResponse:
    return EnhancementResponse(
        success=result.success,
        data=result.data,
        error=result.error,
        error_code=result.error_code.value if result.error_code else None,
        provider=result.provider,
        model=result.model,
        duration_ms=result.duration_ms,
        metadata=result.metadata,
    )


# ══════════════════════════════════════════════════════════════════════════
# Configuration
# ══════════════════════════════════════════════════════════════════════════


@router.get(
    "/capabilities",
    response_model=Dict[ProviderName, CapabilityDescriptor],
    summary="Static capability table for every supported provider",
)
async def get_capabilities(
    registry: AIServiceRegistry = Depends(get_registry),
) -> Dict[ProviderName, CapabilityDescriptor]:
    return registry.get_all_service_capabilities()


@router.get("/configs", response_model=List[ConfigResponse], summary="List the caller's configs")
async def list_configs(
    owner_id: str = Depends(get_owner_id),
    registry: AIServiceRegistry = Depends(get_registry),
) -> List[ConfigResponse]:
    configs = await registry.get_user_configs(owner_id)
    return [ConfigResponse.from_config(c) for c in configs]


@router.put(
    "/configs",
    response_model=SaveConfigResponse,
    responses={400: _ERRORS[400]},
    summary="Create or replace the caller's config for one provider",
)
async def save_config(
    body: SaveConfigRequest,
    owner_id: str = Depends(get_owner_id),
    registry: AIServiceRegistry = Depends(get_registry),
) -> SaveConfigResponse:
    validation = validate_provider_config(body.provider, body.api_key, body.model)
    if not validation.is_valid:
        raise ValidationError(
            message="; ".join(validation.errors),
            field="provider",
            context={"errors": validation.errors},
        )
    config = await registry.save_config(
        owner_id, body.provider, body.api_key, model=body.model, is_active=body.is_active
    )
    return SaveConfigResponse(
        config=ConfigResponse.from_config(config),
        warnings=validation.warnings,
    )


@router.post(
    "/configs/{provider}/activate",
    response_model=ConfigResponse,
    responses={404: {"description": "No stored config", "model": ErrorResponse}},
    summary="Make one provider the caller's only active config",
)
async def activate_config(
    provider: ProviderName,
    body: Optional[ActivateConfigRequest] = None,
    owner_id: str = Depends(get_owner_id),
    registry: AIServiceRegistry = Depends(get_registry),
) -> ConfigResponse:
    body = body or ActivateConfigRequest()
    config = await registry.set_active_service(
        owner_id, provider, api_key=body.api_key, model=body.model
    )
    return ConfigResponse.from_config(config)


@router.post(
    "/configs/test",
    response_model=TestKeyResponse,
    summary="Check a credential's format and probe the vendor",
)
async def probe_api_key(
    body: TestKeyRequest,
    owner_id: str = Depends(get_owner_id),
    registry: AIServiceRegistry = Depends(get_registry),
) -> TestKeyResponse:
    valid = await registry.test_api_key(body.provider, body.api_key, owner_id=owner_id)
    return TestKeyResponse(provider=body.provider, valid=valid)


@router.get("/usage", response_model=UsageStats, summary="Usage totals for the last N days")
async def get_usage(
    days: int = Query(default=30, ge=1, le=365),
    owner_id: str = Depends(get_owner_id),
    registry: AIServiceRegistry = Depends(get_registry),
) -> UsageStats:
    return await registry.get_usage_stats(owner_id, days=days)


# ══════════════════════════════════════════════════════════════════════════
# Generation
# ══════════════════════════════════════════════════════════════════════════


@router.post(
    "/generate",
    response_model=GenerateResponse,
    responses=_ERRORS,
    summary="Raw text generation through the active provider",
)
async def generate(
    body: GenerateBody,
    owner_id: str = Depends(get_owner_id),
    ai_service: AIService = Depends(get_ai_service),
) -> GenerateResponse:
    request = GenerateRequest(**body.model_dump(exclude_none=True))
    result = await ai_service.generate(owner_id, request)
    return GenerateResponse(content=result.content, usage=result.usage)


@router.post("/enhance", response_model=EnhancementResponse, summary="Structured note enhancement")
async def enhance_note(
    body: EnhanceNoteBody,
    owner_id: str = Depends(get_owner_id),
    ai_service: AIService = Depends(get_ai_service),
) -> EnhancementResponse:
    result = await ai_service.enhance_note(owner_id, body.content, body.enhancement_type)
    return _to_response(result)


@router.post("/quiz", response_model=EnhancementResponse, summary="Multiple choice quiz")
async def generate_quiz(
    body: ContentBody,
    owner_id: str = Depends(get_owner_id),
    ai_service: AIService = Depends(get_ai_service),
) -> EnhancementResponse:
    return _to_response(await ai_service.generate_quiz(owner_id, body.content))


@router.post("/summary", response_model=EnhancementResponse, summary="Concise summary")
async def generate_summary(
    body: ContentBody,
    owner_id: str = Depends(get_owner_id),
    ai_service: AIService = Depends(get_ai_service),
) -> EnhancementResponse:
    return _to_response(await ai_service.generate_summary(owner_id, body.content))


@router.post("/key-points", response_model=EnhancementResponse, summary="Bullet key points")
async def generate_key_points(
    body: ContentBody,
    owner_id: str = Depends(get_owner_id),
    ai_service: AIService = Depends(get_ai_service),
) -> EnhancementResponse:
    return _to_response(await ai_service.generate_key_points(owner_id, body.content))


@router.post("/questions", response_model=EnhancementResponse, summary="Study questions")
async def generate_questions(
    body: ContentBody,
    owner_id: str = Depends(get_owner_id),
    ai_service: AIService = Depends(get_ai_service),
) -> EnhancementResponse:
    return _to_response(await ai_service.generate_questions(owner_id, body.content))


@router.post("/enhance-text", response_model=EnhancementResponse, summary="Improve prose")
async def enhance_text(
    body: ContentBody,
    owner_id: str = Depends(get_owner_id),
    ai_service: AIService = Depends(get_ai_service),
) -> EnhancementResponse:
    return _to_response(await ai_service.enhance_text(owner_id, body.content))
