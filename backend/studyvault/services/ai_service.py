"""
StudyVault Backend — AI Gateway Service (Business Logic Orchestrator)
=======================================================================

What:  The single entry point the rest of the application uses to run AI
       operations without knowing which vendor is active.
How:   resolve active config → build adapter → run inside with_retry →
       record usage → wrap the outcome in an EnhancementResult.
Who:   The /api/ai routes and the ChatSessionController.
When:  Once per AI operation.

Orchestration Flow:
    ┌──────────┐    ┌─────────────┐    ┌──────────────┐    ┌──────────┐
    │  Route / │───▶│  Registry   │───▶│  Adapter     │───▶│  Usage   │
    │  Chat    │    │  (active    │    │  (with_retry)│    │  (store) │
    └──────────┘    │   config)   │    └──────────────┘    └──────────┘
                    └─────────────┘
    No active config or a blank key stops at the registry step:
    NO_CREDENTIAL is reported and no network call is made.

Error Handling Strategy:
    generate() raises AIProviderError (the HTTP layer maps it).
    The derived operations never raise provider errors; they return
    EnhancementResult.fail(...) with the classified code instead.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, TypeVar

import httpx

from studyvault.exceptions import AIProviderError, ErrorCode, ValidationError
from studyvault.schemas.ai import (
    EnhancementResult,
    EnhancementType,
    GenerateRequest,
    GenerateResult,
    ProviderConfig,
)
from studyvault.services.error_handler import AIErrorHandler, with_retry
from studyvault.services.llm_base import BaseAIProvider
from studyvault.services.provider_factory import create_provider
from studyvault.services.registry import AIServiceRegistry
from studyvault.services.response_parser import extract_enhancement

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_CREDENTIAL_MESSAGE = "No active AI service configured. Please add an API key in Settings."

NOTE_ENHANCER_SYSTEM_PROMPT = (
    "You are an expert study assistant who helps improve and enhance notes for better "
    "learning. Return only valid JSON format as specified. Keep responses concise and "
    "well-structured."
)

_NOTE_SHAPES: Dict[EnhancementType, str] = {
    EnhancementType.SUMMARY: """Create a JSON object with this structure:
{
  "summary": "A comprehensive summary of the main points from the actual content provided",
  "keyTakeaways": ["Key takeaway 1", "Key takeaway 2", "Key takeaway 3"],
  "wordCount": {
    "original": 245,
    "summary": 67
  }
}

Replace the example numbers with the actual word counts of the original content and of your summary.""",
    EnhancementType.KEY_POINTS: """Create a JSON object with this structure:
{
  "keyPoints": [
    {
      "point": "Main point",
      "details": ["Supporting detail 1", "Supporting detail 2"],
      "importance": "high|medium|low"
    }
  ],
  "categories": ["Category 1", "Category 2"]
}""",
    EnhancementType.QUESTIONS: """Create a JSON object with this structure:
{
  "studyQuestions": [
    {
      "question": "Study question",
      "answer": "Detailed educational answer that explains the concept thoroughly",
      "type": "conceptual|factual|analytical",
      "difficulty": "easy|medium|hard"
    }
  ],
  "reviewQuestions": [
    {
      "question": "Quick review question",
      "answer": "Concise but complete answer explanation"
    }
  ]
}

Every question must have a corresponding answer based on the content provided.""",
}


class _Outcome(NamedTuple):
    """Derived-operation payload plus whether it came from a fallback."""

    data: Any
    degraded: bool


def build_note_enhancement_prompt(content: str, enhancement_type: EnhancementType) -> str:
    return (
        f"Please analyze and enhance the following note content:\n\n{content}\n\n"
        f"{_NOTE_SHAPES[enhancement_type]}"
    )


class AIService:
    """
    Uniform AI gateway over the active provider of an owner.

    Retry parameters default to settings; tests pass a no-op `sleep`.
    """

    def __init__(
        self,
        registry: AIServiceRegistry,
        error_handler: AIErrorHandler,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.error_handler = error_handler
        self.http_client = http_client
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    # ══════════════════════════════════════════════════════════════════════
    # Resolution
    # ══════════════════════════════════════════════════════════════════════

    async def require_active_config(self, owner_id: str) -> ProviderConfig:
        """
        Active config with a usable credential.

        Raises:
            AIProviderError(NO_CREDENTIAL): reported to the error handler
                first; nothing is sent to any vendor.
        """
        config = await self.registry.get_active_config(owner_id)
        if config is None or not config.has_credential:
            error = AIProviderError(
                code=ErrorCode.NO_CREDENTIAL,
                message=NO_CREDENTIAL_MESSAGE,
                provider=config.provider.value if config else None,
            )
            await self.error_handler.handle(error, {"owner_id": owner_id})
            raise error
        return config

    def adapter_for(self, config: ProviderConfig) -> BaseAIProvider:
        return create_provider(config, http_client=self.http_client)

    async def resolve_provider(self, owner_id: str) -> BaseAIProvider:
        return self.adapter_for(await self.require_active_config(owner_id))

    # ══════════════════════════════════════════════════════════════════════
    # Execution
    # ══════════════════════════════════════════════════════════════════════

    async def call(
        self,
        provider: BaseAIProvider,
        owner_id: str,
        operation_type: str,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """Run `operation` with retry, then record usage from the adapter."""
        result = await with_retry(
            operation,
            self.max_attempts,
            self.base_delay,
            context={"owner_id": owner_id, "provider": provider.name, "operation": operation_type},
            error_handler=self.error_handler,
            sleep=self._sleep,
        )
        await self._track(provider, owner_id, operation_type)
        return result

    async def _track(self, provider: BaseAIProvider, owner_id: str, operation_type: str) -> int:
        usage = provider.last_usage
        if usage is None:
            return 0
        cost = self.registry.calculate_cost(provider.name, usage.input_tokens, usage.output_tokens)
        await self.registry.track_usage(owner_id, provider.name, operation_type, usage.tokens, cost)
        return usage.tokens

    async def generate(self, owner_id: str, request: GenerateRequest) -> GenerateResult:
        """Raw generation through the active provider. Raises AIProviderError."""
        provider = await self.resolve_provider(owner_id)
        return await self.call(
            provider, owner_id, "text_generation", lambda: provider.generate_response(request)
        )

    async def _enhance(
        self,
        owner_id: str,
        operation_type: str,
        run: Callable[[BaseAIProvider], Awaitable[Any]],
    ) -> EnhancementResult:
        try:
            provider = await self.resolve_provider(owner_id)
        except AIProviderError as e:
            return EnhancementResult.fail(e.message, provider=e.provider, error_code=e.code)

        started = time.perf_counter()
        try:
            data = await self.call(provider, owner_id, operation_type, lambda: run(provider))
        except AIProviderError as e:
            return EnhancementResult.fail(e.message, provider=provider.name, error_code=e.code)

        metadata: Dict[str, Any] = {
            "tokens_used": provider.last_usage.tokens if provider.last_usage else 0,
        }
        if isinstance(data, _Outcome):
            metadata["degraded"] = data.degraded
            data = data.data
        return EnhancementResult.ok(
            data,
            provider=provider.name,
            model=provider.model,
            duration_ms=int((time.perf_counter() - started) * 1000),
            metadata=metadata,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Derived operations
    # ══════════════════════════════════════════════════════════════════════

    async def generate_summary(self, owner_id: str, content: str) -> EnhancementResult[str]:
        return await self._enhance(owner_id, "summary", lambda p: p.generate_summary(content))

    async def generate_key_points(self, owner_id: str, content: str) -> EnhancementResult[List[str]]:
        return await self._enhance(owner_id, "key_points", lambda p: p.generate_key_points(content))

    async def generate_questions(self, owner_id: str, content: str) -> EnhancementResult[List[str]]:
        return await self._enhance(owner_id, "questions", lambda p: p.generate_questions(content))

    async def enhance_text(self, owner_id: str, content: str) -> EnhancementResult[str]:
        return await self._enhance(owner_id, "text_enhancement", lambda p: p.enhance_text(content))

    async def generate_quiz(
        self, owner_id: str, content: str
    ) -> EnhancementResult[List[Dict[str, Any]]]:
        """Quiz questions; an unparseable quiz is a success flagged degraded with []."""

        async def run(provider: BaseAIProvider):
            result = await provider.generate_quiz(content)
            questions = result.questions or []
            return _Outcome(questions, degraded=not questions)

        return await self._enhance(owner_id, "quiz_generation", run)

    async def enhance_note(
        self, owner_id: str, content: str, enhancement_type
    ) -> EnhancementResult[Dict[str, Any]]:
        """
        Structured note enhancement (summary, key_points, questions).

        The model's JSON goes through the extraction pipeline; a shape
        mismatch still succeeds with fallback data and metadata["degraded"].
        """
        kind = EnhancementType(enhancement_type)
        if kind not in _NOTE_SHAPES:
            raise ValidationError(
                message=f"Unsupported enhancement type: {kind.value}",
                field="enhancement_type",
            )
        request = GenerateRequest(
            prompt=build_note_enhancement_prompt(content, kind),
            system_prompt=NOTE_ENHANCER_SYSTEM_PROMPT,
            max_tokens=4000,
            temperature=0.5,
        )

        async def run(provider: BaseAIProvider):
            result = await provider.generate_response(request)
            parsed = extract_enhancement(result.content, kind)
            return _Outcome(parsed.data, degraded=not parsed.success)

        return await self._enhance(owner_id, f"note_{kind.value}", run)
