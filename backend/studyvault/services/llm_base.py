"""
StudyVault Backend — Provider Capability Contract
===================================================

What:  Abstract base class every provider adapter implements, plus the five
       derived operations (quiz, key points, questions, summary, enhance)
       implemented once on top of the raw generate primitive.
How:   Adapters implement generate_response(); everything else lives here so
       that the same prompts and the same line heuristics apply to every
       vendor. Shared HTTP plumbing (credential check, error-body handling,
       transport failures) is provided as protected helpers.
Who:   Instantiated by provider_factory.create_provider(); called by
       AIService, the registry's connection probe, and the chat controller.
When:  Once per provider call; adapters are cheap and not cached.

Contract:
    - generate_response() returns a GenerateResult with non-empty content or
      raises AIProviderError (already classified). It never returns "empty".
    - A blank credential raises NO_CREDENTIAL before any network I/O.
    - Derived operations never swallow generate_response() errors.
"""

import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from studyvault.config import settings
from studyvault.exceptions import AIProviderError, ErrorCode
from studyvault.schemas.ai import (
    EnhancementType,
    GenerateRequest,
    GenerateResult,
    ProviderConfig,
    TokenUsage,
)
from studyvault.services.error_handler import classify_status
from studyvault.services.response_parser import (
    extract_bullet_points,
    extract_question_lines,
    parse_ai_response,
    validate_enhancement_data,
)

logger = logging.getLogger(__name__)

CAPABILITIES = [
    "text_generation",
    "quiz_generation",
    "note_enhancement",
    "chat_support",
    "content_analysis",
]

QUIZ_PROMPT = (
    "Create a multiple choice quiz based on the following content. Return only valid "
    'JSON with this structure: {"questions": [{"question": "...", "options": '
    '["A", "B", "C", "D"], "correct": 0}]}. Content: '
)


class BaseAIProvider(ABC):
    """
    Shared behaviour for the OpenAI, Gemini and Anthropic adapters.

    Subclasses set `name`, `display_name` and `default_model` and implement
    generate_response().
    """

    name: str = ""
    display_name: str = ""
    default_model: str = ""

    def __init__(self, config: ProviderConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.api_key = (config.api_key or "").strip()
        self.model = config.model or self.default_model
        self._http_client = http_client
        self.last_usage: Optional[TokenUsage] = None

    # ══════════════════════════════════════════════════════════════════════
    # Primitives
    # ══════════════════════════════════════════════════════════════════════

    @abstractmethod
    async def generate_response(self, request: GenerateRequest) -> GenerateResult:
        """
        Send one generation request to the vendor.

        Raises:
            AIProviderError: NO_CREDENTIAL before any I/O when the key is
                blank; a status-derived code on non-2xx; UNAVAILABLE on
                transport failures; GENERIC when no text came back.
        """
        ...

    async def validate_connection(self) -> bool:
        """Tiny "Hello" round trip. Never raises."""
        try:
            result = await self.generate_response(GenerateRequest(prompt="Hello", max_tokens=10))
        except (AIProviderError, httpx.HTTPError) as e:
            logger.info("%s connection check failed: %s", self.display_name, e)
            return False
        return bool(result.content)

    def get_capabilities(self) -> List[str]:
        return list(CAPABILITIES)

    # ══════════════════════════════════════════════════════════════════════
    # Derived operations
    # ══════════════════════════════════════════════════════════════════════

    async def generate_quiz(self, content: str) -> GenerateResult:
        """
        Request a JSON quiz. Unparseable output yields questions=[] rather
        than an error; callers check for emptiness.
        """
        result = await self.generate_response(GenerateRequest(
            prompt=f"{QUIZ_PROMPT}{content}",
            system_prompt=(
                "You are an expert educator who creates high-quality multiple choice "
                "questions. Always return valid JSON format."
            ),
            max_tokens=3000,
            temperature=0.7,
        ))

        parsed = parse_ai_response(result.content)
        quiz = validate_enhancement_data(parsed.data, EnhancementType.QUIZ) if parsed.success else None
        if quiz is None:
            logger.warning("%s quiz output was not valid quiz JSON", self.display_name)
            questions: List[Dict[str, Any]] = []
        else:
            questions = quiz["questions"]
        return result.model_copy(update={"questions": questions})

    async def enhance_text(self, content: str) -> str:
        result = await self.generate_response(GenerateRequest(
            prompt=(
                "Please enhance and improve the following text while maintaining its "
                f"core meaning and structure:\n\n{content}"
            ),
            system_prompt=(
                "You are an expert editor who improves text clarity, grammar, and "
                "structure while preserving the original meaning."
            ),
            max_tokens=2000,
            temperature=0.7,
        ))
        return result.content.strip()

    async def generate_key_points(self, content: str) -> List[str]:
        result = await self.generate_response(GenerateRequest(
            prompt=f"Extract the key points from the following content as a bulleted list:\n\n{content}",
            system_prompt=(
                "You are an expert at identifying key points and important information "
                "from text. Return clear, concise bullet points."
            ),
            max_tokens=1000,
            temperature=0.5,
        ))
        return extract_bullet_points(result.content) or [result.content.strip()]

    async def generate_questions(self, content: str) -> List[str]:
        result = await self.generate_response(GenerateRequest(
            prompt=f"Generate 5-10 thoughtful questions based on the following content:\n\n{content}",
            system_prompt=(
                "You are an expert educator who creates insightful questions to help "
                "students think critically about content."
            ),
            max_tokens=1000,
            temperature=0.6,
        ))
        return extract_question_lines(result.content) or [result.content.strip()]

    async def generate_summary(self, content: str) -> str:
        result = await self.generate_response(GenerateRequest(
            prompt=f"Provide a concise summary of the following content:\n\n{content}",
            system_prompt=(
                "You are an expert at creating clear, concise summaries that capture "
                "the essential information."
            ),
            max_tokens=500,
            temperature=0.5,
        ))
        return result.content.strip()

    # ══════════════════════════════════════════════════════════════════════
    # HTTP helpers for adapters
    # ══════════════════════════════════════════════════════════════════════

    def _require_credential(self) -> None:
        if not self.api_key:
            raise AIProviderError(
                code=ErrorCode.NO_CREDENTIAL,
                message=f"API key is required for {self.display_name}",
                provider=self.name,
            )

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
            yield client

    def _no_content(self) -> AIProviderError:
        return AIProviderError(
            code=ErrorCode.GENERIC,
            message=f"No content received from {self.display_name}",
            provider=self.name,
        )

    async def _post_json(
        self,
        url: str,
        body: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        POST `body` and return the decoded JSON response.

        Non-2xx responses raise AIProviderError with a status-derived code,
        preferring the vendor's nested error.message.
        """
        try:
            async with self._client() as client:
                response = await client.post(url, json=body, headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise AIProviderError(
                code=ErrorCode.UNAVAILABLE,
                message=f"{self.display_name} request timed out",
                provider=self.name,
            ) from e
        except httpx.TransportError as e:
            raise AIProviderError(
                code=ErrorCode.UNAVAILABLE,
                message=f"Network error contacting {self.display_name}: {e}",
                provider=self.name,
            ) from e

        if not response.is_success:
            raise AIProviderError(
                code=classify_status(response.status_code),
                message=_error_message(response),
                provider=self.name,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AIProviderError(
                code=ErrorCode.GENERIC,
                message=f"Invalid JSON received from {self.display_name}",
                provider=self.name,
                status_code=response.status_code,
            ) from e
        return data if isinstance(data, dict) else {}

    def _record_call(self, started: float, usage: TokenUsage) -> None:
        """Log the call and keep its usage for callers of derived operations."""
        self.last_usage = usage
        logger.info(
            "%s call completed: model=%s duration=%dms tokens_in=%d tokens_out=%d",
            self.display_name,
            self.model,
            int((time.perf_counter() - started) * 1000),
            usage.input_tokens,
            usage.output_tokens,
        )


def _error_message(response: httpx.Response) -> str:
    """Vendor's nested error.message if present, else a status-based message."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"API request failed with status {response.status_code}"
