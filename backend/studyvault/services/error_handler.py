"""
StudyVault Backend — Error Classification, Notification & Retry
=================================================================

What:  Normalises every provider/network failure into the closed ErrorCode
       taxonomy, hands it to the notification collaborator, and provides a
       provider-agnostic bounded retry helper.
How:   Adapters already raise AIProviderError with a code derived from the
       HTTP status, so classify_error() only falls back to message sniffing
       for exceptions that did not come from an adapter.
       with_retry() is built on tenacity's AsyncRetrying with exponential
       backoff: delay before attempt n+1 = base_delay × 2^(n-1).
Who:   AIService and ChatSessionController wrap every provider call in
       with_retry(); the FastAPI exception handlers reuse the taxonomy.
When:  On every failed provider call.

Classification table:
    HTTP status      │ message substring                       │ ErrorCode
    ─────────────────┼─────────────────────────────────────────┼────────────────
    401              │ "authentication", "api key"             │ NO_CREDENTIAL
    429              │ "rate limit"                            │ RATE_LIMITED
    400              │                                         │ INVALID_REQUEST
    >= 500           │ "timeout", "fetch", "network", ...      │ UNAVAILABLE
                     │ "quota"                                 │ QUOTA_EXCEEDED
    anything else    │ anything else                           │ GENERIC
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_exponential

from studyvault.config import settings
from studyvault.exceptions import AIProviderError, ErrorCode
from studyvault.schemas.ai import ClassifiedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RateLimitCallback = Callable[[ClassifiedError, Dict[str, Any]], Any]


# ══════════════════════════════════════════════════════════════════════════
# Classification
# ══════════════════════════════════════════════════════════════════════════


def classify_status(status: int) -> ErrorCode:
    """Map an upstream HTTP status onto the taxonomy."""
    if status == 401:
        return ErrorCode.NO_CREDENTIAL
    if status == 429:
        return ErrorCode.RATE_LIMITED
    if status == 400:
        return ErrorCode.INVALID_REQUEST
    if status >= 500:
        return ErrorCode.UNAVAILABLE
    return ErrorCode.GENERIC


def classify_message(text: str) -> ErrorCode:
    """Substring fallback for failures that carry no status code."""
    lowered = (text or "").lower()
    if "quota" in lowered:
        return ErrorCode.QUOTA_EXCEEDED
    if "rate limit" in lowered:
        return ErrorCode.RATE_LIMITED
    if "authentication" in lowered or "api key" in lowered:
        return ErrorCode.NO_CREDENTIAL
    if any(s in lowered for s in ("timeout", "timed out", "fetch", "network", "connection")):
        return ErrorCode.UNAVAILABLE
    return ErrorCode.GENERIC


def classify_error(error: BaseException) -> ClassifiedError:
    if isinstance(error, AIProviderError):
        return ClassifiedError(
            code=error.code,
            message=error.message,
            details=dict(error.context),
        )
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return ClassifiedError(
            code=ErrorCode.UNAVAILABLE,
            message=str(error) or "Network error",
            details={"exception": type(error).__name__},
        )
    message = str(error) or type(error).__name__
    return ClassifiedError(
        code=classify_message(message),
        message=message,
        details={"exception": type(error).__name__},
    )


# ══════════════════════════════════════════════════════════════════════════
# Notification
# ══════════════════════════════════════════════════════════════════════════

# Exactly one user-facing template per code
NOTIFICATION_TEMPLATES: Dict[ErrorCode, Dict[str, str]] = {
    ErrorCode.NO_CREDENTIAL: {
        "title": "AI Service Not Configured",
        "message": "Please configure an AI service with a valid API key in Settings.",
        "priority": "high",
        "action": "configure",
    },
    ErrorCode.RATE_LIMITED: {
        "title": "Rate Limit Reached",
        "message": "The AI service is receiving too many requests. Please wait a moment or switch to a different API key.",
        "priority": "medium",
        "action": "rotate_key",
    },
    ErrorCode.QUOTA_EXCEEDED: {
        "title": "API Quota Exceeded",
        "message": "Your API quota has been exhausted. Add a new API key or check your billing with the provider.",
        "priority": "high",
        "action": "rotate_key",
    },
    ErrorCode.INVALID_REQUEST: {
        "title": "Invalid Request",
        "message": "The AI service rejected the request. Try shortening or rephrasing your content.",
        "priority": "medium",
        "action": "none",
    },
    ErrorCode.UNAVAILABLE: {
        "title": "AI Service Unavailable",
        "message": "The AI service is temporarily unavailable. Please try again in a few minutes.",
        "priority": "medium",
        "action": "retry",
    },
    ErrorCode.GENERIC: {
        "title": "AI Request Failed",
        "message": "Something went wrong while contacting the AI service. Please try again.",
        "priority": "low",
        "action": "retry",
    },
}


class Notifier(ABC):
    """External notification collaborator (toast UI, push, email, ...)."""

    @abstractmethod
    async def notify(
        self, template: Dict[str, str], error: ClassifiedError, context: Dict[str, Any]
    ) -> None:
        ...


class LoggingNotifier(Notifier):
    """Default notifier: the server has no UI, so notifications go to the log."""

    async def notify(
        self, template: Dict[str, str], error: ClassifiedError, context: Dict[str, Any]
    ) -> None:
        logger.info(
            "Notification [%s] %s: %s (code=%s, owner=%s)",
            template["priority"],
            template["title"],
            template["message"],
            error.code.value,
            context.get("owner_id"),
        )


class AIErrorHandler:
    """
    Classifies failures, notifies, and triggers credential rotation.

    The rate-limit callback is only invoked for RATE_LIMITED and
    QUOTA_EXCEEDED; a failing notifier or callback is logged and ignored so
    the original error is what reaches the caller.
    """

    ROTATION_CODES = frozenset({ErrorCode.RATE_LIMITED, ErrorCode.QUOTA_EXCEEDED})

    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or LoggingNotifier()
        self._rate_limit_callback: Optional[RateLimitCallback] = None

    def set_rate_limit_callback(self, callback: Optional[RateLimitCallback]) -> None:
        self._rate_limit_callback = callback

    async def handle(
        self, error: BaseException, context: Optional[Dict[str, Any]] = None
    ) -> ClassifiedError:
        context = context or {}
        classified = classify_error(error)
        logger.error(
            "AI error classified as %s: %s (context=%s)",
            classified.code.value,
            classified.message,
            context,
        )

        template = NOTIFICATION_TEMPLATES[classified.code]
        try:
            await self.notifier.notify(template, classified, context)
        except Exception:
            logger.exception("Notifier failed for %s", classified.code.value)

        if classified.code in self.ROTATION_CODES and self._rate_limit_callback:
            try:
                outcome = self._rate_limit_callback(classified, context)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:
                logger.exception("Rate limit callback failed")

        return classified


# ══════════════════════════════════════════════════════════════════════════
# Retry
# ══════════════════════════════════════════════════════════════════════════


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    *,
    context: Optional[Dict[str, Any]] = None,
    error_handler: Optional[AIErrorHandler] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run `operation` up to `max_attempts` times with exponential backoff.

    Intermediate failures are logged and retried. The final failure is
    classified, passed to `error_handler` (if any), and re-raised as an
    AIProviderError chained to the original exception.
    """
    max_attempts = max_attempts or settings.retry_max_attempts
    base_delay = settings.retry_base_delay if base_delay is None else base_delay
    context = context or {}

    def _log_retry(retry_state) -> None:
        logger.warning(
            "Attempt %d/%d failed: %s; retrying in %.2fs",
            retry_state.attempt_number,
            max_attempts,
            retry_state.outcome.exception(),
            retry_state.next_action.sleep,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay, exp_base=2),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=False,
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await operation()
    except RetryError as retry_error:
        last = retry_error.last_attempt.exception()
        classified = (
            await error_handler.handle(last, context)
            if error_handler
            else classify_error(last)
        )
        if isinstance(last, AIProviderError):
            raise last
        raise AIProviderError(
            code=classified.code,
            message=classified.message,
            provider=context.get("provider"),
            context=classified.details,
        ) from last

    # AsyncRetrying always returns or raises inside the loop
    raise RuntimeError("with_retry exited without a result")
