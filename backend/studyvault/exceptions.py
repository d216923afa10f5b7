"""
StudyVault Backend — Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions for the AI gateway and its stores.
How:   Each exception carries a message and an optional context dict.
       Global exception handlers (registered in main.py) turn them into
       structured JSON error responses.
Who:   Raised by provider adapters, services, and the store; caught by the
       retry helper, the chat controller, and the global handlers.

Exception Hierarchy:
    StudyVaultError (base)
    ├── ValidationError              → 400 Bad Request
    │   └── UnsupportedProviderError → 400 Bad Request
    ├── NotFoundError                → 404 Not Found
    ├── DatabaseError                → 500 Internal Server Error
    └── AIProviderError              → status derived from ErrorCode

AIProviderError is the raised form of a classified error: adapters build it
at the point of failure with an ErrorCode already attached, so nothing
downstream has to guess from message text.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Closed taxonomy every provider/network failure is normalized into."""

    NO_CREDENTIAL = "NO_CREDENTIAL"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNAVAILABLE = "UNAVAILABLE"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    GENERIC = "GENERIC"


class StudyVaultError(Exception):
    """
    Base exception for all StudyVault application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(StudyVaultError):
    """Raised when client input fails validation (bad provider, malformed key, ...)."""

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class UnsupportedProviderError(ValidationError):
    """Raised by the provider factory for identifiers outside the closed set."""

    def __init__(self, provider: Any, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["provider"] = str(provider)
        super().__init__(
            message=f"Unsupported AI provider: {provider}",
            field="provider",
            context=ctx,
        )
        self.provider = provider


class NotFoundError(StudyVaultError):
    """
    Raised when a requested resource does not exist.

    The store returns None for missing rows; services convert that into
    NotFoundError so the HTTP layer can answer 404.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class DatabaseError(StudyVaultError):
    """
    Raised when persisted-store operations fail unexpectedly.

    The message returned to the client is always generic; details stay in logs.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AIProviderError(StudyVaultError):
    """
    A provider or network failure, already classified.

    Attributes:
        code:         ErrorCode driving retry, notification and HTTP mapping
        provider:     Provider identifier the failure came from (if known)
        status_code:  Upstream HTTP status (None for transport failures)
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.GENERIC,
        message: str = "AI request failed",
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if provider:
            ctx["provider"] = provider
        if status_code is not None:
            ctx["status_code"] = status_code
        super().__init__(message=message, context=ctx)
        self.code = ErrorCode(code)
        self.provider = provider
        self.status_code = status_code
