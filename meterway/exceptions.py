"""Custom exceptions for Meterway.

Every error carries a machine-readable ``code``, a user-safe
``user_message`` and the HTTP status the route layer should answer with.
Provider-originated errors are produced by the error classifier only.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error kinds."""

    USER_NOT_FOUND = "USER_NOT_FOUND"
    USER_INACTIVE = "USER_INACTIVE"
    GLOBAL_TOKEN_LIMIT_EXCEEDED = "GLOBAL_TOKEN_LIMIT_EXCEEDED"
    MONTHLY_TOKEN_LIMIT_EXCEEDED = "MONTHLY_TOKEN_LIMIT_EXCEEDED"
    AI_MODEL_UNAVAILABLE = "AI_MODEL_UNAVAILABLE"
    AI_API_KEY_INVALID = "AI_API_KEY_INVALID"
    AI_CONTENT_FILTERED = "AI_CONTENT_FILTERED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    AI_SERVICE_UNAVAILABLE = "AI_SERVICE_UNAVAILABLE"


class MeterwayError(Exception):
    """Base exception for all Meterway errors."""

    code: ErrorCode
    status_code: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str,
        user_message: str,
        metadata: dict[str, Any] | None = None,
    ):
        self.message = message
        self.user_message = user_message
        self.metadata = metadata or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "user_message": self.user_message,
            "status_code": self.status_code,
            "metadata": self.metadata,
        }


# =============================================================================
# Identity Exceptions
# =============================================================================


class UserNotFoundError(MeterwayError):
    """Raised when the requesting user does not exist."""

    code = ErrorCode.USER_NOT_FOUND
    status_code = 404

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(
            f"User not found: {user_id}",
            "Your account could not be found.",
            {"user_id": user_id},
        )


class UserInactiveError(MeterwayError):
    """Raised when the requesting user has been deactivated."""

    code = ErrorCode.USER_INACTIVE
    status_code = 403

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(
            f"User {user_id} is inactive",
            "Your account is inactive. Please contact support to reactivate your account.",
            {"user_id": user_id},
        )


# =============================================================================
# Quota Exceptions
# =============================================================================


class TokenLimitExceededError(MeterwayError):
    """Raised when a request would exceed a token quota."""

    status_code = 402

    def __init__(
        self,
        limit_type: str,
        current_usage: int,
        limit: int,
        tokens_requested: int,
        user_message: str,
    ):
        self.limit_type = limit_type
        self.current_usage = current_usage
        self.limit = limit
        self.tokens_requested = tokens_requested
        self.remaining = max(0, limit - current_usage)
        super().__init__(
            f"{limit_type.capitalize()} token limit exceeded: "
            f"{current_usage + tokens_requested}/{limit} tokens",
            user_message,
            {
                "limit_type": limit_type,
                "current_usage": current_usage,
                "limit": limit,
                "tokens_requested": tokens_requested,
                "remaining": self.remaining,
            },
        )


class GlobalTokenLimitExceededError(TokenLimitExceededError):
    """Raised when the all-time token quota is exhausted."""

    code = ErrorCode.GLOBAL_TOKEN_LIMIT_EXCEEDED

    def __init__(self, current_usage: int, limit: int, tokens_requested: int):
        super().__init__(
            "global",
            current_usage,
            limit,
            tokens_requested,
            "Your global token limit has been exceeded. "
            "Please contact your administrator or upgrade your plan.",
        )


class MonthlyTokenLimitExceededError(TokenLimitExceededError):
    """Raised when the current month's token quota is exhausted."""

    code = ErrorCode.MONTHLY_TOKEN_LIMIT_EXCEEDED

    def __init__(self, current_usage: int, limit: int, tokens_requested: int):
        super().__init__(
            "monthly",
            current_usage,
            limit,
            tokens_requested,
            "Your monthly token limit has been exceeded. Your limit will reset next month.",
        )


# =============================================================================
# Provider Exceptions
# =============================================================================


class ProviderError(MeterwayError):
    """Base exception for classified provider failures."""

    def __init__(
        self,
        provider: str,
        message: str,
        user_message: str,
        metadata: dict[str, Any] | None = None,
    ):
        self.provider = provider
        super().__init__(message, user_message, {"provider": provider, **(metadata or {})})


class ModelUnavailableError(ProviderError):
    """Raised when the provider does not know the requested model."""

    code = ErrorCode.AI_MODEL_UNAVAILABLE
    status_code = 400

    def __init__(self, provider: str, model: str, detail: str = ""):
        self.model = model
        self.detail = detail
        super().__init__(
            provider,
            f"Model {model} is not available on {provider}" + (f": {detail}" if detail else ""),
            f"The model '{model}' is not available. Please choose a different model for this agent.",
            {"model": model, "detail": detail},
        )


class ApiKeyInvalidError(ProviderError):
    """Raised when the provider rejects the configured credentials."""

    code = ErrorCode.AI_API_KEY_INVALID
    status_code = 502

    def __init__(self, provider: str):
        super().__init__(
            provider,
            f"Invalid or unauthorized API key for {provider}",
            "The AI provider rejected the configured API key. Please check the provider credentials.",
        )


class ContentFilteredError(ProviderError):
    """Raised when the provider blocks the request on policy grounds."""

    code = ErrorCode.AI_CONTENT_FILTERED
    status_code = 422

    def __init__(self, provider: str):
        super().__init__(
            provider,
            f"Content blocked by {provider} safety filters",
            "Your message was blocked by the AI provider's content policy. Please rephrase it.",
        )


class RateLimitExceededError(ProviderError):
    """Raised when the provider throttles the request."""

    code = ErrorCode.RATE_LIMIT_EXCEEDED
    status_code = 429
    retryable = True

    def __init__(self, provider: str, retry_after: datetime | None = None):
        self.retry_after = retry_after or datetime.now(timezone.utc) + timedelta(seconds=60)
        super().__init__(
            provider,
            f"Rate limit exceeded for {provider}",
            "Too many requests. Please wait a moment and try again.",
            {"retry_after": self.retry_after.isoformat()},
        )


class ServiceUnavailableError(ProviderError):
    """Raised for transient or unrecognized provider failures."""

    code = ErrorCode.AI_SERVICE_UNAVAILABLE
    status_code = 503
    retryable = True

    def __init__(self, provider: str, detail: str = ""):
        self.detail = detail
        super().__init__(
            provider,
            f"AI service error ({provider}): {detail}",
            "AI service is temporarily unavailable. Please try again in a moment.",
            {"detail": detail},
        )
