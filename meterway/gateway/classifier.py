"""Provider error classification.

Providers report the same failure classes with different vocabularies and
status codes. ``classify_error`` maps any raw exception onto the closed set
of ``ProviderError`` subclasses so downstream handling only ever sees those.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from ..exceptions import (
    ApiKeyInvalidError,
    ContentFilteredError,
    ModelUnavailableError,
    ProviderError,
    RateLimitExceededError,
    ServiceUnavailableError,
)
from ..types import LLMProvider

_NOT_FOUND_PHRASES = ("not found", "not_found", "does not exist", "no such model", "unknown model")
_AUTH_PHRASES = (
    "invalid api key",
    "incorrect api key",
    "invalid_api_key",
    "invalid x-api-key",
    "authentication",
    "unauthorized",
    "permission",
    "forbidden",
)
_CONTENT_PHRASES = (
    "content policy",
    "content_policy",
    "content filter",
    "content_filter",
    "content management policy",
    "safety",
    "blocked",
    "flagged",
)
_RATE_LIMIT_PHRASES = ("rate limit", "rate_limit", "ratelimit", "too many requests")
_UNAVAILABLE_PHRASES = (
    "overloaded",
    "capacity",
    "unavailable",
    "timeout",
    "timed out",
)


def _status_code(error: BaseException) -> int | None:
    for candidate in (
        getattr(error, "status_code", None),
        getattr(error, "status", None),
        getattr(getattr(error, "response", None), "status_code", None),
    ):
        if isinstance(candidate, int) and not isinstance(candidate, bool):
            return candidate
    return None


def _error_text(error: BaseException) -> str:
    parts = [str(error)]
    body = getattr(error, "body", None)
    if body:
        parts.append(str(body))
    return " ".join(parts).lower()


def _headers(error: BaseException) -> Any:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        headers = getattr(error, "headers", None)
    return headers


def _retry_after(error: BaseException) -> datetime | None:
    headers = _headers(error)
    if headers is None:
        return None
    try:
        value = headers.get("retry-after")
        seconds = float(value)
    except (AttributeError, TypeError, ValueError):
        return None
    if seconds < 0:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


def _mentions(text: str, phrases: tuple[str, ...]) -> bool:
    return any(phrase in text for phrase in phrases)


def classify_error(
    error: BaseException,
    provider: LLMProvider | str,
    model: str,
) -> ProviderError:
    """Map a raw provider exception to a gateway error.

    Rules are tried in order and the first match wins. Never raises.

    Args:
        error: The exception raised by the SDK or transport.
        provider: Provider the call was made to.
        model: Model the call was made with.

    Returns:
        A ``ProviderError`` subclass instance. Already classified errors are
        returned unchanged.
    """
    if isinstance(error, ProviderError):
        return error

    name = provider.value if isinstance(provider, LLMProvider) else str(provider)
    status = _status_code(error)
    text = _error_text(error)
    detail = str(error) or type(error).__name__

    if ("model" in text and _mentions(text, _NOT_FOUND_PHRASES)) or status == 404:
        return ModelUnavailableError(name, model, detail)

    if _mentions(text, _AUTH_PHRASES) or status in (401, 403):
        return ApiKeyInvalidError(name)

    if _mentions(text, _CONTENT_PHRASES):
        return ContentFilteredError(name)

    if _mentions(text, _RATE_LIMIT_PHRASES) or status == 429:
        return RateLimitExceededError(name, _retry_after(error))

    if _mentions(text, _UNAVAILABLE_PHRASES) or status in (503, 529):
        return ServiceUnavailableError(name, detail)

    return ServiceUnavailableError(name, detail)
