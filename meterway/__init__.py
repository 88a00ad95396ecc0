"""Meterway - metered AI gateway.

Usage:
    from meterway import Gateway, GatewaySettings, SQLiteUsageStore

    store = SQLiteUsageStore("usage.db")
    store.initialize(GatewaySettings.from_env().default_limits)
    gateway = Gateway.from_settings(GatewaySettings.from_env(), store)
    response = await gateway.chat(request)
"""

__version__ = "0.1.0"

# Types
from .types import (
    AgentConfig,
    ChatFileAttachment,
    ChatRequest,
    ChatResponse,
    ConversationMessage,
    ConversationUsage,
    DailyUsage,
    LLMProvider,
    MessageRole,
    QuotaDecision,
    RemainingQuota,
    RequestType,
    ResponseMetadata,
    StreamComplete,
    StreamDelta,
    StreamErrorEvent,
    StreamEvent,
    StreamState,
    TextChunk,
    TokenLimits,
    TokenUsageRecord,
    UsageContext,
    UsageSummary,
    UsageTotals,
    UserAccount,
)

# Exceptions
from .exceptions import (
    ApiKeyInvalidError,
    ContentFilteredError,
    ErrorCode,
    GlobalTokenLimitExceededError,
    MeterwayError,
    ModelUnavailableError,
    MonthlyTokenLimitExceededError,
    ProviderError,
    RateLimitExceededError,
    ServiceUnavailableError,
    TokenLimitExceededError,
    UserInactiveError,
    UserNotFoundError,
)

# Configuration
from .config import GatewaySettings

# Storage
from .storage import InMemoryUsageStore, SQLiteUsageStore, UsageStore

# Metering and control
from .control import QuotaEnforcer
from .metering import UsageRecorder, calculate_cost, estimate_tokens

# Gateway
from .gateway import (
    AnthropicProvider,
    BaseProvider,
    Gateway,
    MockProvider,
    OpenAIProvider,
    OpenRouterProvider,
    StreamingMultiplexer,
    classify_error,
    sse_events,
)

# Utilities
from .utils import StructuredLogger, configure_logging, get_logger

__all__ = [
    "__version__",
    # Types
    "AgentConfig",
    "ChatFileAttachment",
    "ChatRequest",
    "ChatResponse",
    "ConversationMessage",
    "ConversationUsage",
    "DailyUsage",
    "LLMProvider",
    "MessageRole",
    "QuotaDecision",
    "RemainingQuota",
    "RequestType",
    "ResponseMetadata",
    "StreamComplete",
    "StreamDelta",
    "StreamErrorEvent",
    "StreamEvent",
    "StreamState",
    "TextChunk",
    "TokenLimits",
    "TokenUsageRecord",
    "UsageContext",
    "UsageSummary",
    "UsageTotals",
    "UserAccount",
    # Exceptions
    "ApiKeyInvalidError",
    "ContentFilteredError",
    "ErrorCode",
    "GlobalTokenLimitExceededError",
    "MeterwayError",
    "ModelUnavailableError",
    "MonthlyTokenLimitExceededError",
    "ProviderError",
    "RateLimitExceededError",
    "ServiceUnavailableError",
    "TokenLimitExceededError",
    "UserInactiveError",
    "UserNotFoundError",
    # Configuration
    "GatewaySettings",
    # Storage
    "InMemoryUsageStore",
    "SQLiteUsageStore",
    "UsageStore",
    # Metering and control
    "QuotaEnforcer",
    "UsageRecorder",
    "calculate_cost",
    "estimate_tokens",
    # Gateway
    "AnthropicProvider",
    "BaseProvider",
    "Gateway",
    "MockProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "StreamingMultiplexer",
    "classify_error",
    "sse_events",
    # Utilities
    "StructuredLogger",
    "configure_logging",
    "get_logger",
]
