"""Meterway Gateway Layer.

The Gateway is the routing layer every chat call goes through. It provides:
- Routing to provider adapters (OpenAI, Anthropic, OpenRouter)
- Token quota admission checks before any provider call
- Usage and cost recording, including partial streams
- Classification of provider failures into one error taxonomy
"""

from .classifier import classify_error
from .gateway import Gateway, estimate_request_tokens
from .providers import (
    AnthropicProvider,
    BaseProvider,
    MockProvider,
    OpenAIProvider,
    OpenRouterProvider,
)
from .streaming import StreamingMultiplexer, sse_events

__all__ = [
    "Gateway",
    "estimate_request_tokens",
    "classify_error",
    "StreamingMultiplexer",
    "sse_events",
    "BaseProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "OpenRouterProvider",
    "MockProvider",
]
