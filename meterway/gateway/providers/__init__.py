"""Provider adapters for the Meterway gateway.

Supported providers:
- OpenAI (GPT-4o, GPT-5, o-series)
- Anthropic (Claude 3, Claude 4)
- OpenRouter (any ``vendor/model`` id)
- Mock (for testing)
"""

from .anthropic import AnthropicProvider
from .base import (
    LANGUAGE_INSTRUCTION,
    TEMPERATURE_DENYLIST,
    BaseProvider,
    Completion,
    build_system_content,
    supports_temperature,
)
from .mock import MockProvider
from .openai import OpenAIProvider
from .openrouter import OpenRouterProvider

__all__ = [
    "LANGUAGE_INSTRUCTION",
    "TEMPERATURE_DENYLIST",
    "BaseProvider",
    "Completion",
    "build_system_content",
    "supports_temperature",
    "OpenAIProvider",
    "AnthropicProvider",
    "OpenRouterProvider",
    "MockProvider",
]
