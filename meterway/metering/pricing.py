"""Pricing and token estimation.

Pure functions; no I/O. Prices are USD per 1M tokens as (input, output).
"""

import math
from dataclasses import dataclass

from ..types import LLMProvider

DEFAULT_MODEL_KEY = "default"


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""

    input: float  # USD per 1M prompt tokens
    output: float  # USD per 1M completion tokens


PRICING: dict[LLMProvider, dict[str, ModelPricing]] = {
    LLMProvider.OPENAI: {
        "gpt-4": ModelPricing(30.0, 60.0),
        "gpt-4-32k": ModelPricing(60.0, 120.0),
        "gpt-4-turbo": ModelPricing(10.0, 30.0),
        "gpt-4-turbo-preview": ModelPricing(10.0, 30.0),
        "gpt-4-vision-preview": ModelPricing(10.0, 30.0),
        "gpt-5": ModelPricing(40.0, 80.0),
        "gpt-5-high": ModelPricing(50.0, 100.0),
        "gpt-4o": ModelPricing(5.0, 15.0),
        "gpt-4o-mini": ModelPricing(0.15, 0.60),
        "o3": ModelPricing(20.0, 40.0),
        "o1": ModelPricing(15.0, 30.0),
        "o4-mini": ModelPricing(1.5, 2.0),
        "gpt-3.5-turbo": ModelPricing(0.5, 1.5),
        "gpt-3.5-turbo-16k": ModelPricing(1.0, 2.0),
        DEFAULT_MODEL_KEY: ModelPricing(10.0, 30.0),
    },
    LLMProvider.ANTHROPIC: {
        "claude-opus-4-1-20250805": ModelPricing(20.0, 80.0),
        "claude-opus-4-20250514": ModelPricing(18.0, 75.0),
        "claude-sonnet-4-20250514": ModelPricing(8.0, 25.0),
        "claude-3-7-sonnet-latest": ModelPricing(5.0, 20.0),
        "claude-3-opus-20240229": ModelPricing(15.0, 75.0),
        "claude-3-sonnet-20240229": ModelPricing(3.0, 15.0),
        "claude-3-haiku-20240307": ModelPricing(0.25, 1.25),
        "claude-2.1": ModelPricing(8.0, 24.0),
        "claude-2.0": ModelPricing(8.0, 24.0),
        "claude-instant-1.2": ModelPricing(0.8, 2.4),
        DEFAULT_MODEL_KEY: ModelPricing(8.0, 24.0),
    },
    LLMProvider.OPENROUTER: {
        # OpenRouter prices dynamically; this is an average for tracking.
        DEFAULT_MODEL_KEY: ModelPricing(5.0, 15.0),
    },
}


def cost_per_million_tokens(provider: LLMProvider | str, model: str) -> ModelPricing:
    """Look up pricing for a model.

    Exact match first, then the longest table key the model starts with
    (dated snapshots such as ``gpt-4o-2024-08-06``), then the provider default.
    """
    table = PRICING[LLMProvider(provider)]
    if model in table:
        return table[model]

    prefixes = [key for key in table if key != DEFAULT_MODEL_KEY and model.startswith(key)]
    if prefixes:
        return table[max(prefixes, key=len)]

    return table[DEFAULT_MODEL_KEY]


def calculate_cost(
    provider: LLMProvider | str,
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
) -> float:
    """Calculate the cost in USD of a request."""
    pricing = cost_per_million_tokens(provider, model)
    return (prompt_tokens * pricing.input + completion_tokens * pricing.output) / 1_000_000


def estimate_tokens(text: str | None) -> int:
    """Rough token estimate: one token per four characters, rounded up.

    Returns at least 1 for any non-empty text.
    """
    if not text:
        return 0
    return math.ceil(len(text) / 4)
